from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from app.core.tenant import set_tenant_id, reset_tenant_id

class TenantMiddleware(BaseHTTPMiddleware):
    """Binds the X-Tenant-ID header (hospital id) to the request context"""

    async def dispatch(self, request: Request, call_next):
        token = set_tenant_id(request.headers.get("X-Tenant-ID"))
        try:
            return await call_next(request)
        finally:
            reset_tenant_id(token)
