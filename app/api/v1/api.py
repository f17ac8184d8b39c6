from fastapi import APIRouter
from app.api.v1.workboard import routes as workboard

api_router = APIRouter()
api_router.include_router(workboard.router, prefix="/workboard", tags=["workboard"])
