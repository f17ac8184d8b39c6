from typing import AsyncGenerator
from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from app.infrastructure.database import get_db
from app.infrastructure.notifications import ResultReleaseNotifier, get_release_notifier
from app.core.permissions import Caller, CategoryAccessPolicy, default_category_policy, get_caller
from app.domain.diagnostics.templates import TemplateService, DefaultTemplateService
from app.domain.diagnostics.service import WorkboardService

_default_templates = DefaultTemplateService()


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    async for session in get_db():
        yield session


def get_current_caller(request: Request) -> Caller:
    return get_caller(request)


def get_category_policy() -> CategoryAccessPolicy:
    return default_category_policy


def get_template_service() -> TemplateService:
    return _default_templates


def get_notifier() -> ResultReleaseNotifier:
    return get_release_notifier()


def get_workboard_service(
    db: AsyncSession = Depends(get_session),
    policy: CategoryAccessPolicy = Depends(get_category_policy),
    templates: TemplateService = Depends(get_template_service),
    notifier: ResultReleaseNotifier = Depends(get_notifier),
) -> WorkboardService:
    return WorkboardService(db, policy=policy, template_service=templates, notifier=notifier)
