import os

os.environ.setdefault("SECRET_KEY", "test-secret-key-for-workboard-tests")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("RESULT_NOTIFICATIONS_ENABLED", "false")

import pytest
import uuid
from datetime import datetime, timedelta
from typing import AsyncGenerator, Dict, Any, List, Optional
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.pool import StaticPool

from app.main import app
from app.api.deps import get_session, get_notifier
from app.infrastructure.database import Base
from app.infrastructure.notifications import ResultReleaseNotifier
from app.core.security import create_access_token
from app.core.permissions import Caller, DiagnosticRoles
from app.domain.diagnostics.models import DiagnosticTest, DiagnosticOrder, ResultStatus, Urgency
from app.domain.diagnostics.service import WorkboardService
from app.api.v1.workboard.schemas import ResultEntryUpdate, ReviewRequest

HOSPITAL_ID = "HOSP-001"
OTHER_HOSPITAL_ID = "HOSP-002"

GLUCOSE_RANGES = [
    {"gender": "all", "ageMin": 0, "ageMax": 150, "min": 70, "max": 110, "criticalMin": 54, "criticalMax": 400}
]


class RecordingNotifier(ResultReleaseNotifier):
    """Keeps release signals in memory instead of queueing them"""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.sent: List[Dict[str, Any]] = []

    def notify_result_released(self, payload: Dict[str, Any]) -> None:
        if self.fail:
            raise ConnectionError("broker unavailable")
        self.sent.append(payload)


@pytest.fixture(scope="function")
async def db_engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.fixture(scope="function")
async def db_session(db_engine) -> AsyncGenerator[AsyncSession, None]:
    """Create a fresh database session for each test."""
    session_factory = async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)
    async with session_factory() as session:
        yield session


@pytest.fixture(scope="function")
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture(scope="function")
def service(db_session: AsyncSession, notifier: RecordingNotifier) -> WorkboardService:
    return WorkboardService(db_session, notifier=notifier)


@pytest.fixture(scope="function")
def technician() -> Caller:
    return Caller(user_id="tech-1", role=DiagnosticRoles.LAB_TECHNICIAN, hospital_id=HOSPITAL_ID)


@pytest.fixture(scope="function")
def pathologist() -> Caller:
    return Caller(user_id="path-1", role=DiagnosticRoles.PATHOLOGY, hospital_id=HOSPITAL_ID)


@pytest.fixture(scope="function")
def radiographer() -> Caller:
    return Caller(user_id="xray-1", role=DiagnosticRoles.XRAY, hospital_id=HOSPITAL_ID)


@pytest.fixture(scope="function")
def make_test(db_session: AsyncSession):
    async def _make(
        category: str = "BLOOD_TEST",
        test_code: str = "GLU",
        test_name: str = "Fasting Blood Glucose",
        reference_ranges: Optional[list] = None,
        unit: Optional[str] = "mg/dL",
        hospital_id: str = HOSPITAL_ID,
    ) -> DiagnosticTest:
        test = DiagnosticTest(
            hospital_id=hospital_id,
            test_code=test_code,
            test_name=test_name,
            category=category,
            unit=unit,
            reference_ranges=GLUCOSE_RANGES if reference_ranges is None else reference_ranges,
        )
        db_session.add(test)
        await db_session.commit()
        return test

    return _make


@pytest.fixture(scope="function")
def make_order(db_session: AsyncSession):
    async def _make(
        urgency: Urgency = Urgency.ROUTINE,
        status: str = "CREATED",
        patient_gender: Optional[str] = "male",
        patient_age: Optional[int] = 45,
        hospital_id: str = HOSPITAL_ID,
    ) -> DiagnosticOrder:
        order = DiagnosticOrder(
            hospital_id=hospital_id,
            order_number=f"DX{uuid.uuid4().hex[:8]}".upper(),
            urgency=urgency,
            status=status,
            patient_id=str(uuid.uuid4()),
            patient_number="PT2026000001",
            patient_name="John Doe",
            patient_age=patient_age,
            patient_gender=patient_gender,
            patient_phone="+1234567890",
            referring_doctor_id="doc-1",
            referring_doctor_name="Dr. Smith",
            clinical_indication="Routine screening",
        )
        db_session.add(order)
        await db_session.commit()
        return order

    return _make


@pytest.fixture(scope="function")
def make_result(service: WorkboardService, make_test, make_order):
    """Create a result through the order hook, SAMPLE_COLLECTED by default"""

    async def _make(
        category: str = "BLOOD_TEST",
        collected: bool = True,
        collected_at: Optional[datetime] = None,
        urgency: Urgency = Urgency.ROUTINE,
        reference_ranges: Optional[list] = None,
        test=None,
        order=None,
    ):
        test = test or await make_test(category=category, reference_ranges=reference_ranges)
        order = order or await make_order(urgency=urgency)
        sample_time = None
        if collected:
            sample_time = collected_at or datetime.utcnow() - timedelta(hours=1)
        return await service.create_result(HOSPITAL_ID, order.id, test.id, sample_collected_at=sample_time)

    return _make


@pytest.fixture(scope="function")
def advance_to(service: WorkboardService, technician: Caller, pathologist: Caller):
    """Drive a SAMPLE_COLLECTED tabular result forward to ``target``.

    The technician enters 300 mg/dL (HIGH); the pathologist handles QC,
    review and release.
    """
    steps = [
        (ResultStatus.IN_PROGRESS, lambda rid: service.save_entry(rid, ResultEntryUpdate(result_numeric=300), technician)),
        (ResultStatus.PENDING_QC, lambda rid: service.submit_for_review(rid, technician)),
        (ResultStatus.PENDING_REVIEW, lambda rid: service.approve_qc(rid, pathologist)),
        (ResultStatus.APPROVED, lambda rid: service.review_and_approve(rid, ReviewRequest(), pathologist)),
        (ResultStatus.RELEASED, lambda rid: service.release(rid, pathologist)),
    ]

    async def _advance(result_id: str, target: ResultStatus):
        response = None
        for status, step in steps:
            response = await step(result_id)
            if status == target:
                return response.result
        raise ValueError(f"Cannot advance to {target}")

    return _advance


def make_token(role: str, user_id: str = "user-1", hospital_id: str = HOSPITAL_ID) -> str:
    return create_access_token(subject=user_id, data={"role": role, "hospital_id": hospital_id})


@pytest.fixture(scope="function")
def auth_headers():
    """Build Authorization headers for a role"""

    def _headers(role: str, user_id: str = "user-1", hospital_id: str = HOSPITAL_ID) -> Dict[str, str]:
        return {"Authorization": f"Bearer {make_token(role, user_id, hospital_id)}"}

    return _headers


@pytest.fixture(scope="function")
async def client(db_session: AsyncSession, notifier: RecordingNotifier) -> AsyncGenerator[AsyncClient, None]:
    """Create a test client with database and notifier overrides."""

    async def override_get_session():
        yield db_session

    app.dependency_overrides[get_session] = override_get_session
    app.dependency_overrides[get_notifier] = lambda: notifier

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


# Pytest configuration
def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line(
        "markers", "unit: mark test as a unit test"
    )
    config.addinivalue_line(
        "markers", "integration: mark test as an integration test"
    )
