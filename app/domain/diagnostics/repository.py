from typing import Optional, List, Iterable, Dict, Any
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, update, func, case, and_
from sqlalchemy.orm import joinedload
from datetime import datetime

from app.domain.diagnostics.models import (
    DiagnosticTest,
    DiagnosticOrder,
    DiagnosticResult,
    ResultStatus,
    Urgency,
)

URGENCY_RANK: Dict[Urgency, int] = {
    Urgency.STAT: 0,
    Urgency.URGENT: 1,
    Urgency.ROUTINE: 2,
}

CANCELLED_ORDER_STATUS = "CANCELLED"


class DiagnosticTestRepository:
    """Repository for the test catalog entries joined by the workboard"""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_by_id(self, test_id: str) -> Optional[DiagnosticTest]:
        result = await self.db.execute(select(DiagnosticTest).where(DiagnosticTest.id == test_id))
        return result.scalar_one_or_none()


class DiagnosticOrderRepository:
    """Repository for diagnostic orders"""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_by_id(self, order_id: str, hospital_id: str) -> Optional[DiagnosticOrder]:
        result = await self.db.execute(
            select(DiagnosticOrder).where(
                DiagnosticOrder.id == order_id,
                DiagnosticOrder.hospital_id == hospital_id,
            )
        )
        return result.scalar_one_or_none()


class DiagnosticResultRepository:
    """Repository for diagnostic result data access operations.

    Lifecycle writes go through ``conditional_update``: a single UPDATE
    guarded by the expected statuses (and optionally the version that was
    read), so a racing writer makes the statement match zero rows instead
    of silently overwriting.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def create(self, result_data: dict) -> DiagnosticResult:
        result = DiagnosticResult(**result_data)
        self.db.add(result)
        await self.db.commit()
        return await self.get_by_id(result.id, result.hospital_id)

    async def get_by_id(self, result_id: str, hospital_id: str) -> Optional[DiagnosticResult]:
        """Get result with its test and order, scoped to the hospital"""
        result = await self.db.execute(
            select(DiagnosticResult)
            .options(
                joinedload(DiagnosticResult.test),
                joinedload(DiagnosticResult.order),
            )
            .where(
                DiagnosticResult.id == result_id,
                DiagnosticResult.hospital_id == hospital_id,
            )
            .execution_options(populate_existing=True)
        )
        return result.unique().scalar_one_or_none()

    def _worklist_conditions(
        self,
        hospital_id: str,
        categories: Iterable[str],
        statuses: Iterable[ResultStatus],
        urgency: Optional[Urgency] = None,
        date_from: Optional[datetime] = None,
        date_to: Optional[datetime] = None,
    ) -> list:
        conditions = [
            DiagnosticResult.hospital_id == hospital_id,
            DiagnosticResult.status.in_(list(statuses)),
            DiagnosticTest.category.in_(list(categories)),
            DiagnosticOrder.status != CANCELLED_ORDER_STATUS,
        ]

        if urgency:
            conditions.append(DiagnosticOrder.urgency == urgency)

        if date_from:
            conditions.append(DiagnosticResult.sample_collected_at >= date_from)

        if date_to:
            conditions.append(DiagnosticResult.sample_collected_at <= date_to)

        return conditions

    async def get_worklist(
        self,
        hospital_id: str,
        categories: Iterable[str],
        statuses: Iterable[ResultStatus],
        urgency: Optional[Urgency] = None,
        date_from: Optional[datetime] = None,
        date_to: Optional[datetime] = None,
        skip: int = 0,
        limit: int = 20,
    ) -> List[DiagnosticResult]:
        """Get actionable results ordered by urgency, then FIFO"""
        conditions = self._worklist_conditions(
            hospital_id, categories, statuses, urgency, date_from, date_to
        )
        urgency_rank = case(
            *[(DiagnosticOrder.urgency == level, rank) for level, rank in URGENCY_RANK.items()],
            else_=len(URGENCY_RANK),
        )

        query = (
            select(DiagnosticResult)
            .join(DiagnosticResult.test)
            .join(DiagnosticResult.order)
            .options(
                joinedload(DiagnosticResult.test),
                joinedload(DiagnosticResult.order),
            )
            .where(and_(*conditions))
            .order_by(
                urgency_rank.asc(),
                DiagnosticResult.sample_collected_at.asc(),
                DiagnosticResult.created_at.asc(),
                DiagnosticResult.id.asc(),
            )
            .offset(skip)
            .limit(limit)
        )

        result = await self.db.execute(query)
        return list(result.unique().scalars().all())

    async def count_worklist(
        self,
        hospital_id: str,
        categories: Iterable[str],
        statuses: Iterable[ResultStatus],
        urgency: Optional[Urgency] = None,
        date_from: Optional[datetime] = None,
        date_to: Optional[datetime] = None,
    ) -> int:
        conditions = self._worklist_conditions(
            hospital_id, categories, statuses, urgency, date_from, date_to
        )
        query = (
            select(func.count(DiagnosticResult.id))
            .join(DiagnosticResult.test)
            .join(DiagnosticResult.order)
            .where(and_(*conditions))
        )
        result = await self.db.execute(query)
        return result.scalar() or 0

    async def conditional_update(
        self,
        result_id: str,
        hospital_id: str,
        expected_statuses: Iterable[ResultStatus],
        values: Dict[str, Any],
        expected_version: Optional[int] = None,
    ) -> bool:
        """Apply ``values`` only if the result is still in an expected state.

        Returns False when no row matched; nothing is written in that case.
        """
        conditions = [
            DiagnosticResult.id == result_id,
            DiagnosticResult.hospital_id == hospital_id,
            DiagnosticResult.status.in_(list(expected_statuses)),
        ]
        if expected_version is not None:
            conditions.append(DiagnosticResult.version == expected_version)

        values = dict(values)
        values["version"] = DiagnosticResult.version + 1
        values["updated_at"] = datetime.utcnow()

        result = await self.db.execute(
            update(DiagnosticResult)
            .where(and_(*conditions))
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()
        return result.rowcount > 0

    async def cancel_for_order(
        self,
        order_id: str,
        hospital_id: str,
        active_statuses: Iterable[ResultStatus],
        values: Dict[str, Any],
    ) -> int:
        """Move every active result of an order to a terminal status"""
        values = dict(values)
        values["version"] = DiagnosticResult.version + 1
        values["updated_at"] = datetime.utcnow()

        result = await self.db.execute(
            update(DiagnosticResult)
            .where(
                DiagnosticResult.order_id == order_id,
                DiagnosticResult.hospital_id == hospital_id,
                DiagnosticResult.status.in_(list(active_statuses)),
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()
        return result.rowcount
