import asyncio
import uuid
from datetime import datetime
import os
import sys

# Add project root to python path
sys.path.append(os.getcwd())

from app.infrastructure.database import AsyncSessionLocal, init_db
from app.core.permissions import Caller, DiagnosticRoles
from app.domain.diagnostics.models import DiagnosticTest, DiagnosticOrder, Urgency
from app.domain.diagnostics.service import WorkboardService
from app.api.v1.workboard.schemas import ResultEntryUpdate, ReviewRequest, AmendRequest


async def run_workflow():
    print("Initializing database...")
    await init_db()

    hospital_id = f"HOSP-{uuid.uuid4().hex[:6]}"
    technician = Caller(user_id="tech-1", role=DiagnosticRoles.LAB_TECHNICIAN, hospital_id=hospital_id)
    pathologist = Caller(user_id="path-1", role=DiagnosticRoles.PATHOLOGY, hospital_id=hospital_id)

    async with AsyncSessionLocal() as db:
        try:
            print("\n--- 1. Setup Data ---")
            test = DiagnosticTest(
                hospital_id=hospital_id,
                test_code="GLU",
                test_name="Fasting Blood Glucose",
                category="BLOOD_TEST",
                unit="mg/dL",
                reference_ranges=[{"gender": "all", "min": 70, "max": 110, "criticalMin": 54, "criticalMax": 400}],
            )
            order = DiagnosticOrder(
                hospital_id=hospital_id,
                order_number=f"DX{uuid.uuid4().hex[:8]}".upper(),
                urgency=Urgency.ROUTINE,
                patient_id=str(uuid.uuid4()),
                patient_name="John Doe",
                patient_age=45,
                patient_gender="male",
            )
            db.add_all([test, order])
            await db.commit()
            print(f"Created Order: {order.order_number} for test {test.test_code}")

            service = WorkboardService(db)

            print("\n--- 2. Create Result ---")
            result = await service.create_result(hospital_id, order.id, test.id, sample_collected_at=datetime.utcnow())
            print(f"Result {result.id} in {result.status.value}")

            print("\n--- 3. Enter Value ---")
            saved = await service.save_entry(result.id, ResultEntryUpdate(result_numeric=300), technician)
            print(f"Interpretation: {saved.result.interpretation.value}, critical: {saved.result.is_critical}")

            print("\n--- 4. Submit, Reject, Resubmit ---")
            await service.submit_for_review(result.id, technician)
            rejected = await service.reject_qc(result.id, pathologist, "illegible")
            print(f"After QC reject: {rejected.result.status.value}, value still {rejected.result.result_numeric}")
            await service.submit_for_review(result.id, technician)

            print("\n--- 5. QC, Review, Release ---")
            await service.approve_qc(result.id, pathologist)
            await service.review_and_approve(result.id, ReviewRequest(reviewer_notes="Consistent with history"), pathologist)
            released = await service.release(result.id, pathologist)
            print(f"Released: {released.result.status.value}, visible to patient: {released.result.visible_to_patient}")

            print("\n--- 6. Amend ---")
            amended = await service.amend(
                result.id,
                AmendRequest(reason="transcription error", result_numeric=310),
                pathologist,
            )
            history = await service.get_amendment_history(result.id, pathologist)
            snapshot = history.amendments[0]
            print(f"Status: {amended.result.status.value}, current value {amended.result.result_numeric}")
            print(f"History entries: {len(history.amendments)} (previous {snapshot.result_numeric}/{snapshot.interpretation.value})")

            print("\nWORKFLOW COMPLETED SUCCESSFULLY!")

        except Exception as e:
            print(f"\nWORKFLOW FAILED: {str(e)}")
            import traceback
            traceback.print_exc()


if __name__ == "__main__":
    asyncio.run(run_workflow())
