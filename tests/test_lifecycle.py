import pytest
from unittest.mock import AsyncMock

from app.core.exceptions import ValidationError, ConflictError, NotFoundError, AuthorizationError
from app.core.permissions import Caller, DiagnosticRoles
from app.domain.diagnostics.models import ResultStatus, Interpretation, ValueShape
from app.api.v1.workboard.schemas import ResultEntryUpdate, ReviewRequest, AmendRequest

pytestmark = pytest.mark.integration


async def snapshot(service, result_id, caller):
    form = await service.get_entry_form(result_id, caller)
    return form.result


class TestResultCreation:

    async def test_create_collected_result(self, make_result):
        result = await make_result()
        assert result.status == ResultStatus.SAMPLE_COLLECTED
        assert result.value_shape == ValueShape.TABULAR
        assert result.result_unit == "mg/dL"
        assert result.version == 1
        assert result.amendment_count == 0
        assert result.visible_to_patient is False

    async def test_create_pending_sample(self, make_result):
        result = await make_result(collected=False)
        assert result.status == ResultStatus.PENDING_SAMPLE
        assert result.sample_collected_at is None

    async def test_shape_fixed_from_category(self, make_result):
        imaging = await make_result(category="IMAGING")
        cardiac = await make_result(category="CARDIAC")
        assert imaging.value_shape == ValueShape.NARRATIVE
        assert cardiac.value_shape == ValueShape.GENERIC

    async def test_create_for_unknown_order(self, service, make_test):
        test = await make_test()
        with pytest.raises(NotFoundError):
            await service.create_result("HOSP-001", "missing-order", test.id)

    async def test_record_sample_collection(self, service, make_result, technician):
        result = await make_result(collected=False)

        collected = await service.record_sample_collection(result.id, "HOSP-001", technician.user_id)
        assert collected.status == ResultStatus.SAMPLE_COLLECTED
        assert collected.sample_collected_at is not None

        with pytest.raises(ConflictError):
            await service.record_sample_collection(result.id, "HOSP-001", technician.user_id)

    async def test_entry_blocked_before_sample(self, service, make_result, technician):
        result = await make_result(collected=False)
        with pytest.raises(ValidationError) as exc_info:
            await service.save_entry(result.id, ResultEntryUpdate(result_numeric=90), technician)
        assert "PENDING_SAMPLE" in exc_info.value.message


class TestSaveEntry:

    async def test_save_computes_interpretation(self, service, make_result, technician):
        result = await make_result()

        response = await service.save_entry(result.id, ResultEntryUpdate(result_numeric=300), technician)

        saved = response.result
        assert saved.status == ResultStatus.IN_PROGRESS
        assert saved.result_numeric == 300
        assert saved.interpretation == Interpretation.HIGH
        assert saved.is_critical is False
        assert saved.reference_min == 70
        assert saved.reference_max == 110
        assert saved.reference_text == "70 - 110 mg/dL"
        assert saved.entered_by == technician.user_id
        assert saved.entered_at is not None
        assert response.message == "Result saved successfully"

    async def test_critical_value_flags_result(self, service, make_result, technician):
        result = await make_result()
        response = await service.save_entry(result.id, ResultEntryUpdate(result_numeric=450), technician)
        assert response.result.interpretation == Interpretation.CRITICAL_HIGH
        assert response.result.is_critical is True

    async def test_unusable_catalog_ranges_leave_interpretation_unset(self, service, make_result, technician):
        result = await make_result(reference_ranges={"min": 70, "max": 110})
        response = await service.save_entry(result.id, ResultEntryUpdate(result_numeric=300), technician)
        assert response.result.result_numeric == 300
        assert response.result.interpretation is None
        assert response.result.is_critical is False

    async def test_partial_saves_merge(self, service, make_result, technician):
        result = await make_result()

        await service.save_entry(result.id, ResultEntryUpdate(result_numeric=90), technician)
        response = await service.save_entry(
            result.id, ResultEntryUpdate(technician_notes="Sample slightly hemolysed"), technician
        )

        assert response.result.result_numeric == 90
        assert response.result.interpretation == Interpretation.NORMAL
        assert response.result.technician_notes == "Sample slightly hemolysed"

    async def test_null_numeric_clears_interpretation(self, service, make_result, technician):
        result = await make_result()
        await service.save_entry(result.id, ResultEntryUpdate(result_numeric=450), technician)

        response = await service.save_entry(result.id, ResultEntryUpdate(result_numeric=None), technician)

        assert response.result.result_numeric is None
        assert response.result.interpretation is None
        assert response.result.is_critical is False

    async def test_no_ranges_leaves_interpretation_unset(self, service, make_result, technician):
        result = await make_result(reference_ranges=[])
        response = await service.save_entry(result.id, ResultEntryUpdate(result_numeric=12), technician)
        assert response.result.interpretation is None
        assert response.result.is_critical is False

    async def test_rejects_fields_of_other_shape(self, service, make_result, technician):
        result = await make_result()
        with pytest.raises(ValidationError) as exc_info:
            await service.save_entry(result.id, ResultEntryUpdate(report_text="Looks fine"), technician)
        assert exc_info.value.details["fields"] == ["report_text"]

        after = await snapshot(service, result.id, technician)
        assert after.status == ResultStatus.SAMPLE_COLLECTED
        assert after.version == result.version

    async def test_narrative_rejects_numeric(self, service, make_result, radiographer):
        result = await make_result(category="IMAGING")
        with pytest.raises(ValidationError):
            await service.save_entry(result.id, ResultEntryUpdate(result_numeric=5), radiographer)

    async def test_category_forbidden(self, service, make_result, radiographer):
        result = await make_result()
        with pytest.raises(AuthorizationError):
            await service.save_entry(result.id, ResultEntryUpdate(result_numeric=90), radiographer)

    async def test_other_hospital_not_found(self, service, make_result):
        result = await make_result()
        outsider = Caller(user_id="tech-9", role=DiagnosticRoles.LAB_TECHNICIAN, hospital_id="HOSP-002")
        with pytest.raises(NotFoundError):
            await service.save_entry(result.id, ResultEntryUpdate(result_numeric=90), outsider)


class TestSubmit:

    async def test_submit_tabular_without_value_fails(self, service, make_result, technician):
        result = await make_result()

        with pytest.raises(ValidationError) as exc_info:
            await service.submit_for_review(result.id, technician)

        assert "Result value is required" in exc_info.value.message
        after = await snapshot(service, result.id, technician)
        assert after.status == ResultStatus.SAMPLE_COLLECTED

    async def test_submit_with_components(self, service, make_result, technician):
        result = await make_result()
        await service.save_entry(
            result.id,
            ResultEntryUpdate(component_results=[{"name": "WBC", "value": 7.2}]),
            technician,
        )
        response = await service.submit_for_review(result.id, technician)
        assert response.result.status == ResultStatus.PENDING_QC

    async def test_submit_narrative_requires_report(self, service, make_result, radiographer):
        result = await make_result(category="IMAGING")

        with pytest.raises(ValidationError) as exc_info:
            await service.submit_for_review(result.id, radiographer)
        assert "Report text or impressions required" in exc_info.value.message

        await service.save_entry(result.id, ResultEntryUpdate(impressions="No acute findings"), radiographer)
        response = await service.submit_for_review(result.id, radiographer)
        assert response.result.status == ResultStatus.PENDING_QC

    async def test_generic_submit_has_no_requirement(self, service, make_result, make_test):
        test = await make_test(category="CARDIAC", test_code="ECG12", reference_ranges=[])
        result = await make_result(test=test)
        ecg = Caller(user_id="ecg-1", role=DiagnosticRoles.ECG, hospital_id="HOSP-001")

        response = await service.submit_for_review(result.id, ecg)
        assert response.result.status == ResultStatus.PENDING_QC

    async def test_submit_stamps_and_keeps_notes(self, service, make_result, technician):
        result = await make_result()
        await service.save_entry(
            result.id, ResultEntryUpdate(result_value="Positive", technician_notes="first"), technician
        )

        response = await service.submit_for_review(result.id, technician)
        assert response.result.technician_notes == "first"
        assert response.result.submitted_by == technician.user_id
        assert response.result.submitted_at is not None

    async def test_submit_overwrites_notes_when_given(self, service, make_result, technician):
        result = await make_result()
        await service.save_entry(
            result.id, ResultEntryUpdate(result_value="Positive", technician_notes="first"), technician
        )
        response = await service.submit_for_review(result.id, technician, technician_notes="second")
        assert response.result.technician_notes == "second"

    async def test_submit_twice_conflicts(self, service, make_result, technician):
        result = await make_result()
        await service.save_entry(result.id, ResultEntryUpdate(result_numeric=90), technician)
        await service.submit_for_review(result.id, technician)

        with pytest.raises(ConflictError):
            await service.submit_for_review(result.id, technician)


class TestQualityControl:

    async def test_approve(self, service, make_result, technician, pathologist, advance_to):
        result = await make_result()
        await advance_to(result.id, ResultStatus.PENDING_QC)

        response = await service.approve_qc(result.id, pathologist, qc_notes="Calibrated")
        assert response.result.status == ResultStatus.PENDING_REVIEW
        assert response.result.qc_notes == "Calibrated"
        assert response.result.qc_approved_by == pathologist.user_id

    async def test_approve_requires_pending_qc(self, service, make_result, pathologist):
        result = await make_result()
        with pytest.raises(ConflictError) as exc_info:
            await service.approve_qc(result.id, pathologist)
        assert exc_info.value.message == "Result is not pending QC"

    async def test_reject_without_reason(self, service, make_result, technician, pathologist, advance_to):
        result = await make_result()
        await advance_to(result.id, ResultStatus.PENDING_QC)

        for reason in (None, "", "   "):
            with pytest.raises(ValidationError):
                await service.reject_qc(result.id, pathologist, reason)

        after = await snapshot(service, result.id, pathologist)
        assert after.status == ResultStatus.PENDING_QC

    async def test_reject_preserves_values(self, service, make_result, technician, pathologist, advance_to):
        result = await make_result()
        await advance_to(result.id, ResultStatus.PENDING_QC)

        response = await service.reject_qc(result.id, pathologist, "illegible")

        rejected = response.result
        assert rejected.status == ResultStatus.IN_PROGRESS
        assert rejected.qc_rejection_reason == "illegible"
        assert rejected.qc_rejected_by == pathologist.user_id
        assert rejected.result_numeric == 300
        assert rejected.interpretation == Interpretation.HIGH


class TestReviewAndRelease:

    async def test_review_approves(self, service, make_result, technician, pathologist, advance_to):
        result = await make_result()
        await advance_to(result.id, ResultStatus.PENDING_REVIEW)

        response = await service.review_and_approve(
            result.id,
            ReviewRequest(reviewer_notes="Agree", recommendations="Repeat fasting test"),
            pathologist,
        )

        reviewed = response.result
        assert reviewed.status == ResultStatus.APPROVED
        assert reviewed.reviewer_notes == "Agree"
        assert reviewed.recommendations == "Repeat fasting test"
        assert reviewed.interpretation == Interpretation.HIGH
        assert reviewed.reviewed_by == pathologist.user_id

    async def test_interpretation_override_rederives_critical(self, service, make_result, technician, pathologist, advance_to):
        result = await make_result()
        await advance_to(result.id, ResultStatus.PENDING_REVIEW)

        response = await service.review_and_approve(
            result.id, ReviewRequest(interpretation=Interpretation.CRITICAL_HIGH), pathologist
        )
        assert response.result.interpretation == Interpretation.CRITICAL_HIGH
        assert response.result.is_critical is True

    async def test_narrative_interpretation_override_rejected(self, service, make_result, pathologist):
        result = await make_result(category="PATHOLOGY")
        await service.save_entry(result.id, ResultEntryUpdate(report_text="Benign tissue"), pathologist)
        await service.submit_for_review(result.id, pathologist)
        await service.approve_qc(result.id, pathologist)

        with pytest.raises(ValidationError):
            await service.review_and_approve(
                result.id, ReviewRequest(interpretation=Interpretation.HIGH), pathologist
            )

        response = await service.review_and_approve(
            result.id, ReviewRequest(impressions="Benign"), pathologist
        )
        assert response.result.is_critical is False
        assert response.result.interpretation is None

    async def test_review_requires_qc(self, service, make_result, technician, pathologist, advance_to):
        result = await make_result()
        await advance_to(result.id, ResultStatus.PENDING_QC)
        with pytest.raises(ConflictError):
            await service.review_and_approve(result.id, ReviewRequest(), pathologist)

    async def test_release_signals_notification(self, service, notifier, make_result, technician, pathologist, advance_to):
        result = await make_result()
        await advance_to(result.id, ResultStatus.APPROVED)

        response = await service.release(result.id, pathologist)

        assert response.result.status == ResultStatus.RELEASED
        assert response.result.visible_to_patient is True
        assert response.result.released_by == pathologist.user_id
        assert len(notifier.sent) == 1
        assert notifier.sent[0]["result_id"] == result.id
        assert notifier.sent[0]["is_critical"] is False

    async def test_release_survives_notifier_failure(self, service, notifier, make_result, technician, pathologist, advance_to):
        result = await make_result()
        await advance_to(result.id, ResultStatus.APPROVED)
        notifier.fail = True

        response = await service.release(result.id, pathologist)

        assert response.result.status == ResultStatus.RELEASED
        assert notifier.sent == []

    async def test_release_requires_approval(self, service, make_result, technician, pathologist, advance_to):
        result = await make_result()
        await advance_to(result.id, ResultStatus.PENDING_REVIEW)
        with pytest.raises(ConflictError):
            await service.release(result.id, pathologist)


class TestAmendment:

    async def test_amend_appends_snapshot(self, service, make_result, technician, pathologist, advance_to):
        result = await make_result()
        await advance_to(result.id, ResultStatus.RELEASED)

        response = await service.amend(
            result.id, AmendRequest(reason="transcription error", result_numeric=310), pathologist
        )

        amended = response.result
        assert amended.status == ResultStatus.AMENDED
        assert amended.result_numeric == 310
        assert amended.interpretation == Interpretation.HIGH
        assert amended.amendment_reason == "transcription error"
        assert amended.amendment_count == 1

        history = await service.get_amendment_history(result.id, pathologist)
        assert len(history.amendments) == 1
        entry = history.amendments[0]
        assert entry.result_numeric == 300
        assert entry.interpretation == Interpretation.HIGH
        assert entry.amended_by == pathologist.user_id
        assert entry.amended_at is not None

    async def test_amend_recomputes_to_critical(self, service, make_result, technician, pathologist, advance_to):
        result = await make_result()
        await advance_to(result.id, ResultStatus.RELEASED)

        response = await service.amend(result.id, AmendRequest(reason="wrong sample", result_numeric=30), pathologist)
        assert response.result.interpretation == Interpretation.CRITICAL_LOW
        assert response.result.is_critical is True

    async def test_explicit_interpretation_wins(self, service, make_result, technician, pathologist, advance_to):
        result = await make_result()
        await advance_to(result.id, ResultStatus.RELEASED)

        response = await service.amend(
            result.id,
            AmendRequest(reason="clinical correlation", result_numeric=30, interpretation=Interpretation.LOW),
            pathologist,
        )
        assert response.result.interpretation == Interpretation.LOW
        assert response.result.is_critical is False

    async def test_amend_keeps_prior_narrative_fields(self, service, make_result, pathologist):
        result = await make_result(category="PATHOLOGY", reference_ranges=[])
        await service.save_entry(
            result.id,
            ResultEntryUpdate(report_text="Benign", recommendations="Repeat in 6 months"),
            pathologist,
        )
        await service.submit_for_review(result.id, pathologist)
        await service.approve_qc(result.id, pathologist)
        await service.review_and_approve(result.id, ReviewRequest(), pathologist)
        await service.release(result.id, pathologist)

        response = await service.amend(
            result.id, AmendRequest(reason="pathologist addendum", recommendations="Biopsy now"), pathologist
        )

        assert response.result.recommendations == "Biopsy now"
        entry = (await service.get_amendment_history(result.id, pathologist)).amendments[0]
        assert entry.recommendations == "Repeat in 6 months"
        assert entry.report_text == "Benign"

    async def test_amend_requires_reason(self, service, make_result, technician, pathologist, advance_to):
        result = await make_result()
        await advance_to(result.id, ResultStatus.RELEASED)

        with pytest.raises(ValidationError):
            await service.amend(result.id, AmendRequest(result_numeric=310), pathologist)

        history = await service.get_amendment_history(result.id, pathologist)
        assert history.amendments == []
        assert history.status == ResultStatus.RELEASED

    async def test_amend_requires_released(self, service, make_result, technician, pathologist, advance_to):
        result = await make_result()
        await advance_to(result.id, ResultStatus.APPROVED)
        with pytest.raises(ConflictError):
            await service.amend(result.id, AmendRequest(reason="typo", result_numeric=1), pathologist)

    async def test_amend_rejects_other_shape_fields(self, service, make_result, technician, pathologist, advance_to):
        result = await make_result()
        await advance_to(result.id, ResultStatus.RELEASED)
        with pytest.raises(ValidationError):
            await service.amend(result.id, AmendRequest(reason="typo", report_text="x"), pathologist)


class TestConcurrency:

    async def test_stale_version_matches_nothing(self, service, make_result, technician):
        result = await make_result()
        await service.save_entry(result.id, ResultEntryUpdate(result_numeric=90), technician)

        written = await service.result_repo.conditional_update(
            result.id,
            "HOSP-001",
            [ResultStatus.IN_PROGRESS],
            {"status": ResultStatus.PENDING_QC},
            expected_version=result.version,
        )

        assert written is False
        after = await snapshot(service, result.id, technician)
        assert after.status == ResultStatus.IN_PROGRESS

    async def test_lost_race_is_conflict(self, service, make_result, technician):
        result = await make_result()
        await service.save_entry(result.id, ResultEntryUpdate(result_numeric=90), technician)
        service.result_repo.conditional_update = AsyncMock(return_value=False)

        with pytest.raises(ConflictError) as exc_info:
            await service.submit_for_review(result.id, technician)
        assert exc_info.value.message == "Result is no longer in the expected state"

    async def test_every_write_bumps_version(self, service, make_result, technician):
        result = await make_result()
        first = await service.save_entry(result.id, ResultEntryUpdate(result_numeric=90), technician)
        second = await service.submit_for_review(result.id, technician)
        assert first.result.version == result.version + 1
        assert second.result.version == result.version + 2


class TestOrderCancellation:

    async def test_cancel_active_results(self, service, make_result, make_test, make_order, technician, pathologist, advance_to):
        order = await make_order()
        glucose = await make_test()
        urea = await make_test(test_code="UREA", test_name="Blood Urea")
        first = await make_result(test=glucose, order=order)
        second = await make_result(test=urea, order=order)
        await advance_to(second.id, ResultStatus.RELEASED)

        count = await service.cancel_order_results(order.id, "HOSP-001", "desk-1", "Patient left")

        assert count == 1
        cancelled = await snapshot(service, first.id, technician)
        released = await snapshot(service, second.id, technician)
        assert cancelled.status == ResultStatus.CANCELLED
        assert cancelled.cancellation_reason == "Patient left"
        assert cancelled.cancelled_by == "desk-1"
        assert released.status == ResultStatus.RELEASED

    async def test_reject_order_results(self, service, make_result, make_order, technician):
        order = await make_order()
        result = await make_result(order=order)

        count = await service.cancel_order_results(
            order.id, "HOSP-001", "lab-1", "Sample clotted", terminal_status=ResultStatus.REJECTED
        )

        assert count == 1
        assert (await snapshot(service, result.id, technician)).status == ResultStatus.REJECTED

    async def test_cancel_validation(self, service, make_order):
        order = await make_order()
        with pytest.raises(ValidationError):
            await service.cancel_order_results(order.id, "HOSP-001", "desk-1", "")
        with pytest.raises(ValidationError):
            await service.cancel_order_results(
                order.id, "HOSP-001", "desk-1", "x", terminal_status=ResultStatus.RELEASED
            )
        with pytest.raises(NotFoundError):
            await service.cancel_order_results("missing", "HOSP-001", "desk-1", "x")

    async def test_cancelled_result_is_frozen(self, service, make_result, make_order, technician):
        order = await make_order()
        result = await make_result(order=order)
        await service.cancel_order_results(order.id, "HOSP-001", "desk-1", "Duplicate order")

        with pytest.raises(ValidationError):
            await service.save_entry(result.id, ResultEntryUpdate(result_numeric=90), technician)
        with pytest.raises(ConflictError):
            await service.submit_for_review(result.id, technician)


async def test_end_to_end_lifecycle(service, make_result, technician, pathologist):
    result = await make_result()

    saved = await service.save_entry(result.id, ResultEntryUpdate(result_numeric=300), technician)
    assert saved.result.interpretation == Interpretation.HIGH
    assert saved.result.is_critical is False

    submitted = await service.submit_for_review(result.id, technician)
    assert submitted.result.status == ResultStatus.PENDING_QC

    rejected = await service.reject_qc(result.id, pathologist, "illegible")
    assert rejected.result.status == ResultStatus.IN_PROGRESS
    assert rejected.result.result_numeric == 300

    await service.submit_for_review(result.id, technician)
    await service.approve_qc(result.id, pathologist)
    await service.review_and_approve(result.id, ReviewRequest(), pathologist)
    released = await service.release(result.id, pathologist)
    assert released.result.status == ResultStatus.RELEASED
    assert released.result.visible_to_patient is True

    amended = await service.amend(
        result.id, AmendRequest(reason="transcription error", result_numeric=310), pathologist
    )
    assert amended.result.status == ResultStatus.AMENDED
    assert amended.result.result_numeric == 310

    history = await service.get_amendment_history(result.id, pathologist)
    assert len(history.amendments) == 1
    assert history.amendments[0].result_numeric == 300
    assert history.amendments[0].interpretation == Interpretation.HIGH
