from datetime import timedelta

import pytest

from proescrow.core.clock import as_utc
from proescrow.core.errors import InvalidTransition
from proescrow.models.booking import Booking
from proescrow.models.enums import BookingStatus, CaseStatus, IssueCategory, JobKind, JobStatus
from proescrow.models.escrow import EscrowLedger
from proescrow.models.rectification import RectificationCase
from proescrow.services import rectification_service, scheduler_service


def _reload(db, booking_id):
    db.expire_all()
    return db.get(Booking, booking_id), db.get(EscrowLedger, booking_id)


class TestReportIssue:

    def test_report_freezes_escrow_and_moves_to_rectification(self, db, flow):
        booking_id = flow.to("observation", tier=2)
        reported_at = flow.completed_at + timedelta(days=1)
        case = rectification_service.report_issue(
            db, booking_id, "grout cracking", IssueCategory.POOR_QUALITY,
            actor_id="client-1", now=reported_at,
        )
        booking, ledger = _reload(db, booking_id)
        assert booking.status == BookingStatus.RECTIFICATION
        assert ledger.frozen is True
        assert ledger.frozen_reason == "rectification"
        assert case.attempt_no == 1
        assert as_utc(case.provider_response_deadline) == reported_at + timedelta(hours=24)
        job = scheduler_service.get_job(db, JobKind.RECTIFICATION_RESPONSE, booking_id, ref_id=case.id)
        assert job.status == JobStatus.PENDING

    def test_report_only_during_observation(self, db, flow):
        booking_id = flow.to("checked_in")
        with pytest.raises(InvalidTransition):
            rectification_service.report_issue(db, booking_id, "too early", now=flow.completed_at)

    def test_third_report_escalates(self, db, flow):
        booking_id = flow.to("observation", tier=4)
        t = flow.completed_at
        for n in range(2):
            case = rectification_service.report_issue(db, booking_id, f"issue {n}", now=t + timedelta(hours=n * 2 + 1))
            rectification_service.withdraw(db, case.id, now=t + timedelta(hours=n * 2 + 2))

        case = rectification_service.report_issue(db, booking_id, "issue again", now=t + timedelta(hours=10))
        booking, ledger = _reload(db, booking_id)
        db.refresh(case)
        assert case.attempt_no == 3
        assert case.status == CaseStatus.ESCALATED
        assert booking.status == BookingStatus.DISPUTED
        assert ledger.frozen is True


class TestProviderResponse:

    def _reported(self, db, flow):
        booking_id = flow.to("observation", tier=4)
        reported_at = flow.completed_at + timedelta(hours=1)
        case = rectification_service.report_issue(db, booking_id, "door sticks", now=reported_at)
        return booking_id, case, reported_at

    def test_fix_date_must_be_within_deadline(self, db, flow):
        _, case, reported_at = self._reported(db, flow)
        with pytest.raises(ValueError):
            rectification_service.accept_and_schedule(
                db, case.id, fix_date=reported_at + timedelta(hours=80), now=reported_at + timedelta(hours=1),
            )

    def test_accept_complete_and_window_lapses(self, db, flow):
        booking_id, case, reported_at = self._reported(db, flow)
        accepted_at = reported_at + timedelta(hours=2)
        rectification_service.accept_and_schedule(
            db, case.id, fix_date=accepted_at + timedelta(days=1), notes="plane the door", now=accepted_at,
        )
        db.refresh(case)
        assert case.status == CaseStatus.FIX_SCHEDULED

        fixed_at = accepted_at + timedelta(days=1, hours=2)
        rectification_service.complete_fix(db, case.id, notes="planed", now=fixed_at)
        booking, ledger = _reload(db, booking_id)
        case = db.get(RectificationCase, case.id)
        assert booking.status == BookingStatus.OBSERVATION
        assert case.status == CaseStatus.FIX_COMPLETE
        assert as_utc(case.mini_observation_ends_at) == fixed_at + timedelta(days=2)
        assert ledger.frozen is True

        scheduler_service.run_due_jobs(db, now=fixed_at + timedelta(days=2, minutes=1))
        booking, ledger = _reload(db, booking_id)
        case = db.get(RectificationCase, case.id)
        assert case.status == CaseStatus.RESOLVED
        assert case.resolution == "window_lapsed"
        assert booking.status == BookingStatus.OBSERVATION
        assert ledger.frozen is False
        assert ledger.balance_released is False

    def test_rejecting_refix_opens_second_case(self, db, flow):
        booking_id, case, reported_at = self._reported(db, flow)
        rectification_service.accept_and_schedule(db, case.id, now=reported_at + timedelta(hours=1))
        rectification_service.complete_fix(db, case.id, now=reported_at + timedelta(hours=5))
        second = rectification_service.report_issue(db, booking_id, "still sticks", now=reported_at + timedelta(hours=8))

        booking, ledger = _reload(db, booking_id)
        first = db.get(RectificationCase, case.id)
        assert first.status == CaseStatus.RESOLVED
        assert first.resolution == "reopened"
        assert second.attempt_no == 2
        assert booking.status == BookingStatus.RECTIFICATION
        assert ledger.frozen is True
        mini = scheduler_service.get_job(db, JobKind.MINI_OBSERVATION_END, booking_id, ref_id=case.id)
        assert mini.status == JobStatus.CANCELLED

    def test_unfixed_case_escalates_at_deadline(self, db, flow):
        booking_id, case, reported_at = self._reported(db, flow)
        accepted_at = reported_at + timedelta(hours=1)
        rectification_service.accept_and_schedule(db, case.id, now=accepted_at)
        scheduler_service.run_due_jobs(db, now=accepted_at + timedelta(hours=72, minutes=1))
        booking, _ = _reload(db, booking_id)
        assert booking.status == BookingStatus.DISPUTED
        assert db.get(RectificationCase, case.id).status == CaseStatus.ESCALATED

    def test_dispute_escalates_when_unresolved(self, db, flow):
        booking_id, case, reported_at = self._reported(db, flow)
        disputed_at = reported_at + timedelta(hours=3)
        rectification_service.dispute(db, case.id, reason="door was fine on handover", now=disputed_at)
        assert scheduler_service.get_job(
            db, JobKind.RECTIFICATION_RESPONSE, booking_id, ref_id=case.id,
        ).status == JobStatus.CANCELLED

        scheduler_service.run_due_jobs(db, now=disputed_at + timedelta(hours=71))
        booking, _ = _reload(db, booking_id)
        assert booking.status == BookingStatus.RECTIFICATION

        scheduler_service.run_due_jobs(db, now=disputed_at + timedelta(hours=72))
        booking, ledger = _reload(db, booking_id)
        assert booking.status == BookingStatus.DISPUTED
        assert ledger.frozen is True

    def test_client_withdraws_disputed_case(self, db, flow):
        booking_id, case, reported_at = self._reported(db, flow)
        rectification_service.dispute(db, case.id, now=reported_at + timedelta(hours=1))
        rectification_service.withdraw(db, case.id, actor_id="client-1", now=reported_at + timedelta(hours=2))
        booking, ledger = _reload(db, booking_id)
        assert booking.status == BookingStatus.OBSERVATION
        assert ledger.frozen is False
        assert scheduler_service.get_job(
            db, JobKind.RECTIFICATION_DISPUTE, booking_id, ref_id=case.id,
        ).status == JobStatus.CANCELLED

    def test_confirm_fix_requires_completed_fix(self, db, flow):
        _, case, reported_at = self._reported(db, flow)
        rectification_service.accept_and_schedule(db, case.id, now=reported_at + timedelta(hours=1))
        with pytest.raises(InvalidTransition):
            rectification_service.confirm_fix(db, case.id, now=reported_at + timedelta(hours=2))


class TestManualEscalation:

    def _reported(self, db, flow):
        booking_id = flow.to("observation", tier=2)
        reported_at = flow.completed_at + timedelta(hours=1)
        case = rectification_service.report_issue(db, booking_id, "tiles lifting", now=reported_at)
        return booking_id, case, reported_at

    def test_client_escalates_before_deadline(self, db, flow):
        booking_id, case, reported_at = self._reported(db, flow)
        rectification_service.escalate(
            db, case.id, "provider stopped answering", actor_id="client-1", now=reported_at + timedelta(hours=2),
        )
        booking, ledger = _reload(db, booking_id)
        case = db.get(RectificationCase, case.id)
        assert case.status == CaseStatus.ESCALATED
        assert booking.status == BookingStatus.DISPUTED
        assert ledger.frozen is True
        assert scheduler_service.get_job(
            db, JobKind.RECTIFICATION_RESPONSE, booking_id, ref_id=case.id,
        ).status == JobStatus.CANCELLED

    def test_escalate_during_reinspection(self, db, flow):
        booking_id, case, reported_at = self._reported(db, flow)
        rectification_service.accept_and_schedule(db, case.id, now=reported_at + timedelta(hours=1))
        rectification_service.complete_fix(db, case.id, now=reported_at + timedelta(hours=4))
        rectification_service.escalate(db, case.id, "fix made it worse", now=reported_at + timedelta(hours=6))
        booking, ledger = _reload(db, booking_id)
        assert booking.status == BookingStatus.DISPUTED
        assert ledger.frozen is True

    def test_resolved_case_cannot_be_escalated(self, db, flow):
        booking_id, case, reported_at = self._reported(db, flow)
        rectification_service.withdraw(db, case.id, now=reported_at + timedelta(hours=1))
        with pytest.raises(InvalidTransition):
            rectification_service.escalate(db, case.id, now=reported_at + timedelta(hours=2))
        booking, _ = _reload(db, booking_id)
        assert booking.status == BookingStatus.OBSERVATION
