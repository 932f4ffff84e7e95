"""Persisted deadlines: auto-release, deferral while frozen, retries."""
from datetime import timedelta

from proescrow.core.clock import as_utc
from proescrow.models.booking import Booking
from proescrow.models.enums import BookingStatus, CaseStatus, JobKind, JobStatus, ReleaseKind
from proescrow.models.escrow import EscrowLedger
from proescrow.services import booking_service, rectification_service, scheduler_service


def _reload(db, booking_id):
    db.expire_all()
    return db.get(Booking, booking_id), db.get(EscrowLedger, booking_id)


class TestAutoRelease:

    def test_running_twice_releases_once(self, db, flow):
        booking_id = flow.to("observation")
        release_at = flow.completed_at + timedelta(days=3)
        first = scheduler_service.run_due_jobs(db, now=release_at + timedelta(minutes=1))
        second = scheduler_service.run_due_jobs(db, now=release_at + timedelta(minutes=2))
        assert first["done"] == 1
        assert second["due"] == 0

        job = scheduler_service.get_job(db, JobKind.AUTO_RELEASE, booking_id)
        # a stray direct re-run is a no-op too
        assert booking_service.handle_auto_release(db, job, release_at) == JobStatus.DONE
        db.commit()
        booking, ledger = _reload(db, booking_id)
        assert booking.status == BookingStatus.RELEASED
        assert ledger.released_amount == 10000

    def test_window_length_follows_tier(self, db, flow):
        booking_id = flow.to("observation", tier=4)
        job = scheduler_service.get_job(db, JobKind.AUTO_RELEASE, booking_id)
        assert as_utc(job.due_at) == flow.completed_at + timedelta(days=14)

    def test_halted_booking_is_skipped(self, db, flow):
        from proescrow.services.locking import halt_booking

        booking_id = flow.to("observation")
        halt_booking(db, booking_id, "operator review")
        counts = scheduler_service.run_due_jobs(db, now=flow.completed_at + timedelta(days=4))
        assert counts["skipped"] == 1
        booking, ledger = _reload(db, booking_id)
        assert booking.status == BookingStatus.OBSERVATION
        assert ledger.balance_released is False


class TestDeferral:

    def test_deadline_during_rectification_is_deferred_then_rearmed(self, db, flow):
        booking_id = flow.to("observation", tier=1)
        tc = flow.completed_at
        release_at = tc + timedelta(days=3)

        case = rectification_service.report_issue(db, booking_id, "tap still drips", now=tc + timedelta(days=1))
        rectification_service.accept_and_schedule(
            db, case.id, fix_date=tc + timedelta(days=2), notes="will replace washer", now=tc + timedelta(days=1, hours=1),
        )

        counts = scheduler_service.run_due_jobs(db, now=release_at + timedelta(minutes=1))
        assert counts["deferred"] == 1
        booking, ledger = _reload(db, booking_id)
        assert booking.status == BookingStatus.RECTIFICATION
        assert ledger.frozen is True
        assert ledger.balance_released is False
        assert scheduler_service.get_job(db, JobKind.AUTO_RELEASE, booking_id).status == JobStatus.DEFERRED

        rectification_service.complete_fix(db, case.id, now=release_at + timedelta(hours=2))
        booking, ledger = _reload(db, booking_id)
        assert booking.status == BookingStatus.OBSERVATION
        assert ledger.frozen is True

        # deferred job is not picked up again on its own
        counts = scheduler_service.run_due_jobs(db, now=release_at + timedelta(hours=3))
        assert counts["due"] == 0

        confirmed_at = release_at + timedelta(days=1)
        rectification_service.confirm_fix(db, case.id, now=confirmed_at)
        job = scheduler_service.get_job(db, JobKind.AUTO_RELEASE, booking_id)
        assert job.status == JobStatus.PENDING
        assert as_utc(job.next_run_at) == confirmed_at
        assert as_utc(job.due_at) == release_at

        counts = scheduler_service.run_due_jobs(db, now=confirmed_at + timedelta(minutes=1))
        assert counts["done"] == 1
        booking, ledger = _reload(db, booking_id)
        assert booking.status == BookingStatus.RELEASED
        assert booking.release_kind == ReleaseKind.AUTO_RELEASED
        assert ledger.frozen is False
        assert ledger.released_amount == 10000

    def test_resolution_before_deadline_keeps_original_deadline(self, db, flow):
        booking_id = flow.to("observation", tier=2)
        tc = flow.completed_at
        case = rectification_service.report_issue(db, booking_id, "paint scuffed", now=tc + timedelta(hours=2))
        rectification_service.withdraw(db, case.id, now=tc + timedelta(hours=4))
        job = scheduler_service.get_job(db, JobKind.AUTO_RELEASE, booking_id)
        assert job.status == JobStatus.PENDING
        assert as_utc(job.next_run_at) == tc + timedelta(days=5)


class TestRetries:

    def test_failing_handler_backs_off_and_retries(self, db, flow, monkeypatch):
        booking_id = flow.to("observation")
        release_at = flow.completed_at + timedelta(days=3)
        real_handler = booking_service.handle_auto_release

        def boom(db, job, now):
            raise RuntimeError("payout rails unavailable")

        monkeypatch.setattr(booking_service, "handle_auto_release", boom)
        counts = scheduler_service.run_due_jobs(db, now=release_at)
        assert counts["retrying"] == 1
        job = scheduler_service.get_job(db, JobKind.AUTO_RELEASE, booking_id)
        assert job.status == JobStatus.PENDING
        assert job.attempts == 1
        assert "payout rails unavailable" in job.last_error
        assert as_utc(job.next_run_at) == release_at + timedelta(seconds=60)

        monkeypatch.setattr(booking_service, "handle_auto_release", real_handler)
        assert scheduler_service.run_due_jobs(db, now=release_at + timedelta(seconds=30))["due"] == 0
        assert scheduler_service.run_due_jobs(db, now=release_at + timedelta(seconds=61))["done"] == 1
        booking, _ = _reload(db, booking_id)
        assert booking.status == BookingStatus.RELEASED

    def test_backoff_is_capped(self):
        assert scheduler_service.backoff_seconds(1) == 60
        assert scheduler_service.backoff_seconds(2) == 120
        assert scheduler_service.backoff_seconds(30) == 3600


class TestCaseDeadlines:

    def test_unanswered_report_escalates(self, db, flow):
        booking_id = flow.to("observation", tier=4)
        reported_at = flow.completed_at + timedelta(hours=1)
        case = rectification_service.report_issue(db, booking_id, "socket sparks", now=reported_at)
        scheduler_service.run_due_jobs(db, now=reported_at + timedelta(hours=24, minutes=1))
        booking, ledger = _reload(db, booking_id)
        db.refresh(case)
        assert booking.status == BookingStatus.DISPUTED
        assert case.status == CaseStatus.ESCALATED
        assert ledger.frozen is True
        assert scheduler_service.get_job(db, JobKind.AUTO_RELEASE, booking_id).status == JobStatus.CANCELLED
