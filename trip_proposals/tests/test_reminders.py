from datetime import timedelta
from decimal import Decimal

import pytest
from django.core import mail

from trip_proposals import reminders
from trip_proposals.exceptions import NotFound, ValidationFailed
from trip_proposals.models import PaymentReminder, ProposalGuest

pytestmark = pytest.mark.django_db


@pytest.fixture
def deadline_proposal(make_proposal, today):
    def _make(days_out=40, **overrides):
        return make_proposal(payment_deadline=today + timedelta(days=days_out), **overrides)

    return _make


def pending(proposal):
    return PaymentReminder.objects.filter(proposal=proposal, status=PaymentReminder.Status.PENDING)


class TestGenerateSchedule:
    def test_proposal_level_schedule(self, deadline_proposal, today):
        proposal = deadline_proposal()

        result = reminders.generate_schedule(proposal.pk, today=today)

        assert result == {"created": 5, "kept": 0, "removed": 0}
        tiers = sorted(
            pending(proposal).values_list("days_before_deadline", "urgency"), reverse=True
        )
        assert tiers == [
            (30, "friendly"),
            (20, "friendly"),
            (10, "firm"),
            (5, "urgent"),
            (1, "final"),
        ]
        assert not pending(proposal).filter(guest__isnull=False).exists()

    def test_running_twice_does_not_duplicate(self, deadline_proposal, today):
        proposal = deadline_proposal()
        reminders.generate_schedule(proposal.pk, today=today)

        result = reminders.generate_schedule(proposal.pk, today=today)

        assert result == {"created": 0, "kept": 5, "removed": 0}
        assert pending(proposal).count() == 5

    def test_targets_unpaid_non_sponsored_guests(self, deadline_proposal, add_guest, today):
        proposal = deadline_proposal(individual_billing_enabled=True)
        ana = add_guest(proposal, "Ana")
        ben = add_guest(proposal, "Ben", payment_status=ProposalGuest.PaymentStatus.PARTIAL)
        add_guest(proposal, "Cleo", is_sponsored=True)
        add_guest(proposal, "Dev", payment_status=ProposalGuest.PaymentStatus.PAID)

        result = reminders.generate_schedule(proposal.pk, today=today)

        assert result["created"] == 10
        assert set(pending(proposal).values_list("guest_id", flat=True)) == {ana.pk, ben.pk}

    def test_tiers_on_or_before_today_are_skipped(self, deadline_proposal, today):
        proposal = deadline_proposal(days_out=7)

        reminders.generate_schedule(proposal.pk, today=today)

        assert sorted(pending(proposal).values_list("days_before_deadline", flat=True)) == [1, 5]

    def test_moving_the_deadline_replaces_stale_reminders(self, deadline_proposal, today):
        proposal = deadline_proposal()
        reminders.generate_schedule(proposal.pk, today=today)
        proposal.payment_deadline = today + timedelta(days=50)
        proposal.save()

        result = reminders.generate_schedule(proposal.pk, today=today)

        assert result == {"created": 5, "kept": 0, "removed": 5}
        assert pending(proposal).count() == 5

    def test_pause_flag_and_history_are_kept(self, deadline_proposal, today):
        proposal = deadline_proposal()
        reminders.generate_schedule(proposal.pk, today=today)
        paused = pending(proposal).get(days_before_deadline=30)
        reminders.pause_reminder(proposal, paused.pk)
        sent = pending(proposal).get(days_before_deadline=20)
        sent.status = PaymentReminder.Status.SENT
        sent.save()
        manual = reminders.add_manual_reminder(
            proposal, (today + timedelta(days=3)).isoformat(), "firm", today=today
        )

        result = reminders.generate_schedule(proposal.pk, today=today)

        assert result == {"created": 0, "kept": 4, "removed": 0}
        paused.refresh_from_db()
        sent.refresh_from_db()
        manual.refresh_from_db()
        assert paused.paused is True
        assert sent.status == PaymentReminder.Status.SENT
        assert manual.status == PaymentReminder.Status.PENDING

    def test_requires_a_future_deadline(self, make_proposal, deadline_proposal, today):
        with pytest.raises(ValidationFailed):
            reminders.generate_schedule(make_proposal().pk, today=today)
        with pytest.raises(ValidationFailed):
            reminders.generate_schedule(deadline_proposal(days_out=0).pk, today=today)

    def test_configured_schedule(self, settings, deadline_proposal, today):
        settings.PAYMENT_REMINDER_SCHEDULE = [(14, "firm"), (2, "final")]
        proposal = deadline_proposal()

        reminders.generate_schedule(proposal.pk, today=today)

        assert sorted(pending(proposal).values_list("urgency", flat=True)) == ["final", "firm"]


class TestReminderActions:
    def test_cancel_pending_only(self, deadline_proposal, today):
        proposal = deadline_proposal()
        reminders.generate_schedule(proposal.pk, today=today)
        reminder = pending(proposal).first()

        reminders.cancel_reminder(proposal, reminder.pk)

        reminder.refresh_from_db()
        assert reminder.status == PaymentReminder.Status.CANCELLED
        with pytest.raises(ValidationFailed):
            reminders.cancel_reminder(proposal, reminder.pk)

    def test_cancel_unknown_or_foreign_reminder(self, deadline_proposal, today):
        proposal = deadline_proposal()
        other = deadline_proposal()
        reminders.generate_schedule(other.pk, today=today)
        foreign = pending(other).first()

        with pytest.raises(NotFound):
            reminders.cancel_reminder(proposal, foreign.pk)
        with pytest.raises(NotFound):
            reminders.cancel_reminder(proposal, 999999)

    def test_pause_and_resume_proposal_leave_statuses(self, deadline_proposal, today):
        proposal = deadline_proposal()
        reminders.generate_schedule(proposal.pk, today=today)

        reminders.pause_proposal(proposal.pk)
        proposal.refresh_from_db()
        assert proposal.reminders_paused is True
        assert pending(proposal).count() == 5

        reminders.resume_proposal(proposal.pk)
        proposal.refresh_from_db()
        assert proposal.reminders_paused is False

    def test_pause_guest(self, deadline_proposal, add_guest, today):
        proposal = deadline_proposal(individual_billing_enabled=True)
        ana = add_guest(proposal, "Ana")
        add_guest(proposal, "Ben")
        reminders.generate_schedule(proposal.pk, today=today)

        assert reminders.pause_guest(proposal, ana.pk) == 5
        assert pending(proposal).filter(paused=True, guest=ana).count() == 5
        assert pending(proposal).filter(paused=True).exclude(guest=ana).count() == 0

        assert reminders.resume_guest(proposal, ana.pk) == 5
        assert not pending(proposal).filter(paused=True).exists()

    @pytest.mark.parametrize(
        "scheduled_date, urgency",
        [
            ("2030-13-01", "firm"),
            ("next tuesday", "firm"),
            ("2030-01-01", "gentle"),
        ],
    )
    def test_add_manual_validation(self, deadline_proposal, scheduled_date, urgency):
        with pytest.raises(ValidationFailed):
            reminders.add_manual_reminder(deadline_proposal(), scheduled_date, urgency)

    def test_add_manual_rejects_past_dates_and_foreign_guests(
        self, deadline_proposal, add_guest, today
    ):
        proposal = deadline_proposal()
        stranger = add_guest(deadline_proposal(), "Zed")
        tomorrow = (today + timedelta(days=1)).isoformat()

        with pytest.raises(ValidationFailed):
            reminders.add_manual_reminder(
                proposal, (today - timedelta(days=1)).isoformat(), "firm", today=today
            )
        with pytest.raises(NotFound):
            reminders.add_manual_reminder(proposal, tomorrow, "firm", guest_id=stranger.pk, today=today)

    def test_history_is_newest_first(self, deadline_proposal, today):
        proposal = deadline_proposal()
        reminders.generate_schedule(proposal.pk, today=today)

        dates = [r.scheduled_date for r in reminders.reminder_history(proposal)]

        assert dates == sorted(dates, reverse=True)


class TestDispatch:
    def make_due(self, proposal, guest=None, urgency="friendly", days_ago=0, today=None, **extra):
        return PaymentReminder.objects.create(
            proposal=proposal,
            guest=guest,
            scheduled_date=today - timedelta(days=days_ago),
            urgency=urgency,
            **extra,
        )

    def test_sends_due_guest_reminder(self, deadline_proposal, add_guest, today):
        proposal = deadline_proposal(individual_billing_enabled=True)
        guest = add_guest(proposal, "Ana", amount_owed=Decimal("330.00"))
        reminder = self.make_due(proposal, guest, today=today, custom_message="See you soon!")

        counts = reminders.dispatch_due_reminders(today=today)

        assert counts == {"sent": 1, "skipped": 0, "failed": 0}
        reminder.refresh_from_db()
        assert reminder.status == PaymentReminder.Status.SENT
        assert reminder.sent_at is not None
        assert len(mail.outbox) == 1
        assert mail.outbox[0].to == ["ana@example.com"]
        assert "330.00" in mail.outbox[0].body
        assert "See you soon!" in mail.outbox[0].body

    def test_skips_guests_who_no_longer_owe(self, deadline_proposal, add_guest, today):
        proposal = deadline_proposal(individual_billing_enabled=True)
        sponsored = add_guest(proposal, "Ana", is_sponsored=True, amount_owed=Decimal("10.00"))
        paid = add_guest(
            proposal,
            "Ben",
            amount_owed=Decimal("10.00"),
            amount_paid=Decimal("10.00"),
            payment_status=ProposalGuest.PaymentStatus.PAID,
        )
        no_email = add_guest(proposal, "Cleo", email="", amount_owed=Decimal("10.00"))
        for guest in (sponsored, paid, no_email):
            self.make_due(proposal, guest, today=today)

        counts = reminders.dispatch_due_reminders(today=today)

        assert counts == {"sent": 0, "skipped": 3, "failed": 0}
        assert len(mail.outbox) == 0
        skipped = PaymentReminder.objects.filter(status=PaymentReminder.Status.SKIPPED)
        assert skipped.count() == 3
        assert all(r.skip_reason for r in skipped)

    def test_proposal_level_reminder_goes_to_customer(self, deadline_proposal, today):
        proposal = deadline_proposal(balance_due=Decimal("990.00"))
        self.make_due(proposal, today=today, urgency="final")

        reminders.dispatch_due_reminders(today=today)

        assert mail.outbox[0].to == ["avery@example.com"]
        assert mail.outbox[0].subject.startswith("Final notice")

    def test_ignores_future_paused_and_paused_proposals(
        self, deadline_proposal, add_guest, today
    ):
        proposal = deadline_proposal(balance_due=Decimal("100.00"))
        self.make_due(proposal, today=today, days_ago=-1)
        self.make_due(proposal, today=today, paused=True)
        halted = deadline_proposal(balance_due=Decimal("100.00"), reminders_paused=True)
        self.make_due(halted, today=today)

        counts = reminders.dispatch_due_reminders(today=today)

        assert counts == {"sent": 0, "skipped": 0, "failed": 0}
        assert PaymentReminder.objects.filter(status=PaymentReminder.Status.PENDING).count() == 3

    def test_most_urgent_first_within_a_day(self, deadline_proposal, today):
        proposal = deadline_proposal(balance_due=Decimal("100.00"))
        self.make_due(proposal, today=today, urgency="friendly")
        self.make_due(proposal, today=today, urgency="final")
        self.make_due(proposal, today=today, urgency="firm", days_ago=1)

        due = reminders.due_reminders(today=today)

        assert [r.urgency for r in due] == ["firm", "final", "friendly"]

    def test_failed_send_stays_pending(self, deadline_proposal, today, monkeypatch):
        proposal = deadline_proposal(balance_due=Decimal("100.00"))
        reminder = self.make_due(proposal, today=today)

        def broken_send_mail(**kwargs):
            raise ConnectionRefusedError("SMTP server unavailable")

        monkeypatch.setattr(reminders, "send_mail", broken_send_mail)

        counts = reminders.dispatch_due_reminders(today=today)

        assert counts == {"sent": 0, "skipped": 0, "failed": 1}
        reminder.refresh_from_db()
        assert reminder.status == PaymentReminder.Status.PENDING
