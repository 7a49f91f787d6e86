from datetime import timedelta
from decimal import Decimal
from io import StringIO

import pytest
from django.core import mail
from django.core.management import call_command
from django.core.management.base import CommandError

from trip_proposals.models import PaymentReminder

pytestmark = pytest.mark.django_db


class TestSendPaymentReminders:
    def make_reminder(self, proposal, scheduled_date, urgency="friendly"):
        return PaymentReminder.objects.create(
            proposal=proposal, scheduled_date=scheduled_date, urgency=urgency
        )

    def test_sends_due_reminders(self, make_proposal, today):
        proposal = make_proposal(balance_due=Decimal("450.00"))
        due = self.make_reminder(proposal, today - timedelta(days=1))
        later = self.make_reminder(proposal, today + timedelta(days=3))
        out = StringIO()

        call_command("send_payment_reminders", stdout=out)

        assert "Sent 1, skipped 0, failed 0" in out.getvalue()
        due.refresh_from_db()
        later.refresh_from_db()
        assert due.status == PaymentReminder.Status.SENT
        assert later.status == PaymentReminder.Status.PENDING
        assert len(mail.outbox) == 1

    def test_date_option_and_dry_run(self, make_proposal, today):
        proposal = make_proposal(balance_due=Decimal("450.00"))
        reminder = self.make_reminder(proposal, today + timedelta(days=3))
        out = StringIO()

        call_command(
            "send_payment_reminders",
            "--dry-run",
            "--date",
            (today + timedelta(days=3)).isoformat(),
            stdout=out,
        )

        assert "[dry run] Sent 1" in out.getvalue()
        reminder.refresh_from_db()
        assert reminder.status == PaymentReminder.Status.PENDING
        assert len(mail.outbox) == 0

    def test_invalid_date(self):
        with pytest.raises(CommandError):
            call_command("send_payment_reminders", "--date", "03/14/2027")
