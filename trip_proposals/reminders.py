"""
Payment reminder scheduling and dispatch.

A proposal with a payment deadline gets an escalating series of reminders
(friendly, firm, urgent, final) counted back from the deadline. Staff can pause
the whole proposal, single reminders or every reminder for one guest, cancel
pending reminders and add manual ones. `dispatch_due_reminders` sends whatever
is due and is run by the `send_payment_reminders` management command.
"""
import logging
from datetime import date, datetime, timedelta

from django.conf import settings
from django.core.mail import send_mail
from django.db import transaction
from django.utils import timezone

from .exceptions import NotFound, ValidationFailed
from .models import ZERO, PaymentReminder, ProposalGuest, TripProposal, log_activity

logger = logging.getLogger(__name__)

DEFAULT_REMINDER_SCHEDULE = (
    (30, PaymentReminder.Urgency.FRIENDLY),
    (20, PaymentReminder.Urgency.FRIENDLY),
    (10, PaymentReminder.Urgency.FIRM),
    (5, PaymentReminder.Urgency.URGENT),
    (1, PaymentReminder.Urgency.FINAL),
)

SUBJECTS = {
    PaymentReminder.Urgency.FRIENDLY: "Friendly reminder: payment for {trip}",
    PaymentReminder.Urgency.FIRM: "Payment reminder: {trip}",
    PaymentReminder.Urgency.URGENT: "Urgent: payment due soon for {trip}",
    PaymentReminder.Urgency.FINAL: "Final notice: payment due for {trip}",
}


def get_schedule():
    """
    The configured reminder tiers as (days_before_deadline, urgency), furthest
    from the deadline first.
    """
    schedule = getattr(settings, "PAYMENT_REMINDER_SCHEDULE", None) or DEFAULT_REMINDER_SCHEDULE
    tiers = []
    for days_before, urgency in schedule:
        if urgency not in PaymentReminder.Urgency.values:
            raise ValueError(f"Unknown reminder urgency in PAYMENT_REMINDER_SCHEDULE: {urgency}")
        tiers.append((int(days_before), PaymentReminder.Urgency(urgency)))
    return sorted(tiers, key=lambda tier: tier[0], reverse=True)


def _today(today=None) -> date:
    return today or timezone.localdate()


def _get_proposal(proposal_id, lock=False):
    qs = TripProposal.objects.all()
    if lock:
        qs = qs.select_for_update()
    proposal = qs.filter(pk=proposal_id).first()
    if proposal is None:
        raise NotFound("TripProposal", proposal_id)
    return proposal


def _get_reminder(proposal, reminder_id):
    reminder = PaymentReminder.objects.filter(pk=reminder_id, proposal=proposal).first()
    if reminder is None:
        raise NotFound("PaymentReminder", reminder_id)
    return reminder


def _get_guest(proposal, guest_id):
    guest = ProposalGuest.objects.filter(pk=guest_id, proposal=proposal).first()
    if guest is None:
        raise NotFound("ProposalGuest", guest_id)
    return guest


def _reminder_targets(proposal):
    if not proposal.individual_billing_enabled:
        return [None]
    return list(
        proposal.guests.filter(
            is_sponsored=False,
            payment_status__in=[
                ProposalGuest.PaymentStatus.UNPAID,
                ProposalGuest.PaymentStatus.PARTIAL,
            ],
        ).order_by("id")
    )


# ---- Schedule ----

def generate_schedule(proposal_id, today=None) -> dict:
    """
    Bring the proposal's pending auto reminders in line with its deadline.

    Matching pending reminders are kept (paused ones stay paused), stale ones
    are deleted and missing ones created, so running this twice changes
    nothing. Sent, skipped and cancelled reminders and manual reminders are
    left alone.
    """
    today = _today(today)
    with transaction.atomic():
        proposal = _get_proposal(proposal_id, lock=True)
        deadline = proposal.payment_deadline
        if not deadline:
            raise ValidationFailed("Payment deadline is not set")
        if deadline <= today:
            raise ValidationFailed("Payment deadline must be in the future")

        wanted = {}
        for guest in _reminder_targets(proposal):
            guest_id = guest.pk if guest else None
            for days_before, urgency in get_schedule():
                scheduled = deadline - timedelta(days=days_before)
                if scheduled <= today:
                    continue
                wanted[(guest_id, days_before, scheduled)] = urgency

        # Tiers already sent, skipped or cancelled are done for good.
        finished = PaymentReminder.objects.filter(
            proposal=proposal,
            reminder_type=PaymentReminder.ReminderType.AUTO_SCHEDULE,
        ).exclude(status=PaymentReminder.Status.PENDING)
        for guest_id, days_before, scheduled in finished.values_list(
            "guest_id", "days_before_deadline", "scheduled_date"
        ):
            wanted.pop((guest_id, days_before, scheduled), None)

        kept = removed = 0
        existing = PaymentReminder.objects.filter(
            proposal=proposal,
            reminder_type=PaymentReminder.ReminderType.AUTO_SCHEDULE,
            status=PaymentReminder.Status.PENDING,
        ).order_by("id")
        for reminder in existing:
            key = (reminder.guest_id, reminder.days_before_deadline, reminder.scheduled_date)
            if key in wanted and wanted[key] == reminder.urgency:
                del wanted[key]
                kept += 1
            else:
                reminder.delete()
                removed += 1

        PaymentReminder.objects.bulk_create(
            [
                PaymentReminder(
                    proposal=proposal,
                    guest_id=guest_id,
                    reminder_type=PaymentReminder.ReminderType.AUTO_SCHEDULE,
                    scheduled_date=scheduled,
                    days_before_deadline=days_before,
                    urgency=urgency,
                )
                for (guest_id, days_before, scheduled), urgency in wanted.items()
            ]
        )
        created = len(wanted)

        log_activity(
            proposal,
            "reminder_schedule_generated",
            f"Reminder schedule generated: {created} created, {kept} kept, {removed} removed",
            created=created,
            kept=kept,
            removed=removed,
        )

    logger.info(
        "Generated reminder schedule for %s: created=%d kept=%d removed=%d",
        proposal.proposal_number,
        created,
        kept,
        removed,
    )
    return {"created": created, "kept": kept, "removed": removed}


def _set_proposal_paused(proposal_id, paused):
    with transaction.atomic():
        proposal = _get_proposal(proposal_id, lock=True)
        proposal.reminders_paused = paused
        proposal.save(update_fields=["reminders_paused", "updated_at"])
        log_activity(
            proposal,
            "reminders_paused" if paused else "reminders_resumed",
            "All payment reminders paused" if paused else "Payment reminders resumed",
        )
    logger.info("Reminders for %s paused=%s", proposal.proposal_number, paused)
    return proposal


def pause_proposal(proposal_id):
    return _set_proposal_paused(proposal_id, True)


def resume_proposal(proposal_id):
    return _set_proposal_paused(proposal_id, False)


def _set_reminder_paused(proposal, reminder_id, paused):
    reminder = _get_reminder(proposal, reminder_id)
    if not reminder.is_pending:
        raise ValidationFailed(f"Only pending reminders can be {'paused' if paused else 'resumed'}")
    reminder.paused = paused
    reminder.save(update_fields=["paused", "updated_at"])
    logger.info("Reminder %s paused=%s", reminder.pk, paused)
    return reminder


def pause_reminder(proposal, reminder_id):
    return _set_reminder_paused(proposal, reminder_id, True)


def resume_reminder(proposal, reminder_id):
    return _set_reminder_paused(proposal, reminder_id, False)


def _set_guest_paused(proposal, guest_id, paused) -> int:
    guest = _get_guest(proposal, guest_id)
    updated = PaymentReminder.objects.filter(
        proposal=proposal, guest=guest, status=PaymentReminder.Status.PENDING
    ).update(paused=paused, updated_at=timezone.now())
    log_activity(
        proposal,
        "guest_reminders_paused" if paused else "guest_reminders_resumed",
        f"Reminders for {guest.name} {'paused' if paused else 'resumed'}",
        guest_id=guest.pk,
    )
    logger.info("Guest %s reminders paused=%s (%d updated)", guest.pk, paused, updated)
    return updated


def pause_guest(proposal, guest_id) -> int:
    return _set_guest_paused(proposal, guest_id, True)


def resume_guest(proposal, guest_id) -> int:
    return _set_guest_paused(proposal, guest_id, False)


def cancel_reminder(proposal, reminder_id):
    with transaction.atomic():
        reminder = _get_reminder(proposal, reminder_id)
        if not reminder.is_pending:
            raise ValidationFailed(f"Cannot cancel a reminder that is {reminder.status}")
        reminder.status = PaymentReminder.Status.CANCELLED
        reminder.save(update_fields=["status", "updated_at"])
        log_activity(
            proposal,
            "reminder_cancelled",
            f"Reminder for {reminder.scheduled_date} cancelled",
            reminder_id=reminder.pk,
        )
    logger.info("Cancelled reminder %s", reminder.pk)
    return reminder


def add_manual_reminder(
    proposal, scheduled_date, urgency, custom_message="", guest_id=None, today=None
):
    if urgency not in PaymentReminder.Urgency.values:
        raise ValidationFailed(
            "urgency must be one of: " + ", ".join(PaymentReminder.Urgency.values)
        )
    try:
        when = datetime.strptime(str(scheduled_date or ""), "%Y-%m-%d").date()
    except ValueError:
        raise ValidationFailed("scheduled_date must be a date in YYYY-MM-DD format")
    if when < _today(today):
        raise ValidationFailed("scheduled_date cannot be in the past")
    guest = _get_guest(proposal, guest_id) if guest_id not in (None, "") else None

    reminder = PaymentReminder.objects.create(
        proposal=proposal,
        guest=guest,
        reminder_type=PaymentReminder.ReminderType.MANUAL,
        scheduled_date=when,
        urgency=urgency,
        custom_message=custom_message or "",
    )
    log_activity(
        proposal,
        "manual_reminder_added",
        f"Manual {urgency} reminder scheduled for {when}",
        reminder_id=reminder.pk,
    )
    logger.info("Added manual reminder %s for %s", reminder.pk, proposal.proposal_number)
    return reminder


def reminder_history(proposal):
    """
    Every reminder for the proposal, newest scheduled first.
    """
    return list(
        PaymentReminder.objects.filter(proposal=proposal)
        .select_related("guest")
        .order_by("-scheduled_date", "-created_at")
    )


# ---- Dispatch ----

def due_reminders(today=None):
    today = _today(today)
    reminders = (
        PaymentReminder.objects.filter(
            status=PaymentReminder.Status.PENDING,
            paused=False,
            scheduled_date__lte=today,
            proposal__reminders_paused=False,
        )
        .select_related("proposal")
        .order_by("scheduled_date", "id")
    )
    return sorted(
        reminders,
        key=lambda r: (r.scheduled_date, PaymentReminder.URGENCY_RANK[r.urgency], r.pk),
    )


def _recipient(reminder):
    """
    Returns (name, email, amount_due, skip_reason) for a due reminder.
    """
    proposal = reminder.proposal
    if reminder.guest_id is None:
        if proposal.balance_due <= ZERO:
            return None, None, None, "Nothing remaining to pay"
        if not proposal.customer_email:
            return None, None, None, "Customer has no email address"
        return proposal.customer_name, proposal.customer_email, proposal.balance_due, ""

    guest = ProposalGuest.objects.filter(pk=reminder.guest_id).first()
    if guest is None:
        return None, None, None, "Guest no longer exists"
    if guest.is_sponsored:
        return None, None, None, "Guest is sponsored"
    if guest.payment_status in (
        ProposalGuest.PaymentStatus.PAID,
        ProposalGuest.PaymentStatus.REFUNDED,
    ):
        return None, None, None, f"Guest payment is {guest.payment_status}"
    if guest.amount_remaining <= ZERO:
        return None, None, None, "Nothing remaining to pay"
    if not guest.email:
        return None, None, None, "Guest has no email address"
    return guest.name, guest.email, guest.amount_remaining, ""


def _message(reminder, name, amount):
    proposal = reminder.proposal
    trip = proposal.trip_title or proposal.proposal_number
    subject = SUBJECTS[PaymentReminder.Urgency(reminder.urgency)].format(trip=trip)
    body_lines = [
        f"Hi {name},",
        "",
        f"This is a reminder that {amount:.2f} is due for {trip} ({proposal.proposal_number}).",
    ]
    if proposal.payment_deadline:
        body_lines.append(f"Payment deadline: {proposal.payment_deadline:%B %d, %Y}")
    if reminder.custom_message:
        body_lines += ["", reminder.custom_message]
    base_url = getattr(settings, "PUBLIC_BASE_URL", "")
    if base_url:
        body_lines += ["", f"Questions? Visit {base_url.rstrip('/')} or reply to this email."]
    return subject, "\n".join(body_lines)


def dispatch_due_reminders(today=None, dry_run=False) -> dict:
    """
    Send every reminder that is due. A reminder whose guest no longer needs it
    is marked skipped with a reason; a failed send stays pending for the next
    run.
    """
    counts = {"sent": 0, "skipped": 0, "failed": 0}
    for reminder in due_reminders(today):
        name, email, amount, skip_reason = _recipient(reminder)

        if skip_reason:
            logger.info("Skipping reminder %s: %s", reminder.pk, skip_reason)
            counts["skipped"] += 1
            if not dry_run:
                reminder.status = PaymentReminder.Status.SKIPPED
                reminder.skip_reason = skip_reason
                reminder.save(update_fields=["status", "skip_reason", "updated_at"])
            continue

        if dry_run:
            counts["sent"] += 1
            continue

        subject, body = _message(reminder, name, amount)
        try:
            send_mail(
                subject=subject,
                message=body,
                from_email=getattr(settings, "DEFAULT_FROM_EMAIL", None),
                recipient_list=[email],
                fail_silently=False,
            )
        except Exception:
            logger.exception("Failed to send payment reminder %s to %s", reminder.pk, email)
            counts["failed"] += 1
            continue

        reminder.status = PaymentReminder.Status.SENT
        reminder.sent_at = timezone.now()
        reminder.save(update_fields=["status", "sent_at", "updated_at"])
        log_activity(
            reminder.proposal,
            "reminder_sent",
            f"{reminder.get_urgency_display()} reminder sent to {email}",
            actor_type="system",
            reminder_id=reminder.pk,
        )
        counts["sent"] += 1

    logger.info(
        "Reminder dispatch finished: sent=%d skipped=%d failed=%d",
        counts["sent"],
        counts["skipped"],
        counts["failed"],
    )
    return counts
