"""
Itinerary editing. Every write that can move a price (days, stops,
inclusions, pricing inputs) triggers a pricing recalculation in the same
transaction.
"""
import logging
from datetime import timedelta

from django.db import transaction
from django.db.models import Max
from django.utils import timezone

from .exceptions import ValidationFailed
from .models import ProposalDay, TripProposal, log_activity
from .pricing import recalculate_pricing

logger = logging.getLogger(__name__)


# ---- Proposals ----

def create_proposal(form):
    with transaction.atomic():
        proposal = form.save()
        ProposalDay.objects.create(
            proposal=proposal, day_number=1, date=proposal.start_date, title="Day 1"
        )
        log_activity(proposal, "proposal_created", f"Proposal {proposal.proposal_number} created")
        recalculate_pricing(proposal.pk)
    proposal.refresh_from_db()
    logger.info("Created proposal %s for %s", proposal.proposal_number, proposal.customer_name)
    return proposal


def update_proposal(form):
    with transaction.atomic():
        proposal = form.save()
        if form.changed_data:
            log_activity(
                proposal,
                "proposal_updated",
                "Updated " + ", ".join(sorted(form.changed_data)),
                fields=sorted(form.changed_data),
            )
        if form.pricing_changed():
            recalculate_pricing(proposal.pk)
    proposal.refresh_from_db()
    logger.info("Updated proposal %s", proposal.proposal_number)
    return proposal


def change_status(proposal, status):
    if status not in TripProposal.Status.values:
        raise ValidationFailed(f"Unknown status: {status}")
    if status == proposal.status:
        return proposal
    if not proposal.can_transition_to(status):
        raise ValidationFailed(f"Cannot change status from {proposal.status} to {status}")

    previous = proposal.status
    proposal.status = status
    fields = ["status", "updated_at"]
    if status == TripProposal.Status.SENT:
        proposal.sent_at = timezone.now()
        fields.append("sent_at")
    elif status == TripProposal.Status.ACCEPTED:
        proposal.accepted_at = timezone.now()
        fields.append("accepted_at")
    proposal.save(update_fields=fields)
    log_activity(
        proposal,
        "status_changed",
        f"Status changed from {previous} to {status}",
        previous=previous,
        status=status,
    )
    logger.info("Proposal %s status %s -> %s", proposal.proposal_number, previous, status)
    return proposal


# ---- Days ----

def add_day(proposal, form):
    with transaction.atomic():
        last = proposal.days.aggregate(last=Max("day_number"))["last"] or 0
        day = form.save(commit=False)
        day.proposal = proposal
        day.day_number = last + 1
        if day.date is None:
            day.date = proposal.start_date + timedelta(days=last)
        if not day.title:
            day.title = f"Day {day.day_number}"
        day.save()
        recalculate_pricing(proposal.pk)
    logger.info("Added day %s to %s", day.day_number, proposal.proposal_number)
    return day


def update_day(form):
    with transaction.atomic():
        day = form.save()
        recalculate_pricing(day.proposal_id)
    return day


def delete_day(day):
    proposal_id = day.proposal_id
    with transaction.atomic():
        number = day.day_number
        day.delete()
        # One row at a time, lowest first, so (proposal, day_number) stays unique.
        for later in ProposalDay.objects.filter(
            proposal_id=proposal_id, day_number__gt=number
        ).order_by("day_number"):
            later.day_number -= 1
            if later.title == f"Day {later.day_number + 1}":
                later.title = f"Day {later.day_number}"
            later.save(update_fields=["day_number", "title"])
        recalculate_pricing(proposal_id)
    logger.info("Deleted day %s from proposal %s", number, proposal_id)


# ---- Stops ----

def add_stop(day, form):
    with transaction.atomic():
        stop = form.save(commit=False)
        stop.day = day
        if form.payload.get("stop_order") in (None, ""):
            last = day.stops.aggregate(last=Max("stop_order"))["last"]
            stop.stop_order = 0 if last is None else last + 1
        stop.save()
        recalculate_pricing(day.proposal_id)
    logger.info("Added %s stop %s to day %s", stop.stop_type, stop.pk, day.pk)
    return stop


def update_stop(form):
    with transaction.atomic():
        stop = form.save()
        recalculate_pricing(stop.day.proposal_id)
    return stop


def delete_stop(stop):
    day = stop.day
    with transaction.atomic():
        stop.delete()
        for position, remaining in enumerate(day.stops.order_by("stop_order", "id")):
            if remaining.stop_order != position:
                remaining.stop_order = position
                remaining.save(update_fields=["stop_order"])
        recalculate_pricing(day.proposal_id)
    logger.info("Deleted stop from day %s", day.pk)


# ---- Inclusions ----

def add_inclusion(proposal, form):
    with transaction.atomic():
        inclusion = form.save(commit=False)
        inclusion.proposal = proposal
        inclusion.save()
        recalculate_pricing(proposal.pk)
    logger.info("Added inclusion %s to %s", inclusion.pk, proposal.proposal_number)
    return inclusion


def update_inclusion(form):
    with transaction.atomic():
        inclusion = form.save(commit=False)
        # A new unit price or quantity invalidates a stored line total.
        if {"unit_price", "quantity"}.intersection(form.changed_data) and "total_price" not in form.payload:
            inclusion.total_price = None
        inclusion.save()
        recalculate_pricing(inclusion.proposal_id)
    inclusion.refresh_from_db()
    return inclusion


def delete_inclusion(inclusion):
    proposal_id = inclusion.proposal_id
    with transaction.atomic():
        inclusion.delete()
        recalculate_pricing(proposal_id)
    logger.info("Deleted inclusion from proposal %s", proposal_id)


# ---- Guests ----

def save_guest(proposal, form):
    with transaction.atomic():
        guest = form.save(commit=False)
        guest.proposal = proposal
        guest.save()
        if guest.is_primary:
            proposal.guests.exclude(pk=guest.pk).filter(is_primary=True).update(is_primary=False)
    logger.info("Saved guest %s on %s", guest.pk, proposal.proposal_number)
    return guest


def delete_guest(guest):
    proposal = guest.proposal
    with transaction.atomic():
        log_activity(proposal, "guest_removed", f"Guest {guest.name} removed")
        guest.delete()
    logger.info("Deleted guest from %s", proposal.proposal_number)
