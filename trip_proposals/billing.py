"""
Per-guest billing: splitting a proposal total across guests, overrides,
sponsored guests, payment groups and recorded payments.
"""
import logging
from decimal import Decimal, InvalidOperation

from django.db import transaction
from django.db.models import Sum
from django.utils import timezone

from .exceptions import NotFound, ValidationFailed
from .models import (
    CENT,
    ZERO,
    GuestPayment,
    GuestPaymentGroup,
    ProposalGuest,
    TripProposal,
    log_activity,
)

logger = logging.getLogger(__name__)

# Half a cent: sums within this of the total are considered balanced.
TOLERANCE = Decimal("0.005")


def parse_amount(value, field="amount", allow_none=False):
    if value is None or value == "":
        if allow_none:
            return None
        raise ValidationFailed(f"{field} is required")
    if isinstance(value, bool):
        raise ValidationFailed(f"{field} must be a number")
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise ValidationFailed(f"{field} must be a number")
    if not amount.is_finite():
        raise ValidationFailed(f"{field} must be a number")
    return amount.quantize(CENT)


def split_evenly(total: Decimal, count: int):
    """
    Split total into `count` cent amounts. Leftover pennies go to the first
    shares, so the parts always add up to the total exactly.
    """
    total_cents = int((total or ZERO).quantize(CENT) * 100)
    base, leftover = divmod(total_cents, count)
    return [
        (Decimal(base + (1 if i < leftover else 0)) / 100).quantize(CENT) for i in range(count)
    ]


def _lock_proposal(proposal_id):
    proposal = TripProposal.objects.select_for_update().filter(pk=proposal_id).first()
    if proposal is None:
        raise NotFound("TripProposal", proposal_id)
    return proposal


def calculate_guest_amounts(proposal_id) -> dict:
    """
    "Recalculate All": set every guest's amount_owed from the proposal total.

    Sponsored guests owe nothing. Everyone else owes their override when one is
    set, otherwise an equal share of the total. Paid amounts and payment
    statuses are left alone.
    """
    with transaction.atomic():
        proposal = _lock_proposal(proposal_id)
        if not proposal.individual_billing_enabled:
            raise ValidationFailed("Individual billing is not enabled for this proposal")

        guests = list(proposal.guests.select_for_update().order_by("id"))
        paying = [g for g in guests if not g.is_sponsored]
        if not paying:
            raise ValidationFailed("At least one non-sponsored guest is required")

        shares = split_evenly(proposal.total, len(paying))
        share_by_guest = {g.pk: share for g, share in zip(paying, shares)}

        for guest in guests:
            if guest.is_sponsored:
                owed = ZERO
            elif guest.amount_owed_override is not None:
                owed = guest.amount_owed_override
            else:
                owed = share_by_guest[guest.pk]
            if guest.amount_owed != owed:
                guest.amount_owed = owed
                guest.save(update_fields=["amount_owed", "updated_at"])

        log_activity(
            proposal,
            "guest_billing_calculated",
            f"Guest amounts recalculated across {len(paying)} paying guest(s)",
            actor_type="system",
            total=str(proposal.total),
        )

    logger.info(
        "Calculated guest amounts for %s: total=%s paying_guests=%d",
        proposal.proposal_number,
        proposal.total,
        len(paying),
    )
    return {
        "total": proposal.total,
        "paying_guests": len(paying),
        "equal_share": shares[0] if shares else ZERO,
        "guests": [
            {"id": g.pk, "name": g.name, "amount_owed": g.amount_owed} for g in guests
        ],
    }


def verify_billing(proposal_id) -> dict:
    """
    Read-only check of guest amounts against the proposal and the payment
    ledger. Reports discrepancies, never corrects them.
    """
    proposal = TripProposal.objects.filter(pk=proposal_id).first()
    if proposal is None:
        raise NotFound("TripProposal", proposal_id)

    guests = list(proposal.guests.order_by("id"))
    sum_owed = sum((g.amount_owed for g in guests), ZERO)
    sum_paid = sum((g.amount_paid for g in guests), ZERO)
    discrepancies = []

    if abs(sum_owed - proposal.total) > TOLERANCE:
        discrepancies.append(
            f"Guest amounts owed ({sum_owed}) do not match the proposal total ({proposal.total})"
        )

    ledger = dict(
        GuestPayment.objects.filter(proposal=proposal, status=GuestPayment.Status.SUCCEEDED)
        .values("guest")
        .annotate(paid=Sum("amount"))
        .values_list("guest", "paid")
    )
    for guest in guests:
        recorded = ledger.get(guest.pk) or ZERO
        if abs(recorded - guest.amount_paid) > TOLERANCE:
            discrepancies.append(
                f"{guest.name}: amount paid ({guest.amount_paid}) does not match "
                f"recorded payments ({recorded})"
            )
        if (
            not guest.is_sponsored
            and guest.amount_owed_override is None
            and guest.amount_owed == ZERO
            and proposal.total > ZERO
        ):
            discrepancies.append(f"{guest.name} owes nothing but is not sponsored")

    return {
        "valid": not discrepancies,
        "discrepancies": discrepancies,
        "total": proposal.total,
        "sum_owed": sum_owed,
        "sum_paid": sum_paid,
    }


def _recalculate_if_enabled(proposal):
    if not proposal.individual_billing_enabled:
        return
    if proposal.guests.filter(is_sponsored=False).exists():
        calculate_guest_amounts(proposal.pk)


def set_guest_sponsored(guest, sponsored: bool):
    with transaction.atomic():
        guest.is_sponsored = bool(sponsored)
        guest.amount_owed_override = None
        fields = ["is_sponsored", "amount_owed_override", "updated_at"]
        if guest.is_sponsored:
            guest.amount_owed = ZERO
            fields.append("amount_owed")
        guest.save(update_fields=fields)
        log_activity(
            guest.proposal,
            "guest_sponsored" if guest.is_sponsored else "guest_unsponsored",
            f"{guest.name} {'is now' if guest.is_sponsored else 'is no longer'} sponsored",
        )
        _recalculate_if_enabled(guest.proposal)
    guest.refresh_from_db()
    logger.info("Guest %s sponsored=%s", guest.pk, guest.is_sponsored)
    return guest


def set_guest_override(guest, amount):
    override = parse_amount(amount, "amount_owed_override", allow_none=True)
    if override is not None and override < ZERO:
        raise ValidationFailed("amount_owed_override cannot be negative")

    with transaction.atomic():
        guest.amount_owed_override = override
        fields = ["amount_owed_override", "updated_at"]
        if override is not None and not guest.is_sponsored:
            guest.amount_owed = override
            fields.append("amount_owed")
        guest.save(update_fields=fields)
        log_activity(
            guest.proposal,
            "guest_override_set" if override is not None else "guest_override_cleared",
            f"Amount owed override for {guest.name}: {override if override is not None else 'cleared'}",
            amount=str(override) if override is not None else None,
        )
        _recalculate_if_enabled(guest.proposal)
    guest.refresh_from_db()
    logger.info("Guest %s override=%s", guest.pk, override)
    return guest


def record_payment(
    guest,
    amount,
    notes="",
    payment_type=GuestPayment.PaymentType.MANUAL,
    stripe_payment_intent_id=None,
    paid_by_guest=None,
    actor_type="staff",
):
    """
    Add a payment to the guest's ledger and roll it into amount_paid.
    """
    amount = parse_amount(amount)
    if amount <= ZERO:
        raise ValidationFailed("amount must be greater than 0")

    with transaction.atomic():
        locked = ProposalGuest.objects.select_for_update().get(pk=guest.pk)
        payment = GuestPayment.objects.create(
            proposal_id=locked.proposal_id,
            guest=locked,
            paid_by_guest=paid_by_guest,
            amount=amount,
            payment_type=payment_type,
            stripe_payment_intent_id=stripe_payment_intent_id,
            notes=notes or "",
        )
        locked.amount_paid = (locked.amount_paid or ZERO) + amount
        locked.payment_status = locked.status_for_paid(locked.amount_paid)
        if locked.payment_status == ProposalGuest.PaymentStatus.PAID and not locked.payment_paid_at:
            locked.payment_paid_at = timezone.now()
        locked.save(
            update_fields=["amount_paid", "payment_status", "payment_paid_at", "updated_at"]
        )
        log_activity(
            locked.proposal,
            "guest_payment_recorded",
            f"Recorded {amount} payment for {locked.name}",
            actor_type=actor_type,
            guest_id=locked.pk,
            amount=str(amount),
        )

    logger.info(
        "Recorded payment of %s for guest %s (status=%s)",
        amount,
        locked.pk,
        locked.payment_status,
    )
    return payment, locked


# ---- Payment groups ----

def create_payment_group(proposal, guest_ids, name):
    name = (name or "").strip()
    if not name:
        raise ValidationFailed("name is required")
    if not isinstance(guest_ids, (list, tuple)) or not guest_ids:
        raise ValidationFailed("guest_ids must be a non-empty list")
    try:
        ids = {int(gid) for gid in guest_ids}
    except (TypeError, ValueError):
        raise ValidationFailed("guest_ids must be a list of guest ids")

    with transaction.atomic():
        guests = list(proposal.guests.select_for_update().filter(pk__in=ids))
        missing = ids - {g.pk for g in guests}
        if missing:
            raise ValidationFailed(
                "Guests do not belong to this proposal: "
                + ", ".join(str(gid) for gid in sorted(missing))
            )
        group = GuestPaymentGroup.objects.create(proposal=proposal, name=name)
        proposal.guests.filter(pk__in=ids).update(payment_group=group)
        log_activity(
            proposal,
            "payment_group_created",
            f"Payment group '{name}' created with {len(ids)} guest(s)",
            group_id=group.pk,
        )

    logger.info("Created payment group %s for %s", group.pk, proposal.proposal_number)
    return group


def remove_payment_group(group):
    proposal = group.proposal
    with transaction.atomic():
        group.guests.update(payment_group=None)
        log_activity(proposal, "payment_group_removed", f"Payment group '{group.name}' removed")
        group.delete()
    logger.info("Removed payment group from %s", proposal.proposal_number)


# ---- Stripe ----

def _intent_amount(intent) -> Decimal:
    cents = intent.get("amount_received") or intent.get("amount") or 0
    return (Decimal(cents) / 100).quantize(CENT)


def _metadata_id(metadata, key):
    value = metadata.get(key)
    if value is None or str(value).strip() == "":
        return None
    return int(str(value).strip())


def _apply_guest_share(intent, guest_id) -> int:
    intent_id = intent.get("id")
    guest = ProposalGuest.objects.filter(pk=guest_id).first()
    if guest is None:
        logger.warning("PaymentIntent %s references unknown guest %s", intent_id, guest_id)
        return 0
    if GuestPayment.objects.filter(stripe_payment_intent_id=intent_id, guest=guest).exists():
        logger.info("PaymentIntent %s already recorded", intent_id)
        return 0
    record_payment(
        guest,
        _intent_amount(intent),
        notes="Card payment",
        payment_type=GuestPayment.PaymentType.GUEST_SHARE,
        stripe_payment_intent_id=intent_id,
        actor_type="customer",
    )
    return 1


def _apply_group_payment(intent, guest_ids, proposal_id, group_id, payer_id) -> int:
    """
    Spread the amount received over the listed guests in id order, each up to
    their remaining balance. The guests must all belong to one proposal (and
    to the payment group, when the intent names one).
    """
    intent_id = intent.get("id")
    wanted = set(guest_ids)

    with transaction.atomic():
        guests = list(
            ProposalGuest.objects.select_for_update().filter(pk__in=wanted).order_by("id")
        )
        proposal_ids = {guest.proposal_id for guest in guests}
        if not guests or len(guests) != len(wanted) or len(proposal_ids) != 1:
            logger.warning(
                "PaymentIntent %s lists guests %s that are unknown or span proposals",
                intent_id,
                sorted(wanted),
            )
            return 0
        owner_id = proposal_ids.pop()
        if proposal_id is not None and proposal_id != owner_id:
            logger.warning(
                "PaymentIntent %s guests do not belong to proposal %s", intent_id, proposal_id
            )
            return 0
        if group_id is not None and any(g.payment_group_id != group_id for g in guests):
            logger.warning(
                "PaymentIntent %s guests are not all in payment group %s", intent_id, group_id
            )
            return 0
        payer = None
        if payer_id is not None:
            payer = ProposalGuest.objects.filter(pk=payer_id, proposal_id=owner_id).first()
            if payer is None:
                logger.warning(
                    "PaymentIntent %s payer %s is not a guest on the proposal", intent_id, payer_id
                )
                return 0

        recorded = GuestPayment.objects.filter(stripe_payment_intent_id=intent_id)
        already_paid = set(recorded.values_list("guest_id", flat=True))
        available = _intent_amount(intent) - (recorded.aggregate(s=Sum("amount"))["s"] or ZERO)

        added = 0
        for guest in guests:
            if guest.pk in already_paid:
                continue
            share = min(guest.amount_remaining, available)
            if share <= ZERO:
                continue
            record_payment(
                guest,
                share,
                notes="Group card payment",
                payment_type=GuestPayment.PaymentType.GROUP_PAYMENT,
                stripe_payment_intent_id=intent_id,
                paid_by_guest=payer,
                actor_type="customer",
            )
            available -= share
            added += 1

    if available > ZERO:
        logger.warning(
            "PaymentIntent %s left %s unallocated after settling its guests", intent_id, available
        )
    return added


def apply_payment_intent(intent) -> int:
    """
    Record guest payments for a succeeded Stripe PaymentIntent. Safe to call
    more than once for the same intent. Returns the number of payments added.
    """
    metadata = intent.get("metadata") or {}
    payment_type = metadata.get("payment_type")
    intent_id = intent.get("id")

    try:
        guest_id = _metadata_id(metadata, "guest_id")
        proposal_id = _metadata_id(metadata, "trip_proposal_id")
        group_id = _metadata_id(metadata, "group_id")
        payer_id = _metadata_id(metadata, "paid_by_guest_id")
        guest_ids = [
            int(gid) for gid in str(metadata.get("guest_ids") or "").split(",") if gid.strip()
        ]
    except (TypeError, ValueError):
        logger.warning("PaymentIntent %s has malformed metadata: %r", intent_id, metadata)
        return 0

    if payment_type == GuestPayment.PaymentType.GUEST_SHARE:
        return _apply_guest_share(intent, guest_id)

    if payment_type == GuestPayment.PaymentType.GROUP_PAYMENT:
        return _apply_group_payment(intent, guest_ids, proposal_id, group_id, payer_id)

    logger.info("Ignoring PaymentIntent %s with payment_type=%s", intent_id, payment_type)
    return 0
