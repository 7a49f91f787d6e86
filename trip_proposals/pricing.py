"""
Pricing recalculation for trip proposals.

Re-derives subtotal, discount, taxes, gratuity, total, deposit and balance from
the itinerary stops and inclusions, and writes them back to the proposal in one
transaction.
"""
import logging
from decimal import ROUND_HALF_UP, Decimal

from django.db import transaction

from .exceptions import NotFound
from .models import CENT, ZERO, ProposalInclusion, ProposalStop, TripProposal, log_activity

logger = logging.getLogger(__name__)

HUNDRED = Decimal("100")

DERIVED_FIELDS = (
    "subtotal",
    "discount_amount",
    "taxes",
    "gratuity_amount",
    "total",
    "deposit_amount",
    "balance_due",
    "updated_at",
)


def money(value) -> Decimal:
    return Decimal(value or 0).quantize(CENT, rounding=ROUND_HALF_UP)


def inclusion_amount(inclusion, party_size, day_count) -> Decimal:
    unit_price = inclusion.unit_price or ZERO
    quantity = inclusion.quantity if inclusion.quantity is not None else Decimal("1")
    pricing_type = inclusion.pricing_type
    if pricing_type == ProposalInclusion.PricingType.PER_PERSON:
        return money(quantity * unit_price * Decimal(party_size or 0))
    if pricing_type == ProposalInclusion.PricingType.PER_DAY:
        return money(quantity * unit_price * Decimal(day_count or 0))
    if inclusion.total_price is not None:
        return money(inclusion.total_price)
    return money(quantity * unit_price)


def _stops_subtotal(proposal) -> Decimal:
    stops = ProposalStop.objects.filter(day__proposal=proposal)
    return money(sum((stop.line_amount(proposal.party_size) for stop in stops), ZERO))


def _apply_planning_fee(proposal, inclusions, amounts, stops_subtotal):
    """
    Percentage mode: the fee is a share of every other service, before discount.
    The fee is stored on the proposal's planning-fee line, created if missing.
    """
    percentage = proposal.planning_fee_percentage or ZERO
    if proposal.planning_fee_mode != TripProposal.PlanningFeeMode.PERCENTAGE or percentage <= ZERO:
        return

    fee_lines = [
        inc for inc in inclusions
        if inc.inclusion_type == ProposalInclusion.InclusionType.PLANNING_FEE
    ]
    services_base = stops_subtotal + sum(
        (amounts[inc.pk] for inc in inclusions if inc not in fee_lines), ZERO
    )
    fee = money(services_base * percentage / HUNDRED)

    if fee_lines:
        fee_line = fee_lines[0]
        # Only the first planning-fee line carries the fee.
        for extra in fee_lines[1:]:
            amounts[extra.pk] = ZERO
            if extra.unit_price != ZERO or extra.total_price != ZERO:
                extra.pricing_type = ProposalInclusion.PricingType.FLAT
                extra.unit_price = ZERO
                extra.total_price = ZERO
                extra.save(update_fields=["pricing_type", "unit_price", "total_price"])
    else:
        fee_line = ProposalInclusion(
            proposal=proposal,
            inclusion_type=ProposalInclusion.InclusionType.PLANNING_FEE,
            description="Planning fee",
            sort_order=len(inclusions),
        )
    fee_line.pricing_type = ProposalInclusion.PricingType.FLAT
    fee_line.quantity = Decimal("1.00")
    fee_line.unit_price = fee
    fee_line.total_price = fee
    fee_line.save()
    if fee_line not in inclusions:
        inclusions.append(fee_line)
    amounts[fee_line.pk] = fee


def calculate_breakdown(proposal) -> dict:
    """
    Compute the pricing breakdown for a proposal. Writes line amounts of
    per-person / per-day inclusions and the planning fee, but not the proposal.
    """
    party_size = proposal.party_size or 0
    day_count = proposal.day_count()

    stops_subtotal = _stops_subtotal(proposal)
    inclusions = list(proposal.inclusions.all())
    amounts = {}
    for inc in inclusions:
        amount = inclusion_amount(inc, party_size, day_count)
        amounts[inc.pk] = amount
        if inc.pricing_type != ProposalInclusion.PricingType.FLAT and inc.total_price != amount:
            inc.total_price = amount
            inc.save(update_fields=["total_price"])

    _apply_planning_fee(proposal, inclusions, amounts, stops_subtotal)

    inclusions_subtotal = sum(amounts.values(), ZERO)
    taxable_amount = sum((amounts[inc.pk] for inc in inclusions if inc.adds_tax), ZERO)
    subtotal = money(stops_subtotal + inclusions_subtotal)

    if proposal.discount_percentage and proposal.discount_percentage > ZERO:
        discount = money(subtotal * proposal.discount_percentage / HUNDRED)
    else:
        discount = money(proposal.manual_discount)
    discount = min(max(discount, ZERO), subtotal)
    subtotal_after_discount = subtotal - discount

    # Discount is spread proportionally over taxable and non-taxable lines.
    discount_ratio = subtotal_after_discount / subtotal if subtotal > ZERO else Decimal("1")
    tax_rate = proposal.tax_rate or ZERO
    taxes = money(taxable_amount * discount_ratio * tax_rate / HUNDRED)

    total = subtotal - discount + taxes
    gratuity = money(subtotal_after_discount * (proposal.gratuity_percentage or ZERO) / HUNDRED)

    if proposal.skip_deposit_on_accept:
        deposit = ZERO
    else:
        deposit = money(total * (proposal.deposit_percentage or ZERO) / HUNDRED)
    balance = total - deposit if proposal.deposit_paid else total

    return {
        "stops_subtotal": stops_subtotal,
        "inclusions_subtotal": money(inclusions_subtotal),
        "subtotal": subtotal,
        "discount_amount": discount,
        "subtotal_after_discount": subtotal_after_discount,
        "taxable_amount": money(taxable_amount),
        "taxes": taxes,
        "gratuity_amount": gratuity,
        "total": total,
        "deposit_amount": deposit,
        "balance_due": balance,
    }


def recalculate_pricing(proposal_id) -> dict:
    """
    Recalculate and store a proposal's totals. All-or-nothing: a failure rolls
    back every write and leaves the previously stored values in place.
    """
    with transaction.atomic():
        proposal = TripProposal.objects.select_for_update().filter(pk=proposal_id).first()
        if proposal is None:
            raise NotFound("TripProposal", proposal_id)

        breakdown = calculate_breakdown(proposal)

        proposal.subtotal = breakdown["subtotal"]
        proposal.discount_amount = breakdown["discount_amount"]
        proposal.taxes = breakdown["taxes"]
        proposal.gratuity_amount = breakdown["gratuity_amount"]
        proposal.total = breakdown["total"]
        proposal.deposit_amount = breakdown["deposit_amount"]
        proposal.balance_due = breakdown["balance_due"]
        proposal.save(update_fields=list(DERIVED_FIELDS))

        log_activity(
            proposal,
            "pricing_recalculated",
            f"Pricing recalculated: total {breakdown['total']}",
            actor_type="system",
            total=str(breakdown["total"]),
        )

    logger.info(
        "Recalculated pricing for proposal %s: subtotal=%s taxes=%s total=%s",
        proposal.proposal_number,
        breakdown["subtotal"],
        breakdown["taxes"],
        breakdown["total"],
    )
    return breakdown
