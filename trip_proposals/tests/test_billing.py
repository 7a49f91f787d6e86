from decimal import Decimal

import pytest

from trip_proposals import billing
from trip_proposals.exceptions import ValidationFailed
from trip_proposals.models import GuestPayment, ProposalGuest, TripProposal

pytestmark = pytest.mark.django_db


@pytest.fixture
def billed_proposal(make_proposal):
    def _make(total, **overrides):
        proposal = make_proposal(individual_billing_enabled=True, **overrides)
        TripProposal.objects.filter(pk=proposal.pk).update(total=Decimal(total))
        proposal.refresh_from_db()
        return proposal

    return _make


def owed(guest):
    return ProposalGuest.objects.get(pk=guest.pk).amount_owed


class TestCalculateGuestAmounts:
    """Splitting the proposal total across guests."""

    def test_sponsored_guest_example(self, billed_proposal, add_guest):
        proposal = billed_proposal("990.00")
        payers = [add_guest(proposal, name) for name in ("Ana", "Ben", "Cleo")]
        sponsor = add_guest(proposal, "Dev", is_sponsored=True)

        billing.calculate_guest_amounts(proposal.pk)

        assert [owed(g) for g in payers] == [Decimal("330.00")] * 3
        assert owed(sponsor) == Decimal("0.00")

        billing.record_payment(payers[0], "330.00")
        statuses = {
            g.name: g.payment_status for g in ProposalGuest.objects.filter(proposal=proposal)
        }
        assert statuses == {"Ana": "paid", "Ben": "unpaid", "Cleo": "unpaid", "Dev": "unpaid"}

    def test_leftover_pennies_go_to_first_guests(self, billed_proposal, add_guest):
        proposal = billed_proposal("100.00")
        guests = [add_guest(proposal, name) for name in ("Ana", "Ben", "Cleo")]

        billing.calculate_guest_amounts(proposal.pk)

        amounts = [owed(g) for g in guests]
        assert amounts == [Decimal("33.34"), Decimal("33.33"), Decimal("33.33")]
        assert sum(amounts) == Decimal("100.00")

    def test_override_wins_and_survives_recalculation(self, billed_proposal, add_guest):
        proposal = billed_proposal("990.00")
        ana, ben, cleo = [add_guest(proposal, name) for name in ("Ana", "Ben", "Cleo")]
        billing.calculate_guest_amounts(proposal.pk)

        billing.set_guest_override(ana, "500.00")
        billing.calculate_guest_amounts(proposal.pk)

        assert owed(ana) == Decimal("500.00")
        assert owed(ben) == owed(cleo) == Decimal("330.00")
        assert ProposalGuest.objects.get(pk=ana.pk).amount_owed_override == Decimal("500.00")

    def test_paid_amounts_are_preserved(self, billed_proposal, add_guest):
        proposal = billed_proposal("300.00")
        ana = add_guest(proposal, "Ana")
        add_guest(proposal, "Ben")
        billing.calculate_guest_amounts(proposal.pk)
        billing.record_payment(ana, "50.00")

        TripProposal.objects.filter(pk=proposal.pk).update(total=Decimal("400.00"))
        billing.calculate_guest_amounts(proposal.pk)

        ana.refresh_from_db()
        assert ana.amount_owed == Decimal("200.00")
        assert ana.amount_paid == Decimal("50.00")
        assert ana.payment_status == ProposalGuest.PaymentStatus.PARTIAL

    def test_requires_individual_billing(self, make_proposal, add_guest):
        proposal = make_proposal()
        add_guest(proposal, "Ana")

        with pytest.raises(ValidationFailed):
            billing.calculate_guest_amounts(proposal.pk)

    def test_requires_a_paying_guest(self, billed_proposal, add_guest):
        proposal = billed_proposal("100.00")
        add_guest(proposal, "Ana", is_sponsored=True)

        with pytest.raises(ValidationFailed):
            billing.calculate_guest_amounts(proposal.pk)


class TestGuestBillingChanges:
    def test_sponsoring_clears_override_and_resplits(self, billed_proposal, add_guest):
        proposal = billed_proposal("900.00")
        ana, ben, cleo = [add_guest(proposal, name) for name in ("Ana", "Ben", "Cleo")]
        billing.set_guest_override(ana, "100.00")

        billing.set_guest_sponsored(ana, True)

        ana.refresh_from_db()
        assert ana.is_sponsored
        assert ana.amount_owed_override is None
        assert ana.amount_owed == Decimal("0.00")
        assert owed(ben) == owed(cleo) == Decimal("450.00")

    def test_negative_override_is_rejected(self, billed_proposal, add_guest):
        guest = add_guest(billed_proposal("100.00"), "Ana")

        with pytest.raises(ValidationFailed):
            billing.set_guest_override(guest, "-1")

    @pytest.mark.parametrize("amount", ["0", "-5", "abc", None])
    def test_record_payment_rejects_bad_amounts(self, billed_proposal, add_guest, amount):
        guest = add_guest(billed_proposal("100.00"), "Ana")

        with pytest.raises(ValidationFailed):
            billing.record_payment(guest, amount)
        assert not GuestPayment.objects.exists()

    def test_partial_then_paid(self, billed_proposal, add_guest):
        proposal = billed_proposal("200.00")
        guest = add_guest(proposal, "Ana")
        billing.calculate_guest_amounts(proposal.pk)

        _, guest = billing.record_payment(guest, "50.00", notes="Check #1021")
        assert guest.payment_status == ProposalGuest.PaymentStatus.PARTIAL
        assert guest.payment_paid_at is None

        _, guest = billing.record_payment(guest, "150.00")
        assert guest.payment_status == ProposalGuest.PaymentStatus.PAID
        assert guest.amount_paid == Decimal("200.00")
        assert guest.payment_paid_at is not None
        assert guest.payments.count() == 2


class TestVerifyBilling:
    def test_balanced_after_calculation(self, billed_proposal, add_guest):
        proposal = billed_proposal("990.00")
        for name in ("Ana", "Ben", "Cleo"):
            add_guest(proposal, name)
        billing.calculate_guest_amounts(proposal.pk)

        result = billing.verify_billing(proposal.pk)

        assert result["valid"] is True
        assert result["discrepancies"] == []
        assert result["sum_owed"] == Decimal("990.00")

    def test_reports_mismatch_without_correcting(self, billed_proposal, add_guest):
        proposal = billed_proposal("990.00")
        ana = add_guest(proposal, "Ana")
        add_guest(proposal, "Ben")
        billing.calculate_guest_amounts(proposal.pk)
        billing.set_guest_override(ana, "100.00")

        result = billing.verify_billing(proposal.pk)

        assert result["valid"] is False
        assert result["sum_owed"] == Decimal("595.00")
        assert owed(ana) == Decimal("100.00")

    def test_reports_ledger_mismatch(self, billed_proposal, add_guest):
        proposal = billed_proposal("100.00")
        ana = add_guest(proposal, "Ana")
        billing.calculate_guest_amounts(proposal.pk)
        ProposalGuest.objects.filter(pk=ana.pk).update(amount_paid=Decimal("40.00"))

        result = billing.verify_billing(proposal.pk)

        assert result["valid"] is False
        assert any("recorded payments" in d for d in result["discrepancies"])


class TestPaymentGroups:
    def test_group_sums_member_amounts(self, billed_proposal, add_guest):
        proposal = billed_proposal("300.00")
        ana, ben, cleo = [add_guest(proposal, name) for name in ("Ana", "Ben", "Cleo")]
        billing.calculate_guest_amounts(proposal.pk)

        group = billing.create_payment_group(proposal, [ana.pk, ben.pk], "Ana & Ben")

        assert set(group.guests.values_list("pk", flat=True)) == {ana.pk, ben.pk}
        assert group.amount_owed() == Decimal("200.00")
        assert len(group.access_token) >= 32

    def test_rejects_guests_from_another_proposal(self, billed_proposal, add_guest):
        proposal = billed_proposal("300.00")
        other = billed_proposal("100.00")
        ana = add_guest(proposal, "Ana")
        stranger = add_guest(other, "Zed")

        with pytest.raises(ValidationFailed):
            billing.create_payment_group(proposal, [ana.pk, stranger.pk], "Mixed")
        assert not proposal.payment_groups.exists()

    def test_remove_unlinks_guests(self, billed_proposal, add_guest):
        proposal = billed_proposal("300.00")
        ana = add_guest(proposal, "Ana")
        group = billing.create_payment_group(proposal, [ana.pk], "Solo")

        billing.remove_payment_group(group)

        ana.refresh_from_db()
        assert ana.payment_group is None
        assert not proposal.payment_groups.exists()


class TestApplyPaymentIntent:
    def test_guest_share_is_recorded_once(self, billed_proposal, add_guest):
        proposal = billed_proposal("200.00")
        guest = add_guest(proposal, "Ana")
        billing.calculate_guest_amounts(proposal.pk)
        intent = {
            "id": "pi_123",
            "amount_received": 20000,
            "metadata": {"payment_type": "guest_share", "guest_id": str(guest.pk)},
        }

        assert billing.apply_payment_intent(intent) == 1
        assert billing.apply_payment_intent(intent) == 0

        guest.refresh_from_db()
        assert guest.amount_paid == Decimal("200.00")
        assert guest.payment_status == ProposalGuest.PaymentStatus.PAID

    def test_group_payment_settles_each_member(self, billed_proposal, add_guest):
        proposal = billed_proposal("300.00")
        ana, ben, cleo = [add_guest(proposal, name) for name in ("Ana", "Ben", "Cleo")]
        billing.calculate_guest_amounts(proposal.pk)
        intent = {
            "id": "pi_group",
            "amount_received": 20000,
            "metadata": {
                "payment_type": "group_payment",
                "guest_ids": f"{ana.pk},{ben.pk}",
                "paid_by_guest_id": str(ana.pk),
            },
        }

        assert billing.apply_payment_intent(intent) == 2
        assert billing.apply_payment_intent(intent) == 0

        paid = dict(ProposalGuest.objects.values_list("name", "amount_paid"))
        assert paid == {
            "Ana": Decimal("100.00"),
            "Ben": Decimal("100.00"),
            "Cleo": Decimal("0.00"),
        }
        assert GuestPayment.objects.filter(paid_by_guest=ana).count() == 2

    def test_short_group_payment_is_capped_to_amount_received(self, billed_proposal, add_guest):
        proposal = billed_proposal("300.00")
        ana, ben, cleo = [add_guest(proposal, name) for name in ("Ana", "Ben", "Cleo")]
        billing.calculate_guest_amounts(proposal.pk)
        intent = {
            "id": "pi_short",
            "amount_received": 15000,
            "metadata": {"payment_type": "group_payment", "guest_ids": f"{ana.pk},{ben.pk}"},
        }

        assert billing.apply_payment_intent(intent) == 2

        ana.refresh_from_db()
        ben.refresh_from_db()
        assert ana.amount_paid == Decimal("100.00")
        assert ana.payment_status == ProposalGuest.PaymentStatus.PAID
        assert ben.amount_paid == Decimal("50.00")
        assert ben.payment_status == ProposalGuest.PaymentStatus.PARTIAL
        assert sum(GuestPayment.objects.values_list("amount", flat=True)) == Decimal("150.00")

    def test_group_payment_rejects_guests_across_proposals(self, billed_proposal, add_guest):
        proposal = billed_proposal("200.00")
        other = billed_proposal("200.00")
        ana = add_guest(proposal, "Ana", amount_owed=Decimal("100.00"))
        stranger = add_guest(other, "Zed", amount_owed=Decimal("200.00"))
        intent = {
            "id": "pi_mixed",
            "amount_received": 30000,
            "metadata": {"payment_type": "group_payment", "guest_ids": f"{ana.pk},{stranger.pk}"},
        }

        assert billing.apply_payment_intent(intent) == 0
        assert not GuestPayment.objects.exists()

    def test_group_payment_must_match_named_proposal_and_group(self, billed_proposal, add_guest):
        proposal = billed_proposal("200.00")
        ana = add_guest(proposal, "Ana", amount_owed=Decimal("100.00"))
        ben = add_guest(proposal, "Ben", amount_owed=Decimal("100.00"))
        group = billing.create_payment_group(proposal, [ana.pk], "Ana only")
        wrong_group = {
            "id": "pi_group_check",
            "amount_received": 20000,
            "metadata": {
                "payment_type": "group_payment",
                "guest_ids": f"{ana.pk},{ben.pk}",
                "group_id": str(group.pk),
            },
        }
        wrong_proposal = {
            "id": "pi_proposal_check",
            "amount_received": 10000,
            "metadata": {
                "payment_type": "group_payment",
                "guest_ids": str(ana.pk),
                "trip_proposal_id": str(proposal.pk + 1000),
            },
        }

        assert billing.apply_payment_intent(wrong_group) == 0
        assert billing.apply_payment_intent(wrong_proposal) == 0
        assert not GuestPayment.objects.exists()

    @pytest.mark.parametrize(
        "metadata",
        [
            {"payment_type": "guest_share", "guest_id": "abc"},
            {"payment_type": "group_payment", "guest_ids": "1,two"},
            {"payment_type": "group_payment", "guest_ids": "1", "paid_by_guest_id": "x"},
        ],
    )
    def test_malformed_metadata_is_ignored(self, db, metadata):
        intent = {"id": "pi_bad", "amount_received": 1000, "metadata": metadata}

        assert billing.apply_payment_intent(intent) == 0
        assert not GuestPayment.objects.exists()
