from datetime import timedelta
from decimal import Decimal

import pytest
from django.contrib.auth import get_user_model
from django.utils import timezone

from trip_proposals.models import (
    ProposalDay,
    ProposalGuest,
    ProposalInclusion,
    ProposalStop,
    TripProposal,
)


@pytest.fixture
def today():
    return timezone.localdate()


@pytest.fixture
def make_proposal(db):
    def _make(**overrides):
        values = {
            "customer_name": "Avery Lindqvist",
            "customer_email": "avery@example.com",
            "trip_title": "Walla Walla Weekend",
            "party_size": 4,
            "tax_rate": Decimal("10.00"),
            "deposit_percentage": Decimal("50.00"),
        }
        values.update(overrides)
        return TripProposal.objects.create(**values)

    return _make


@pytest.fixture
def proposal(make_proposal):
    return make_proposal()


@pytest.fixture
def add_day(db):
    def _add(proposal, number=None, **overrides):
        number = number or proposal.days.count() + 1
        values = {
            "proposal": proposal,
            "day_number": number,
            "date": proposal.start_date + timedelta(days=number - 1),
            "title": f"Day {number}",
        }
        values.update(overrides)
        return ProposalDay.objects.create(**values)

    return _add


@pytest.fixture
def add_stop(db):
    def _add(day, **overrides):
        values = {
            "day": day,
            "stop_type": ProposalStop.StopType.CUSTOM,
            "custom_name": "Blue Mountain Overlook",
        }
        values.update(overrides)
        return ProposalStop.objects.create(**values)

    return _add


@pytest.fixture
def add_inclusion(db):
    def _add(proposal, unit_price, **overrides):
        values = {
            "proposal": proposal,
            "description": "Sprinter van",
            "inclusion_type": ProposalInclusion.InclusionType.TRANSPORTATION,
            "unit_price": Decimal(str(unit_price)),
        }
        values.update(overrides)
        return ProposalInclusion.objects.create(**values)

    return _add


@pytest.fixture
def add_guest(db):
    def _add(proposal, name, **overrides):
        values = {
            "proposal": proposal,
            "name": name,
            "email": f"{name.lower()}@example.com",
        }
        values.update(overrides)
        return ProposalGuest.objects.create(**values)

    return _add


@pytest.fixture
def staff_user(db):
    return get_user_model().objects.create_user(
        username="planner", email="planner@example.com", password="not-a-real-password", is_staff=True
    )


@pytest.fixture
def staff_client(client, staff_user):
    client.force_login(staff_user)
    return client
