from decimal import Decimal

from django import forms
from django.forms.models import model_to_dict

from .models import (
    ZERO,
    ProposalDay,
    ProposalGuest,
    ProposalInclusion,
    ProposalStop,
    TripProposal,
)

HUNDRED = Decimal("100")


def bind_form(form_class, payload, instance=None, **kwargs):
    """
    Bind a ModelForm to a JSON payload. Fields missing from the payload keep
    the instance's current values (or the model defaults for a new row), so
    PATCH requests only need to send what changes.
    """
    fields = form_class._meta.fields
    aliases = getattr(form_class, "PAYLOAD_ALIASES", {})
    payload = {aliases.get(key, key): value for key, value in payload.items()}
    base = instance if instance is not None else form_class._meta.model()
    data = model_to_dict(base, fields=fields)
    data.update({key: value for key, value in payload.items() if key in fields})
    form = form_class(data=data, instance=instance, **kwargs)
    form.payload = payload
    return form


def _check_non_negative(form, names):
    for name in names:
        value = form.cleaned_data.get(name)
        if value is not None and value < ZERO:
            form.add_error(name, "Must be zero or more.")


def _check_percentage(form, names):
    for name in names:
        value = form.cleaned_data.get(name)
        if value is not None and not (ZERO <= value <= HUNDRED):
            form.add_error(name, "Must be between 0 and 100.")


class TripProposalForm(forms.ModelForm):
    PRICING_INPUTS = {
        "party_size",
        "start_date",
        "end_date",
        "discount_percentage",
        "manual_discount",
        "tax_rate",
        "gratuity_percentage",
        "deposit_percentage",
        "deposit_paid",
        "skip_deposit_on_accept",
        "planning_fee_mode",
        "planning_fee_percentage",
    }
    # API clients send the manual discount as "discount_amount".
    PAYLOAD_ALIASES = {"discount_amount": "manual_discount"}

    class Meta:
        model = TripProposal
        fields = [
            "customer_name",
            "customer_email",
            "customer_phone",
            "customer_company",
            "trip_title",
            "party_size",
            "start_date",
            "end_date",
            "discount_percentage",
            "manual_discount",
            "discount_reason",
            "tax_rate",
            "gratuity_percentage",
            "deposit_percentage",
            "deposit_paid",
            "skip_deposit_on_accept",
            "planning_fee_mode",
            "planning_fee_percentage",
            "individual_billing_enabled",
            "payment_deadline",
            "internal_notes",
        ]
        widgets = {
            "start_date": forms.DateInput(attrs={"type": "date"}),
            "end_date": forms.DateInput(attrs={"type": "date"}),
            "payment_deadline": forms.DateInput(attrs={"type": "date"}),
            "internal_notes": forms.Textarea(attrs={"rows": 4}),
        }

    def clean(self):
        cleaned = super().clean()
        start, end = cleaned.get("start_date"), cleaned.get("end_date")
        if start and end and end < start:
            self.add_error("end_date", "End date cannot be before the start date.")
        _check_percentage(
            self,
            [
                "discount_percentage",
                "tax_rate",
                "gratuity_percentage",
                "deposit_percentage",
                "planning_fee_percentage",
            ],
        )
        _check_non_negative(self, ["manual_discount"])
        return cleaned

    def pricing_changed(self) -> bool:
        return bool(self.PRICING_INPUTS.intersection(self.changed_data))


class ProposalStatusForm(forms.Form):
    status = forms.ChoiceField(choices=TripProposal.Status.choices)


class ProposalDayForm(forms.ModelForm):
    class Meta:
        model = ProposalDay
        fields = ["date", "title", "description", "notes"]

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        # New days default to the next calendar day of the trip.
        self.fields["date"].required = self.instance.pk is not None


class ProposalStopForm(forms.ModelForm):
    class Meta:
        model = ProposalStop
        fields = [
            "stop_type",
            "stop_order",
            "winery",
            "restaurant",
            "hotel",
            "custom_name",
            "custom_address",
            "scheduled_time",
            "duration_minutes",
            "per_person_cost",
            "flat_cost",
            "cost_note",
            "quote_status",
            "quoted_amount",
            "client_notes",
            "internal_notes",
        ]

    def clean(self):
        cleaned = super().clean()
        stop_type = cleaned.get("stop_type")
        if stop_type:
            venue_field = ProposalStop.VENUE_FIELDS.get(stop_type)
            for field in ProposalStop.VENUE_FIELDS.values():
                if field != venue_field and cleaned.get(field):
                    self.add_error(field, f"A {stop_type} stop cannot reference a {field}.")
            if venue_field:
                if not cleaned.get(venue_field):
                    self.add_error(venue_field, f"A {stop_type} stop must reference a {venue_field}.")
            elif not (cleaned.get("custom_name") or "").strip():
                self.add_error("custom_name", "A name is required for this stop.")
        _check_non_negative(self, ["per_person_cost", "flat_cost", "quoted_amount"])
        return cleaned


class ProposalInclusionForm(forms.ModelForm):
    class Meta:
        model = ProposalInclusion
        fields = [
            "inclusion_type",
            "description",
            "pricing_type",
            "quantity",
            "unit_price",
            "total_price",
            "is_taxable",
            "tax_included_in_price",
            "sort_order",
            "notes",
        ]

    def clean(self):
        cleaned = super().clean()
        _check_non_negative(self, ["quantity", "unit_price", "total_price"])
        return cleaned


class ProposalGuestForm(forms.ModelForm):
    class Meta:
        model = ProposalGuest
        fields = ["name", "email", "phone", "is_primary", "dietary_restrictions"]
