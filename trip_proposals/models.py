import secrets
from decimal import Decimal

from django.conf import settings
from django.core.validators import MaxValueValidator, MinValueValidator
from django.db import models
from django.utils import timezone

CENT = Decimal("0.01")
ZERO = Decimal("0.00")


def default_tax_rate():
    return Decimal(str(getattr(settings, "TRIP_PROPOSAL_DEFAULT_TAX_RATE", "9.10")))


def default_deposit_percentage():
    return Decimal(str(getattr(settings, "TRIP_PROPOSAL_DEFAULT_DEPOSIT_PERCENTAGE", "50.00")))


def generate_access_token():
    return secrets.token_urlsafe(32)


# ==========================
# VENUE DIRECTORY
# ==========================
class Venue(models.Model):
    name = models.CharField(max_length=200)
    address = models.CharField(max_length=255, blank=True)
    phone = models.CharField(max_length=50, blank=True)
    website = models.URLField(blank=True)
    is_active = models.BooleanField(default=True)

    class Meta:
        abstract = True
        ordering = ["name"]

    def __str__(self):
        return self.name


class Winery(Venue):
    class Meta(Venue.Meta):
        verbose_name_plural = "Wineries"


class Restaurant(Venue):
    pass


class Hotel(Venue):
    pass


# ==========================
# TRIP PROPOSAL
# ==========================
class TripProposal(models.Model):
    """
    One multi-day trip quote for a customer party.
    """

    class Status(models.TextChoices):
        DRAFT = "draft", "Draft"
        SENT = "sent", "Sent"
        VIEWED = "viewed", "Viewed"
        ACCEPTED = "accepted", "Accepted"
        DECLINED = "declined", "Declined"
        EXPIRED = "expired", "Expired"
        CONVERTED = "converted", "Converted"

    class PlanningFeeMode(models.TextChoices):
        FLAT = "flat", "Flat amount"
        PERCENTAGE = "percentage", "Percentage of services"

    STATUS_TRANSITIONS = {
        Status.DRAFT: (Status.SENT, Status.DECLINED),
        Status.SENT: (Status.VIEWED, Status.ACCEPTED, Status.DECLINED, Status.EXPIRED),
        Status.VIEWED: (Status.SENT, Status.ACCEPTED, Status.DECLINED, Status.EXPIRED),
        Status.ACCEPTED: (Status.CONVERTED,),
        Status.DECLINED: (Status.DRAFT,),
        Status.EXPIRED: (Status.DRAFT,),
        Status.CONVERTED: (),
    }

    proposal_number = models.CharField(max_length=30, unique=True, blank=True)
    status = models.CharField(max_length=20, choices=Status.choices, default=Status.DRAFT)

    # Customer
    customer_name = models.CharField(max_length=255)
    customer_email = models.EmailField(blank=True)
    customer_phone = models.CharField(max_length=50, blank=True)
    customer_company = models.CharField(max_length=255, blank=True)

    # Trip
    trip_title = models.CharField(max_length=255, blank=True)
    party_size = models.PositiveIntegerField(
        default=1,
        validators=[MinValueValidator(1), MaxValueValidator(100)],
    )
    start_date = models.DateField(default=timezone.localdate)
    end_date = models.DateField(null=True, blank=True)

    # Pricing inputs
    discount_percentage = models.DecimalField(
        max_digits=5,
        decimal_places=2,
        default=ZERO,
        help_text="When set, the discount amount is derived from the subtotal.",
    )
    manual_discount = models.DecimalField(
        max_digits=10,
        decimal_places=2,
        default=ZERO,
        help_text="Manual discount, used when no discount percentage is set.",
    )
    discount_reason = models.CharField(max_length=255, blank=True)
    tax_rate = models.DecimalField(
        max_digits=5,
        decimal_places=2,
        default=default_tax_rate,
        help_text="Percent, applied to taxable line items after discount.",
    )
    gratuity_percentage = models.DecimalField(max_digits=5, decimal_places=2, default=ZERO)
    deposit_percentage = models.DecimalField(
        max_digits=5, decimal_places=2, default=default_deposit_percentage
    )
    skip_deposit_on_accept = models.BooleanField(
        default=False,
        help_text="Acceptance grants access immediately; no deposit is requested.",
    )
    planning_fee_mode = models.CharField(
        max_length=20, choices=PlanningFeeMode.choices, default=PlanningFeeMode.FLAT
    )
    planning_fee_percentage = models.DecimalField(max_digits=5, decimal_places=2, default=ZERO)

    # Stored totals (recalculated by trip_proposals.pricing)
    subtotal = models.DecimalField(max_digits=12, decimal_places=2, default=ZERO)
    discount_amount = models.DecimalField(
        max_digits=12,
        decimal_places=2,
        default=ZERO,
        help_text="Discount applied to the subtotal, clamped to 0..subtotal.",
    )
    taxes = models.DecimalField(max_digits=12, decimal_places=2, default=ZERO)
    gratuity_amount = models.DecimalField(max_digits=12, decimal_places=2, default=ZERO)
    total = models.DecimalField(max_digits=12, decimal_places=2, default=ZERO)
    deposit_amount = models.DecimalField(
        "Deposit due", max_digits=12, decimal_places=2, default=ZERO
    )
    deposit_paid = models.BooleanField(default=False)
    balance_due = models.DecimalField(max_digits=12, decimal_places=2, default=ZERO)

    # Billing & reminders
    individual_billing_enabled = models.BooleanField(default=False)
    payment_deadline = models.DateField(null=True, blank=True)
    reminders_paused = models.BooleanField(default=False)

    internal_notes = models.TextField(blank=True)
    sent_at = models.DateTimeField(null=True, blank=True)
    accepted_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-created_at"]

    def __str__(self):
        return f"{self.proposal_number} - {self.customer_name}"

    # ---- Helpers ----

    def can_transition_to(self, status) -> bool:
        return status in self.STATUS_TRANSITIONS.get(self.Status(self.status), ())

    def day_count(self) -> int:
        days = self.days.count()
        if days:
            return days
        if self.end_date and self.start_date and self.end_date >= self.start_date:
            return (self.end_date - self.start_date).days + 1
        return 1

    def _next_proposal_number(self) -> str:
        year = (self.created_at or timezone.now()).year
        prefix = f"TP-{year}-"
        last = (
            TripProposal.objects.filter(proposal_number__startswith=prefix)
            .order_by("-proposal_number")
            .values_list("proposal_number", flat=True)
            .first()
        )
        sequence = int(last[len(prefix):]) + 1 if last else 1
        return f"{prefix}{sequence:05d}"

    def save(self, *args, **kwargs):
        if not self.proposal_number:
            self.proposal_number = self._next_proposal_number()
        super().save(*args, **kwargs)


class ProposalDay(models.Model):
    proposal = models.ForeignKey(TripProposal, on_delete=models.CASCADE, related_name="days")
    day_number = models.PositiveIntegerField()
    date = models.DateField()
    title = models.CharField(max_length=255, blank=True)
    description = models.TextField(blank=True)
    notes = models.TextField(blank=True)

    class Meta:
        ordering = ["day_number"]
        unique_together = ("proposal", "day_number")

    def __str__(self):
        return self.title or f"Day {self.day_number}"


class ProposalStop(models.Model):
    class StopType(models.TextChoices):
        PICKUP = "pickup", "Pickup"
        DROPOFF = "dropoff", "Dropoff"
        WINERY = "winery", "Winery"
        RESTAURANT = "restaurant", "Restaurant"
        HOTEL = "hotel", "Hotel"
        ACTIVITY = "activity", "Activity"
        CUSTOM = "custom", "Custom"

    class QuoteStatus(models.TextChoices):
        NOT_REQUESTED = "not_requested", "Not requested"
        REQUESTED = "requested", "Requested"
        QUOTED = "quoted", "Quoted"
        ACCEPTED = "accepted", "Accepted"
        DECLINED = "declined", "Declined"

    # stop_type -> venue field it must reference
    VENUE_FIELDS = {
        StopType.WINERY: "winery",
        StopType.RESTAURANT: "restaurant",
        StopType.HOTEL: "hotel",
    }

    day = models.ForeignKey(ProposalDay, on_delete=models.CASCADE, related_name="stops")
    stop_order = models.PositiveIntegerField(default=0)
    stop_type = models.CharField(max_length=20, choices=StopType.choices)

    winery = models.ForeignKey(
        Winery, on_delete=models.SET_NULL, null=True, blank=True, related_name="stops"
    )
    restaurant = models.ForeignKey(
        Restaurant, on_delete=models.SET_NULL, null=True, blank=True, related_name="stops"
    )
    hotel = models.ForeignKey(
        Hotel, on_delete=models.SET_NULL, null=True, blank=True, related_name="stops"
    )
    custom_name = models.CharField(max_length=255, blank=True)
    custom_address = models.CharField(max_length=255, blank=True)

    scheduled_time = models.TimeField(null=True, blank=True)
    duration_minutes = models.PositiveIntegerField(null=True, blank=True)

    per_person_cost = models.DecimalField(
        max_digits=10, decimal_places=2, default=ZERO, help_text="e.g. tasting fee"
    )
    flat_cost = models.DecimalField(
        max_digits=10, decimal_places=2, default=ZERO, help_text="e.g. private tour fee"
    )
    cost_note = models.CharField(max_length=255, blank=True)

    # Vendor quote tracking; informational only, never priced.
    quote_status = models.CharField(
        max_length=20, choices=QuoteStatus.choices, default=QuoteStatus.NOT_REQUESTED
    )
    quoted_amount = models.DecimalField(max_digits=10, decimal_places=2, null=True, blank=True)

    client_notes = models.TextField(blank=True)
    internal_notes = models.TextField(blank=True)

    class Meta:
        ordering = ["day__day_number", "stop_order"]

    def __str__(self):
        return f"{self.get_stop_type_display()}: {self.display_name}"

    @property
    def display_name(self):
        venue = self.venue
        return venue.name if venue else self.custom_name

    @property
    def venue(self):
        field = self.VENUE_FIELDS.get(self.stop_type)
        return getattr(self, field) if field else None

    def line_amount(self, party_size) -> Decimal:
        per_person = self.per_person_cost or ZERO
        flat = self.flat_cost or ZERO
        return flat + per_person * Decimal(party_size or 0)


class ProposalInclusion(models.Model):
    """
    A priced line item attached to a proposal, independent of itinerary stops.
    """

    class InclusionType(models.TextChoices):
        TRANSPORTATION = "transportation", "Transportation"
        CHAUFFEUR = "chauffeur", "Chauffeur"
        GRATUITY = "gratuity", "Gratuity"
        PLANNING_FEE = "planning_fee", "Planning fee"
        CUSTOM = "custom", "Custom"

    class PricingType(models.TextChoices):
        FLAT = "flat", "Flat"
        PER_PERSON = "per_person", "Per person"
        PER_DAY = "per_day", "Per day"

    proposal = models.ForeignKey(
        TripProposal, on_delete=models.CASCADE, related_name="inclusions"
    )
    inclusion_type = models.CharField(
        max_length=20, choices=InclusionType.choices, default=InclusionType.CUSTOM
    )
    description = models.CharField(max_length=255)
    pricing_type = models.CharField(
        max_length=20, choices=PricingType.choices, default=PricingType.FLAT
    )
    quantity = models.DecimalField(max_digits=8, decimal_places=2, default=Decimal("1.00"))
    unit_price = models.DecimalField(max_digits=10, decimal_places=2, default=ZERO)
    total_price = models.DecimalField(
        max_digits=12,
        decimal_places=2,
        null=True,
        blank=True,
        help_text="Flat lines: replaces quantity x unit price when set.",
    )
    is_taxable = models.BooleanField(default=True)
    tax_included_in_price = models.BooleanField(
        default=False,
        help_text="The price already contains tax; it is never taxed again.",
    )
    sort_order = models.PositiveIntegerField(default=0)
    notes = models.CharField(max_length=255, blank=True)

    class Meta:
        ordering = ["sort_order", "id"]

    def __str__(self):
        return self.description

    @property
    def adds_tax(self) -> bool:
        return self.is_taxable and not self.tax_included_in_price


# ==========================
# GUESTS & BILLING
# ==========================
class GuestPaymentGroup(models.Model):
    """
    Several guests paying through one shared link (couples, families).
    """

    proposal = models.ForeignKey(
        TripProposal, on_delete=models.CASCADE, related_name="payment_groups"
    )
    name = models.CharField(max_length=200)
    access_token = models.CharField(max_length=64, unique=True, default=generate_access_token)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["name"]

    def __str__(self):
        return f"{self.name} ({self.proposal.proposal_number})"

    def amount_owed(self) -> Decimal:
        return sum((g.amount_owed for g in self.guests.all()), ZERO)

    def amount_paid(self) -> Decimal:
        return sum((g.amount_paid for g in self.guests.all()), ZERO)


class ProposalGuest(models.Model):
    class PaymentStatus(models.TextChoices):
        UNPAID = "unpaid", "Unpaid"
        PARTIAL = "partial", "Partial"
        PAID = "paid", "Paid"
        REFUNDED = "refunded", "Refunded"

    proposal = models.ForeignKey(TripProposal, on_delete=models.CASCADE, related_name="guests")
    name = models.CharField(max_length=255)
    email = models.EmailField(blank=True)
    phone = models.CharField(max_length=50, blank=True)
    is_primary = models.BooleanField(default=False)
    dietary_restrictions = models.CharField(max_length=255, blank=True)

    is_sponsored = models.BooleanField(
        default=False,
        help_text="Excluded from the cost split; someone else covers this guest.",
    )
    amount_owed = models.DecimalField(max_digits=12, decimal_places=2, default=ZERO)
    amount_owed_override = models.DecimalField(
        max_digits=12, decimal_places=2, null=True, blank=True
    )
    amount_paid = models.DecimalField(max_digits=12, decimal_places=2, default=ZERO)
    payment_status = models.CharField(
        max_length=20, choices=PaymentStatus.choices, default=PaymentStatus.UNPAID
    )
    payment_paid_at = models.DateTimeField(null=True, blank=True)
    payment_group = models.ForeignKey(
        GuestPaymentGroup,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="guests",
    )

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["id"]

    def __str__(self):
        return f"{self.name} ({self.proposal.proposal_number})"

    @property
    def amount_remaining(self) -> Decimal:
        return max((self.amount_owed or ZERO) - (self.amount_paid or ZERO), ZERO)

    def status_for_paid(self, paid: Decimal) -> str:
        if paid > ZERO and paid >= (self.amount_owed or ZERO):
            return self.PaymentStatus.PAID
        if paid > ZERO:
            return self.PaymentStatus.PARTIAL
        return self.PaymentStatus.UNPAID


class GuestPayment(models.Model):
    class PaymentType(models.TextChoices):
        MANUAL = "manual", "Manual (cash, check, transfer)"
        GUEST_SHARE = "guest_share", "Guest share (card)"
        GROUP_PAYMENT = "group_payment", "Group payment (card)"

    class Status(models.TextChoices):
        SUCCEEDED = "succeeded", "Succeeded"
        REFUNDED = "refunded", "Refunded"

    proposal = models.ForeignKey(
        TripProposal, on_delete=models.CASCADE, related_name="guest_payments"
    )
    guest = models.ForeignKey(ProposalGuest, on_delete=models.CASCADE, related_name="payments")
    paid_by_guest = models.ForeignKey(
        ProposalGuest,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="payments_made_for_others",
    )
    amount = models.DecimalField(max_digits=12, decimal_places=2)
    payment_type = models.CharField(
        max_length=20, choices=PaymentType.choices, default=PaymentType.MANUAL
    )
    status = models.CharField(max_length=20, choices=Status.choices, default=Status.SUCCEEDED)
    stripe_payment_intent_id = models.CharField(max_length=255, null=True, blank=True)
    notes = models.CharField(max_length=255, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["-created_at"]
        constraints = [
            models.UniqueConstraint(
                fields=["stripe_payment_intent_id", "guest"],
                name="unique_guest_payment_per_intent",
            ),
        ]

    def __str__(self):
        return f"{self.amount} from {self.guest.name}"


# ==========================
# PAYMENT REMINDERS
# ==========================
class PaymentReminder(models.Model):
    class ReminderType(models.TextChoices):
        AUTO_SCHEDULE = "auto_schedule", "Auto schedule"
        MANUAL = "manual", "Manual"

    class Urgency(models.TextChoices):
        FRIENDLY = "friendly", "Friendly"
        FIRM = "firm", "Firm"
        URGENT = "urgent", "Urgent"
        FINAL = "final", "Final"

    class Status(models.TextChoices):
        PENDING = "pending", "Pending"
        SENT = "sent", "Sent"
        SKIPPED = "skipped", "Skipped"
        CANCELLED = "cancelled", "Cancelled"

    # Dispatch order within a day: most urgent first.
    URGENCY_RANK = {
        Urgency.FINAL: 0,
        Urgency.URGENT: 1,
        Urgency.FIRM: 2,
        Urgency.FRIENDLY: 3,
    }

    proposal = models.ForeignKey(
        TripProposal, on_delete=models.CASCADE, related_name="reminders"
    )
    guest = models.ForeignKey(
        ProposalGuest,
        on_delete=models.CASCADE,
        null=True,
        blank=True,
        related_name="reminders",
        help_text="Empty for proposal-level reminders sent to the customer.",
    )
    reminder_type = models.CharField(
        max_length=20, choices=ReminderType.choices, default=ReminderType.AUTO_SCHEDULE
    )
    scheduled_date = models.DateField()
    days_before_deadline = models.PositiveIntegerField(null=True, blank=True)
    urgency = models.CharField(max_length=20, choices=Urgency.choices)
    status = models.CharField(max_length=20, choices=Status.choices, default=Status.PENDING)
    paused = models.BooleanField(default=False)
    custom_message = models.TextField(blank=True)
    sent_at = models.DateTimeField(null=True, blank=True)
    skip_reason = models.CharField(max_length=255, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-scheduled_date", "-created_at"]

    def __str__(self):
        return f"{self.get_urgency_display()} reminder on {self.scheduled_date}"

    @property
    def is_pending(self) -> bool:
        return self.status == self.Status.PENDING


class ProposalActivity(models.Model):
    class ActorType(models.TextChoices):
        STAFF = "staff", "Staff"
        SYSTEM = "system", "System"
        CUSTOMER = "customer", "Customer"

    proposal = models.ForeignKey(
        TripProposal, on_delete=models.CASCADE, related_name="activity"
    )
    action = models.CharField(max_length=100)
    description = models.TextField(blank=True)
    actor_type = models.CharField(
        max_length=20, choices=ActorType.choices, default=ActorType.STAFF
    )
    metadata = models.JSONField(default=dict, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["-created_at"]
        verbose_name_plural = "Proposal activity"

    def __str__(self):
        return f"{self.action} ({self.proposal.proposal_number})"


def log_activity(proposal, action, description, actor_type=ProposalActivity.ActorType.STAFF, **metadata):
    return ProposalActivity.objects.create(
        proposal=proposal,
        action=action,
        description=description,
        actor_type=actor_type,
        metadata=metadata,
    )
