import django.core.validators
import django.db.models.deletion
import django.utils.timezone
from django.db import migrations, models

import trip_proposals.models


def venue_fields():
    return [
        ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
        ("name", models.CharField(max_length=200)),
        ("address", models.CharField(blank=True, max_length=255)),
        ("phone", models.CharField(blank=True, max_length=50)),
        ("website", models.URLField(blank=True)),
        ("is_active", models.BooleanField(default=True)),
    ]


class Migration(migrations.Migration):

    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name="Hotel",
            fields=venue_fields(),
            options={
                "ordering": ["name"],
                "abstract": False,
            },
        ),
        migrations.CreateModel(
            name="Restaurant",
            fields=venue_fields(),
            options={
                "ordering": ["name"],
                "abstract": False,
            },
        ),
        migrations.CreateModel(
            name="Winery",
            fields=venue_fields(),
            options={
                "verbose_name_plural": "Wineries",
                "ordering": ["name"],
                "abstract": False,
            },
        ),
        migrations.CreateModel(
            name="TripProposal",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("proposal_number", models.CharField(blank=True, max_length=30, unique=True)),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("draft", "Draft"),
                            ("sent", "Sent"),
                            ("viewed", "Viewed"),
                            ("accepted", "Accepted"),
                            ("declined", "Declined"),
                            ("expired", "Expired"),
                            ("converted", "Converted"),
                        ],
                        default="draft",
                        max_length=20,
                    ),
                ),
                ("customer_name", models.CharField(max_length=255)),
                ("customer_email", models.EmailField(blank=True, max_length=254)),
                ("customer_phone", models.CharField(blank=True, max_length=50)),
                ("customer_company", models.CharField(blank=True, max_length=255)),
                ("trip_title", models.CharField(blank=True, max_length=255)),
                (
                    "party_size",
                    models.PositiveIntegerField(
                        default=1,
                        validators=[
                            django.core.validators.MinValueValidator(1),
                            django.core.validators.MaxValueValidator(100),
                        ],
                    ),
                ),
                ("start_date", models.DateField(default=django.utils.timezone.localdate)),
                ("end_date", models.DateField(blank=True, null=True)),
                (
                    "discount_percentage",
                    models.DecimalField(
                        decimal_places=2,
                        default=0,
                        help_text="When set, the discount amount is derived from the subtotal.",
                        max_digits=5,
                    ),
                ),
                (
                    "manual_discount",
                    models.DecimalField(
                        decimal_places=2,
                        default=0,
                        help_text="Manual discount, used when no discount percentage is set.",
                        max_digits=10,
                    ),
                ),
                ("discount_reason", models.CharField(blank=True, max_length=255)),
                (
                    "tax_rate",
                    models.DecimalField(
                        decimal_places=2,
                        default=trip_proposals.models.default_tax_rate,
                        help_text="Percent, applied to taxable line items after discount.",
                        max_digits=5,
                    ),
                ),
                ("gratuity_percentage", models.DecimalField(decimal_places=2, default=0, max_digits=5)),
                (
                    "deposit_percentage",
                    models.DecimalField(
                        decimal_places=2,
                        default=trip_proposals.models.default_deposit_percentage,
                        max_digits=5,
                    ),
                ),
                (
                    "skip_deposit_on_accept",
                    models.BooleanField(
                        default=False,
                        help_text="Acceptance grants access immediately; no deposit is requested.",
                    ),
                ),
                (
                    "planning_fee_mode",
                    models.CharField(
                        choices=[("flat", "Flat amount"), ("percentage", "Percentage of services")],
                        default="flat",
                        max_length=20,
                    ),
                ),
                ("planning_fee_percentage", models.DecimalField(decimal_places=2, default=0, max_digits=5)),
                ("subtotal", models.DecimalField(decimal_places=2, default=0, max_digits=12)),
                (
                    "discount_amount",
                    models.DecimalField(
                        decimal_places=2,
                        default=0,
                        help_text="Discount applied to the subtotal, clamped to 0..subtotal.",
                        max_digits=12,
                    ),
                ),
                ("taxes", models.DecimalField(decimal_places=2, default=0, max_digits=12)),
                ("gratuity_amount", models.DecimalField(decimal_places=2, default=0, max_digits=12)),
                ("total", models.DecimalField(decimal_places=2, default=0, max_digits=12)),
                (
                    "deposit_amount",
                    models.DecimalField(decimal_places=2, default=0, max_digits=12, verbose_name="Deposit due"),
                ),
                ("deposit_paid", models.BooleanField(default=False)),
                ("balance_due", models.DecimalField(decimal_places=2, default=0, max_digits=12)),
                ("individual_billing_enabled", models.BooleanField(default=False)),
                ("payment_deadline", models.DateField(blank=True, null=True)),
                ("reminders_paused", models.BooleanField(default=False)),
                ("internal_notes", models.TextField(blank=True)),
                ("sent_at", models.DateTimeField(blank=True, null=True)),
                ("accepted_at", models.DateTimeField(blank=True, null=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
            ],
            options={
                "ordering": ["-created_at"],
            },
        ),
        migrations.CreateModel(
            name="ProposalDay",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("day_number", models.PositiveIntegerField()),
                ("date", models.DateField()),
                ("title", models.CharField(blank=True, max_length=255)),
                ("description", models.TextField(blank=True)),
                ("notes", models.TextField(blank=True)),
                (
                    "proposal",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="days",
                        to="trip_proposals.tripproposal",
                    ),
                ),
            ],
            options={
                "ordering": ["day_number"],
                "unique_together": {("proposal", "day_number")},
            },
        ),
        migrations.CreateModel(
            name="ProposalStop",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("stop_order", models.PositiveIntegerField(default=0)),
                (
                    "stop_type",
                    models.CharField(
                        choices=[
                            ("pickup", "Pickup"),
                            ("dropoff", "Dropoff"),
                            ("winery", "Winery"),
                            ("restaurant", "Restaurant"),
                            ("hotel", "Hotel"),
                            ("activity", "Activity"),
                            ("custom", "Custom"),
                        ],
                        max_length=20,
                    ),
                ),
                ("custom_name", models.CharField(blank=True, max_length=255)),
                ("custom_address", models.CharField(blank=True, max_length=255)),
                ("scheduled_time", models.TimeField(blank=True, null=True)),
                ("duration_minutes", models.PositiveIntegerField(blank=True, null=True)),
                (
                    "per_person_cost",
                    models.DecimalField(decimal_places=2, default=0, help_text="e.g. tasting fee", max_digits=10),
                ),
                (
                    "flat_cost",
                    models.DecimalField(decimal_places=2, default=0, help_text="e.g. private tour fee", max_digits=10),
                ),
                ("cost_note", models.CharField(blank=True, max_length=255)),
                (
                    "quote_status",
                    models.CharField(
                        choices=[
                            ("not_requested", "Not requested"),
                            ("requested", "Requested"),
                            ("quoted", "Quoted"),
                            ("accepted", "Accepted"),
                            ("declined", "Declined"),
                        ],
                        default="not_requested",
                        max_length=20,
                    ),
                ),
                ("quoted_amount", models.DecimalField(blank=True, decimal_places=2, max_digits=10, null=True)),
                ("client_notes", models.TextField(blank=True)),
                ("internal_notes", models.TextField(blank=True)),
                (
                    "day",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="stops",
                        to="trip_proposals.proposalday",
                    ),
                ),
                (
                    "hotel",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="stops",
                        to="trip_proposals.hotel",
                    ),
                ),
                (
                    "restaurant",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="stops",
                        to="trip_proposals.restaurant",
                    ),
                ),
                (
                    "winery",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="stops",
                        to="trip_proposals.winery",
                    ),
                ),
            ],
            options={
                "ordering": ["day__day_number", "stop_order"],
            },
        ),
        migrations.CreateModel(
            name="ProposalInclusion",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                (
                    "inclusion_type",
                    models.CharField(
                        choices=[
                            ("transportation", "Transportation"),
                            ("chauffeur", "Chauffeur"),
                            ("gratuity", "Gratuity"),
                            ("planning_fee", "Planning fee"),
                            ("custom", "Custom"),
                        ],
                        default="custom",
                        max_length=20,
                    ),
                ),
                ("description", models.CharField(max_length=255)),
                (
                    "pricing_type",
                    models.CharField(
                        choices=[("flat", "Flat"), ("per_person", "Per person"), ("per_day", "Per day")],
                        default="flat",
                        max_length=20,
                    ),
                ),
                ("quantity", models.DecimalField(decimal_places=2, default=1, max_digits=8)),
                ("unit_price", models.DecimalField(decimal_places=2, default=0, max_digits=10)),
                (
                    "total_price",
                    models.DecimalField(
                        blank=True,
                        decimal_places=2,
                        help_text="Flat lines: replaces quantity x unit price when set.",
                        max_digits=12,
                        null=True,
                    ),
                ),
                ("is_taxable", models.BooleanField(default=True)),
                (
                    "tax_included_in_price",
                    models.BooleanField(
                        default=False,
                        help_text="The price already contains tax; it is never taxed again.",
                    ),
                ),
                ("sort_order", models.PositiveIntegerField(default=0)),
                ("notes", models.CharField(blank=True, max_length=255)),
                (
                    "proposal",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="inclusions",
                        to="trip_proposals.tripproposal",
                    ),
                ),
            ],
            options={
                "ordering": ["sort_order", "id"],
            },
        ),
        migrations.CreateModel(
            name="GuestPaymentGroup",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("name", models.CharField(max_length=200)),
                (
                    "access_token",
                    models.CharField(
                        default=trip_proposals.models.generate_access_token,
                        max_length=64,
                        unique=True,
                    ),
                ),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                (
                    "proposal",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="payment_groups",
                        to="trip_proposals.tripproposal",
                    ),
                ),
            ],
            options={
                "ordering": ["name"],
            },
        ),
        migrations.CreateModel(
            name="ProposalGuest",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("name", models.CharField(max_length=255)),
                ("email", models.EmailField(blank=True, max_length=254)),
                ("phone", models.CharField(blank=True, max_length=50)),
                ("is_primary", models.BooleanField(default=False)),
                ("dietary_restrictions", models.CharField(blank=True, max_length=255)),
                (
                    "is_sponsored",
                    models.BooleanField(
                        default=False,
                        help_text="Excluded from the cost split; someone else covers this guest.",
                    ),
                ),
                ("amount_owed", models.DecimalField(decimal_places=2, default=0, max_digits=12)),
                ("amount_owed_override", models.DecimalField(blank=True, decimal_places=2, max_digits=12, null=True)),
                ("amount_paid", models.DecimalField(decimal_places=2, default=0, max_digits=12)),
                (
                    "payment_status",
                    models.CharField(
                        choices=[
                            ("unpaid", "Unpaid"),
                            ("partial", "Partial"),
                            ("paid", "Paid"),
                            ("refunded", "Refunded"),
                        ],
                        default="unpaid",
                        max_length=20,
                    ),
                ),
                ("payment_paid_at", models.DateTimeField(blank=True, null=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "payment_group",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="guests",
                        to="trip_proposals.guestpaymentgroup",
                    ),
                ),
                (
                    "proposal",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="guests",
                        to="trip_proposals.tripproposal",
                    ),
                ),
            ],
            options={
                "ordering": ["id"],
            },
        ),
        migrations.CreateModel(
            name="GuestPayment",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("amount", models.DecimalField(decimal_places=2, max_digits=12)),
                (
                    "payment_type",
                    models.CharField(
                        choices=[
                            ("manual", "Manual (cash, check, transfer)"),
                            ("guest_share", "Guest share (card)"),
                            ("group_payment", "Group payment (card)"),
                        ],
                        default="manual",
                        max_length=20,
                    ),
                ),
                (
                    "status",
                    models.CharField(
                        choices=[("succeeded", "Succeeded"), ("refunded", "Refunded")],
                        default="succeeded",
                        max_length=20,
                    ),
                ),
                ("stripe_payment_intent_id", models.CharField(blank=True, max_length=255, null=True)),
                ("notes", models.CharField(blank=True, max_length=255)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                (
                    "guest",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="payments",
                        to="trip_proposals.proposalguest",
                    ),
                ),
                (
                    "paid_by_guest",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="payments_made_for_others",
                        to="trip_proposals.proposalguest",
                    ),
                ),
                (
                    "proposal",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="guest_payments",
                        to="trip_proposals.tripproposal",
                    ),
                ),
            ],
            options={
                "ordering": ["-created_at"],
                "constraints": [
                    models.UniqueConstraint(
                        fields=("stripe_payment_intent_id", "guest"),
                        name="unique_guest_payment_per_intent",
                    )
                ],
            },
        ),
        migrations.CreateModel(
            name="PaymentReminder",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                (
                    "reminder_type",
                    models.CharField(
                        choices=[("auto_schedule", "Auto schedule"), ("manual", "Manual")],
                        default="auto_schedule",
                        max_length=20,
                    ),
                ),
                ("scheduled_date", models.DateField()),
                ("days_before_deadline", models.PositiveIntegerField(blank=True, null=True)),
                (
                    "urgency",
                    models.CharField(
                        choices=[
                            ("friendly", "Friendly"),
                            ("firm", "Firm"),
                            ("urgent", "Urgent"),
                            ("final", "Final"),
                        ],
                        max_length=20,
                    ),
                ),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("pending", "Pending"),
                            ("sent", "Sent"),
                            ("skipped", "Skipped"),
                            ("cancelled", "Cancelled"),
                        ],
                        default="pending",
                        max_length=20,
                    ),
                ),
                ("paused", models.BooleanField(default=False)),
                ("custom_message", models.TextField(blank=True)),
                ("sent_at", models.DateTimeField(blank=True, null=True)),
                ("skip_reason", models.CharField(blank=True, max_length=255)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "guest",
                    models.ForeignKey(
                        blank=True,
                        help_text="Empty for proposal-level reminders sent to the customer.",
                        null=True,
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="reminders",
                        to="trip_proposals.proposalguest",
                    ),
                ),
                (
                    "proposal",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="reminders",
                        to="trip_proposals.tripproposal",
                    ),
                ),
            ],
            options={
                "ordering": ["-scheduled_date", "-created_at"],
            },
        ),
        migrations.CreateModel(
            name="ProposalActivity",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("action", models.CharField(max_length=100)),
                ("description", models.TextField(blank=True)),
                (
                    "actor_type",
                    models.CharField(
                        choices=[("staff", "Staff"), ("system", "System"), ("customer", "Customer")],
                        default="staff",
                        max_length=20,
                    ),
                ),
                ("metadata", models.JSONField(blank=True, default=dict)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                (
                    "proposal",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="activity",
                        to="trip_proposals.tripproposal",
                    ),
                ),
            ],
            options={
                "verbose_name_plural": "Proposal activity",
                "ordering": ["-created_at"],
            },
        ),
    ]
