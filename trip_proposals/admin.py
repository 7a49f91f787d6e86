from django.contrib import admin, messages
from django.utils.html import format_html

from .billing import calculate_guest_amounts
from .exceptions import ProposalError
from .models import (
    GuestPayment,
    GuestPaymentGroup,
    Hotel,
    PaymentReminder,
    ProposalActivity,
    ProposalDay,
    ProposalGuest,
    ProposalInclusion,
    ProposalStop,
    Restaurant,
    TripProposal,
    Winery,
)
from .pricing import recalculate_pricing
from .reminders import generate_schedule

# ==========================
# 🍷 VENUES
# ==========================
@admin.register(Winery, Restaurant, Hotel)
class VenueAdmin(admin.ModelAdmin):
    list_display = ("name", "address", "phone", "is_active")
    list_filter = ("is_active",)
    search_fields = ("name", "address")


# ==========================
# 🗺️ TRIP PROPOSALS
# ==========================
class ProposalDayInline(admin.TabularInline):
    model = ProposalDay
    extra = 0
    fields = ("day_number", "date", "title", "description")


class ProposalInclusionInline(admin.TabularInline):
    model = ProposalInclusion
    extra = 0
    fields = (
        "inclusion_type",
        "description",
        "pricing_type",
        "quantity",
        "unit_price",
        "total_price",
        "is_taxable",
        "tax_included_in_price",
        "sort_order",
    )


class ProposalGuestInline(admin.TabularInline):
    model = ProposalGuest
    extra = 0
    fields = (
        "name",
        "email",
        "is_primary",
        "is_sponsored",
        "amount_owed_override",
        "amount_owed",
        "amount_paid",
        "payment_status",
        "payment_group",
    )
    readonly_fields = ("amount_owed", "amount_paid", "payment_status")


@admin.register(TripProposal)
class TripProposalAdmin(admin.ModelAdmin):
    list_display = (
        "proposal_number",
        "customer_name",
        "trip_title",
        "start_date",
        "party_size",
        "status",
        "total",
        "balance_due",
        "reminders_badge",
    )
    list_filter = ("status", "individual_billing_enabled", "reminders_paused", "start_date")
    search_fields = ("proposal_number", "customer_name", "customer_email", "trip_title")
    inlines = [ProposalDayInline, ProposalInclusionInline, ProposalGuestInline]

    fieldsets = (
        (
            "Customer & Trip",
            {
                "fields": (
                    "proposal_number",
                    "status",
                    "customer_name",
                    "customer_email",
                    "customer_phone",
                    "customer_company",
                    "trip_title",
                    "party_size",
                    "start_date",
                    "end_date",
                ),
            },
        ),
        (
            "Pricing",
            {
                "fields": (
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
                    "subtotal",
                    "discount_amount",
                    "taxes",
                    "gratuity_amount",
                    "total",
                    "deposit_amount",
                    "balance_due",
                ),
            },
        ),
        (
            "Billing & Reminders",
            {
                "fields": (
                    "individual_billing_enabled",
                    "payment_deadline",
                    "reminders_paused",
                    "internal_notes",
                    "sent_at",
                    "accepted_at",
                    "created_at",
                    "updated_at",
                ),
            },
        ),
    )
    readonly_fields = (
        "proposal_number",
        "subtotal",
        "discount_amount",
        "taxes",
        "gratuity_amount",
        "total",
        "deposit_amount",
        "balance_due",
        "sent_at",
        "accepted_at",
        "created_at",
        "updated_at",
    )

    actions = ["recalculate_pricing_action", "recalculate_billing_action", "generate_reminders_action"]

    @admin.display(description="Reminders")
    def reminders_badge(self, obj):
        pending = obj.reminders.filter(status=PaymentReminder.Status.PENDING).count()
        if obj.reminders_paused:
            return format_html('<span style="color:#b45309;">Paused ({})</span>', pending)
        return pending

    def save_related(self, request, form, formsets, change):
        """
        Inline days and inclusions feed the totals, so recalculate once
        everything is saved.
        """
        super().save_related(request, form, formsets, change)
        obj = form.instance
        if not obj.days.exists():
            ProposalDay.objects.create(proposal=obj, day_number=1, date=obj.start_date, title="Day 1")
        recalculate_pricing(obj.pk)

    def _run_for_each(self, request, queryset, func, label):
        done = 0
        for proposal in queryset:
            try:
                func(proposal.pk)
            except ProposalError as exc:
                self.message_user(
                    request,
                    f"{proposal.proposal_number}: {exc.message}",
                    level=messages.WARNING,
                )
            else:
                done += 1
        if done:
            self.message_user(request, f"{label} for {done} proposal(s).", level=messages.SUCCESS)

    @admin.action(description="Recalculate pricing")
    def recalculate_pricing_action(self, request, queryset):
        self._run_for_each(request, queryset, recalculate_pricing, "Pricing recalculated")

    @admin.action(description="Recalculate guest billing")
    def recalculate_billing_action(self, request, queryset):
        self._run_for_each(request, queryset, calculate_guest_amounts, "Guest amounts recalculated")

    @admin.action(description="Generate reminder schedule")
    def generate_reminders_action(self, request, queryset):
        self._run_for_each(request, queryset, generate_schedule, "Reminder schedule generated")


@admin.register(ProposalStop)
class ProposalStopAdmin(admin.ModelAdmin):
    list_display = (
        "__str__",
        "day",
        "stop_order",
        "stop_type",
        "per_person_cost",
        "flat_cost",
        "quote_status",
    )
    list_filter = ("stop_type", "quote_status")
    search_fields = ("custom_name", "day__proposal__proposal_number")
    list_select_related = ("day", "day__proposal", "winery", "restaurant", "hotel")

    def save_model(self, request, obj, form, change):
        super().save_model(request, obj, form, change)
        recalculate_pricing(obj.day.proposal_id)

    def delete_model(self, request, obj):
        proposal_id = obj.day.proposal_id
        super().delete_model(request, obj)
        recalculate_pricing(proposal_id)


# ==========================
# 💳 GUEST BILLING
# ==========================
@admin.register(GuestPaymentGroup)
class GuestPaymentGroupAdmin(admin.ModelAdmin):
    list_display = ("name", "proposal", "member_count", "created_at")
    search_fields = ("name", "proposal__proposal_number")
    readonly_fields = ("access_token", "created_at")

    @admin.display(description="Guests")
    def member_count(self, obj):
        return obj.guests.count()


@admin.register(GuestPayment)
class GuestPaymentAdmin(admin.ModelAdmin):
    list_display = ("guest", "proposal", "amount", "payment_type", "status", "created_at")
    list_filter = ("payment_type", "status")
    search_fields = ("guest__name", "proposal__proposal_number", "stripe_payment_intent_id")
    readonly_fields = ("created_at",)

    def has_change_permission(self, request, obj=None):
        # Ledger rows are recorded through the billing API.
        return False


# ==========================
# 🔔 REMINDERS & ACTIVITY
# ==========================
@admin.register(PaymentReminder)
class PaymentReminderAdmin(admin.ModelAdmin):
    list_display = (
        "proposal",
        "guest",
        "scheduled_date",
        "urgency",
        "reminder_type",
        "status",
        "paused",
        "sent_at",
    )
    list_filter = ("status", "urgency", "reminder_type", "paused")
    search_fields = ("proposal__proposal_number", "guest__name", "guest__email")
    readonly_fields = ("sent_at", "skip_reason", "created_at", "updated_at")


@admin.register(ProposalActivity)
class ProposalActivityAdmin(admin.ModelAdmin):
    list_display = ("proposal", "action", "actor_type", "created_at")
    list_filter = ("actor_type", "action")
    search_fields = ("proposal__proposal_number", "description")
    readonly_fields = ("proposal", "action", "description", "actor_type", "metadata", "created_at")

    def has_add_permission(self, request):
        return False
