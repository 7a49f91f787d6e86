import json
import logging
from functools import wraps

import stripe
from django.conf import settings
from django.http import HttpResponse, JsonResponse
from django.shortcuts import get_object_or_404
from django.views.decorators.csrf import csrf_exempt

from . import billing, reminders, services
from .exceptions import ValidationFailed
from .forms import (
    ProposalDayForm,
    ProposalGuestForm,
    ProposalInclusionForm,
    ProposalStatusForm,
    ProposalStopForm,
    TripProposalForm,
    bind_form,
)
from .models import (
    GuestPaymentGroup,
    ProposalDay,
    ProposalGuest,
    ProposalInclusion,
    ProposalStop,
    TripProposal,
)
from .pricing import recalculate_pricing
from .serializers import (
    day_to_dict,
    group_to_dict,
    guest_to_dict,
    inclusion_to_dict,
    jsonable,
    payment_to_dict,
    proposal_detail,
    proposal_summary,
    reminder_to_dict,
    stop_to_dict,
)

logger = logging.getLogger(__name__)


def ok(data=None, status=200):
    return JsonResponse({"success": True, "data": data}, status=status)


def fail(error, status):
    return JsonResponse({"success": False, "error": error}, status=status)


def staff_api(*methods):
    """
    Restrict a view to logged-in staff and the given HTTP methods.
    """

    def decorator(view):
        @wraps(view)
        def wrapper(request, *args, **kwargs):
            user = getattr(request, "user", None)
            if not user or not user.is_authenticated or not user.is_staff:
                return fail("Staff access required", 403)
            if request.method not in methods:
                return fail(f"Method {request.method} not allowed", 405)
            return view(request, *args, **kwargs)

        return wrapper

    return decorator


def read_json(request):
    if not request.body:
        return {}
    try:
        payload = json.loads(request.body)
    except (ValueError, UnicodeDecodeError):
        raise ValidationFailed("Invalid JSON body")
    if not isinstance(payload, dict):
        raise ValidationFailed("JSON body must be an object")
    return payload


def validated(form):
    if not form.is_valid():
        messages = []
        for field, errors in form.errors.items():
            label = "" if field == "__all__" else f"{field}: "
            messages.append(label + " ".join(errors))
        raise ValidationFailed("; ".join(messages))
    return form


# ---- Proposals ----

@staff_api("GET", "POST")
def proposal_list(request):
    if request.method == "POST":
        form = validated(bind_form(TripProposalForm, read_json(request)))
        proposal = services.create_proposal(form)
        return ok(proposal_detail(proposal), status=201)

    proposals = TripProposal.objects.all()
    status = request.GET.get("status")
    if status:
        proposals = proposals.filter(status=status)
    return ok([proposal_summary(p) for p in proposals])


@staff_api("GET", "PATCH")
def proposal_view(request, proposal_id):
    proposal = get_object_or_404(TripProposal, pk=proposal_id)
    if request.method == "PATCH":
        form = validated(bind_form(TripProposalForm, read_json(request), instance=proposal))
        proposal = services.update_proposal(form)
    return ok(proposal_detail(proposal))


@staff_api("POST")
def proposal_status(request, proposal_id):
    proposal = get_object_or_404(TripProposal, pk=proposal_id)
    form = validated(ProposalStatusForm(data=read_json(request)))
    proposal = services.change_status(proposal, form.cleaned_data["status"])
    return ok(proposal_summary(proposal))


@staff_api("POST")
def proposal_pricing(request, proposal_id):
    proposal = get_object_or_404(TripProposal, pk=proposal_id)
    return ok(jsonable(recalculate_pricing(proposal.pk)))


# ---- Days & stops ----

@staff_api("POST")
def day_list(request, proposal_id):
    proposal = get_object_or_404(TripProposal, pk=proposal_id)
    form = validated(bind_form(ProposalDayForm, read_json(request)))
    day = services.add_day(proposal, form)
    return ok(day_to_dict(day), status=201)


@staff_api("PATCH", "DELETE")
def day_view(request, proposal_id, day_id):
    day = get_object_or_404(ProposalDay, pk=day_id, proposal_id=proposal_id)
    if request.method == "DELETE":
        services.delete_day(day)
        return ok({"deleted": day_id})
    form = validated(bind_form(ProposalDayForm, read_json(request), instance=day))
    return ok(day_to_dict(services.update_day(form)))


@staff_api("POST")
def stop_list(request, proposal_id, day_id):
    day = get_object_or_404(ProposalDay, pk=day_id, proposal_id=proposal_id)
    form = validated(bind_form(ProposalStopForm, read_json(request)))
    stop = services.add_stop(day, form)
    return ok(stop_to_dict(stop), status=201)


@staff_api("PATCH", "DELETE")
def stop_view(request, proposal_id, day_id, stop_id):
    stop = get_object_or_404(
        ProposalStop, pk=stop_id, day_id=day_id, day__proposal_id=proposal_id
    )
    if request.method == "DELETE":
        services.delete_stop(stop)
        return ok({"deleted": stop_id})
    form = validated(bind_form(ProposalStopForm, read_json(request), instance=stop))
    return ok(stop_to_dict(services.update_stop(form)))


# ---- Inclusions ----

@staff_api("POST")
def inclusion_list(request, proposal_id):
    proposal = get_object_or_404(TripProposal, pk=proposal_id)
    form = validated(bind_form(ProposalInclusionForm, read_json(request)))
    inclusion = services.add_inclusion(proposal, form)
    return ok(inclusion_to_dict(inclusion), status=201)


@staff_api("PATCH", "DELETE")
def inclusion_view(request, proposal_id, inclusion_id):
    inclusion = get_object_or_404(ProposalInclusion, pk=inclusion_id, proposal_id=proposal_id)
    if request.method == "DELETE":
        services.delete_inclusion(inclusion)
        return ok({"deleted": inclusion_id})
    form = validated(bind_form(ProposalInclusionForm, read_json(request), instance=inclusion))
    return ok(inclusion_to_dict(services.update_inclusion(form)))


# ---- Guests & billing ----

@staff_api("POST")
def guest_list(request, proposal_id):
    proposal = get_object_or_404(TripProposal, pk=proposal_id)
    form = validated(bind_form(ProposalGuestForm, read_json(request)))
    guest = services.save_guest(proposal, form)
    return ok(guest_to_dict(guest), status=201)


@staff_api("PATCH", "DELETE")
def guest_view(request, proposal_id, guest_id):
    guest = get_object_or_404(ProposalGuest, pk=guest_id, proposal_id=proposal_id)
    if request.method == "DELETE":
        services.delete_guest(guest)
        return ok({"deleted": guest_id})
    form = validated(bind_form(ProposalGuestForm, read_json(request), instance=guest))
    return ok(guest_to_dict(services.save_guest(guest.proposal, form)))


@staff_api("PATCH")
def guest_billing(request, proposal_id, guest_id):
    guest = get_object_or_404(ProposalGuest, pk=guest_id, proposal_id=proposal_id)
    payload = read_json(request)
    if "is_sponsored" in payload:
        if not isinstance(payload["is_sponsored"], bool):
            raise ValidationFailed("is_sponsored must be true or false")
        guest = billing.set_guest_sponsored(guest, payload["is_sponsored"])
    if "amount_owed_override" in payload:
        guest = billing.set_guest_override(guest, payload["amount_owed_override"])
    return ok(guest_to_dict(guest))


@staff_api("POST")
def guest_record_payment(request, proposal_id, guest_id):
    guest = get_object_or_404(ProposalGuest, pk=guest_id, proposal_id=proposal_id)
    payload = read_json(request)
    payment, guest = billing.record_payment(guest, payload.get("amount"), payload.get("notes", ""))
    return ok({"payment": payment_to_dict(payment), "guest": guest_to_dict(guest)}, status=201)


@staff_api("POST")
def billing_calculate(request, proposal_id):
    get_object_or_404(TripProposal, pk=proposal_id)
    return ok(jsonable(billing.calculate_guest_amounts(proposal_id)))


@staff_api("GET")
def billing_verify(request, proposal_id):
    get_object_or_404(TripProposal, pk=proposal_id)
    return ok(jsonable(billing.verify_billing(proposal_id)))


@staff_api("POST")
def payment_group_list(request, proposal_id):
    proposal = get_object_or_404(TripProposal, pk=proposal_id)
    payload = read_json(request)
    group = billing.create_payment_group(proposal, payload.get("guest_ids"), payload.get("name"))
    return ok(group_to_dict(group), status=201)


@staff_api("DELETE")
def payment_group_view(request, proposal_id, group_id):
    group = get_object_or_404(GuestPaymentGroup, pk=group_id, proposal_id=proposal_id)
    billing.remove_payment_group(group)
    return ok({"deleted": group_id})


# ---- Reminders ----

def _require(payload, key):
    value = payload.get(key)
    if value in (None, ""):
        raise ValidationFailed(f"{key} is required")
    return value


@staff_api("GET", "POST")
def reminder_list(request, proposal_id):
    proposal = get_object_or_404(TripProposal, pk=proposal_id)
    if request.method == "GET":
        return ok([reminder_to_dict(r) for r in reminders.reminder_history(proposal)])

    payload = read_json(request)
    action = payload.get("action")
    if action == "generate_schedule":
        result = reminders.generate_schedule(proposal.pk)
    elif action == "pause_proposal":
        reminders.pause_proposal(proposal.pk)
        result = {"reminders_paused": True}
    elif action == "resume_proposal":
        reminders.resume_proposal(proposal.pk)
        result = {"reminders_paused": False}
    elif action == "cancel":
        result = reminder_to_dict(reminders.cancel_reminder(proposal, _require(payload, "reminder_id")))
    elif action == "add_manual":
        reminder = reminders.add_manual_reminder(
            proposal,
            _require(payload, "scheduled_date"),
            _require(payload, "urgency"),
            custom_message=payload.get("custom_message", ""),
            guest_id=payload.get("guest_id"),
        )
        return ok(reminder_to_dict(reminder), status=201)
    elif action == "pause_reminder":
        result = reminder_to_dict(reminders.pause_reminder(proposal, _require(payload, "reminder_id")))
    elif action == "resume_reminder":
        result = reminder_to_dict(reminders.resume_reminder(proposal, _require(payload, "reminder_id")))
    elif action == "pause_guest":
        result = {"updated": reminders.pause_guest(proposal, _require(payload, "guest_id"))}
    elif action == "resume_guest":
        result = {"updated": reminders.resume_guest(proposal, _require(payload, "guest_id"))}
    else:
        raise ValidationFailed(f"Unknown action: {action}")
    return ok(result)


# Stripe webhook endpoint
stripe.api_key = settings.STRIPE_SECRET_KEY or ""


@csrf_exempt
def stripe_webhook(request):
    webhook_secret = getattr(settings, "STRIPE_WEBHOOK_SECRET", "")
    if not webhook_secret:
        logger.error("Stripe webhook received but STRIPE_WEBHOOK_SECRET is not set.")
        return HttpResponse("Webhook secret not configured", status=500)

    payload = request.body
    sig_header = request.META.get("HTTP_STRIPE_SIGNATURE", "")

    try:
        event = stripe.Webhook.construct_event(
            payload=payload,
            sig_header=sig_header,
            secret=webhook_secret,
        )
    except ValueError:
        # Invalid payload
        return HttpResponse(status=400)
    except stripe.SignatureVerificationError:
        # Invalid signature
        return HttpResponse(status=400)

    # Signature checked; read the event as plain JSON.
    event = json.loads(payload)
    event_type = event.get("type")
    event_obj = event.get("data", {}).get("object", {})

    if event_type == "payment_intent.succeeded":
        added = billing.apply_payment_intent(event_obj)
        logger.info("Stripe payment_intent.succeeded id=%s payments=%d", event_obj.get("id"), added)
    elif event_type == "payment_intent.payment_failed":
        logger.warning("Stripe payment_intent.payment_failed id=%s", event_obj.get("id"))
    else:
        logger.info("Unhandled Stripe event type=%s", event_type)

    return JsonResponse({"received": True})
