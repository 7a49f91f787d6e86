"""
Plain-dict representations of proposals for the JSON API.
Money goes out as floats rounded to cents, dates as ISO strings.
"""
from datetime import date, datetime, time
from decimal import Decimal


def jsonable(value):
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, (date, datetime, time)):
        return value.isoformat()
    if isinstance(value, dict):
        return {key: jsonable(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [jsonable(item) for item in value]
    return value


def proposal_summary(proposal):
    return jsonable(
        {
            "id": proposal.pk,
            "proposal_number": proposal.proposal_number,
            "status": proposal.status,
            "customer_name": proposal.customer_name,
            "customer_email": proposal.customer_email,
            "trip_title": proposal.trip_title,
            "party_size": proposal.party_size,
            "start_date": proposal.start_date,
            "end_date": proposal.end_date,
            "total": proposal.total,
            "payment_deadline": proposal.payment_deadline,
            "created_at": proposal.created_at,
        }
    )


def proposal_detail(proposal):
    data = proposal_summary(proposal)
    data.update(
        jsonable(
            {
                "customer_phone": proposal.customer_phone,
                "customer_company": proposal.customer_company,
                "subtotal": proposal.subtotal,
                "discount_percentage": proposal.discount_percentage,
                "manual_discount": proposal.manual_discount,
                "discount_amount": proposal.discount_amount,
                "discount_reason": proposal.discount_reason,
                "tax_rate": proposal.tax_rate,
                "taxes": proposal.taxes,
                "gratuity_percentage": proposal.gratuity_percentage,
                "gratuity_amount": proposal.gratuity_amount,
                "deposit_percentage": proposal.deposit_percentage,
                "deposit_amount": proposal.deposit_amount,
                "deposit_paid": proposal.deposit_paid,
                "balance_due": proposal.balance_due,
                "skip_deposit_on_accept": proposal.skip_deposit_on_accept,
                "planning_fee_mode": proposal.planning_fee_mode,
                "planning_fee_percentage": proposal.planning_fee_percentage,
                "individual_billing_enabled": proposal.individual_billing_enabled,
                "reminders_paused": proposal.reminders_paused,
                "internal_notes": proposal.internal_notes,
                "sent_at": proposal.sent_at,
                "accepted_at": proposal.accepted_at,
                "updated_at": proposal.updated_at,
            }
        )
    )
    data["days"] = [
        day_to_dict(day) for day in proposal.days.prefetch_related("stops__winery", "stops__restaurant", "stops__hotel")
    ]
    data["inclusions"] = [inclusion_to_dict(inc) for inc in proposal.inclusions.all()]
    data["guests"] = [guest_to_dict(guest) for guest in proposal.guests.all()]
    data["payment_groups"] = [group_to_dict(group) for group in proposal.payment_groups.all()]
    return data


def day_to_dict(day):
    data = jsonable(
        {
            "id": day.pk,
            "day_number": day.day_number,
            "date": day.date,
            "title": day.title,
            "description": day.description,
            "notes": day.notes,
        }
    )
    data["stops"] = [stop_to_dict(stop) for stop in day.stops.all()]
    return data


def stop_to_dict(stop):
    return jsonable(
        {
            "id": stop.pk,
            "day_id": stop.day_id,
            "stop_order": stop.stop_order,
            "stop_type": stop.stop_type,
            "name": stop.display_name,
            "winery_id": stop.winery_id,
            "restaurant_id": stop.restaurant_id,
            "hotel_id": stop.hotel_id,
            "custom_name": stop.custom_name,
            "custom_address": stop.custom_address,
            "scheduled_time": stop.scheduled_time,
            "duration_minutes": stop.duration_minutes,
            "per_person_cost": stop.per_person_cost,
            "flat_cost": stop.flat_cost,
            "cost_note": stop.cost_note,
            "quote_status": stop.quote_status,
            "quoted_amount": stop.quoted_amount,
            "client_notes": stop.client_notes,
            "internal_notes": stop.internal_notes,
        }
    )


def inclusion_to_dict(inclusion):
    return jsonable(
        {
            "id": inclusion.pk,
            "inclusion_type": inclusion.inclusion_type,
            "description": inclusion.description,
            "pricing_type": inclusion.pricing_type,
            "quantity": inclusion.quantity,
            "unit_price": inclusion.unit_price,
            "total_price": inclusion.total_price,
            "is_taxable": inclusion.is_taxable,
            "tax_included_in_price": inclusion.tax_included_in_price,
            "sort_order": inclusion.sort_order,
            "notes": inclusion.notes,
        }
    )


def guest_to_dict(guest):
    return jsonable(
        {
            "id": guest.pk,
            "name": guest.name,
            "email": guest.email,
            "phone": guest.phone,
            "is_primary": guest.is_primary,
            "dietary_restrictions": guest.dietary_restrictions,
            "is_sponsored": guest.is_sponsored,
            "amount_owed": guest.amount_owed,
            "amount_owed_override": guest.amount_owed_override,
            "amount_paid": guest.amount_paid,
            "amount_remaining": guest.amount_remaining,
            "payment_status": guest.payment_status,
            "payment_paid_at": guest.payment_paid_at,
            "payment_group_id": guest.payment_group_id,
        }
    )


def group_to_dict(group):
    return jsonable(
        {
            "id": group.pk,
            "name": group.name,
            "access_token": group.access_token,
            "guest_ids": [guest.pk for guest in group.guests.all()],
            "amount_owed": group.amount_owed(),
            "amount_paid": group.amount_paid(),
        }
    )


def payment_to_dict(payment):
    return jsonable(
        {
            "id": payment.pk,
            "guest_id": payment.guest_id,
            "amount": payment.amount,
            "payment_type": payment.payment_type,
            "status": payment.status,
            "notes": payment.notes,
            "created_at": payment.created_at,
        }
    )


def reminder_to_dict(reminder):
    guest = reminder.guest
    return jsonable(
        {
            "id": reminder.pk,
            "guest_id": reminder.guest_id,
            "guest_name": guest.name if guest else None,
            "guest_email": guest.email if guest else None,
            "reminder_type": reminder.reminder_type,
            "scheduled_date": reminder.scheduled_date,
            "days_before_deadline": reminder.days_before_deadline,
            "urgency": reminder.urgency,
            "status": reminder.status,
            "paused": reminder.paused,
            "custom_message": reminder.custom_message,
            "sent_at": reminder.sent_at,
            "skip_reason": reminder.skip_reason,
        }
    )
