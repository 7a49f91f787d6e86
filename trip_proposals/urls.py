from django.urls import path

from . import views

app_name = "trip_proposals"

urlpatterns = [
    path("trip-proposals/", views.proposal_list, name="proposal_list"),
    path("trip-proposals/<int:proposal_id>/", views.proposal_view, name="proposal_detail"),
    path("trip-proposals/<int:proposal_id>/status/", views.proposal_status, name="proposal_status"),
    path("trip-proposals/<int:proposal_id>/pricing/", views.proposal_pricing, name="proposal_pricing"),
    path("trip-proposals/<int:proposal_id>/days/", views.day_list, name="day_list"),
    path("trip-proposals/<int:proposal_id>/days/<int:day_id>/", views.day_view, name="day_detail"),
    path(
        "trip-proposals/<int:proposal_id>/days/<int:day_id>/stops/",
        views.stop_list,
        name="stop_list",
    ),
    path(
        "trip-proposals/<int:proposal_id>/days/<int:day_id>/stops/<int:stop_id>/",
        views.stop_view,
        name="stop_detail",
    ),
    path("trip-proposals/<int:proposal_id>/inclusions/", views.inclusion_list, name="inclusion_list"),
    path(
        "trip-proposals/<int:proposal_id>/inclusions/<int:inclusion_id>/",
        views.inclusion_view,
        name="inclusion_detail",
    ),
    path("trip-proposals/<int:proposal_id>/guests/", views.guest_list, name="guest_list"),
    path(
        "trip-proposals/<int:proposal_id>/guests/<int:guest_id>/",
        views.guest_view,
        name="guest_detail",
    ),
    path(
        "trip-proposals/<int:proposal_id>/guests/<int:guest_id>/billing/",
        views.guest_billing,
        name="guest_billing",
    ),
    path(
        "trip-proposals/<int:proposal_id>/guests/<int:guest_id>/record-payment/",
        views.guest_record_payment,
        name="guest_record_payment",
    ),
    path(
        "trip-proposals/<int:proposal_id>/billing/calculate/",
        views.billing_calculate,
        name="billing_calculate",
    ),
    path(
        "trip-proposals/<int:proposal_id>/billing/verify/",
        views.billing_verify,
        name="billing_verify",
    ),
    path(
        "trip-proposals/<int:proposal_id>/payment-groups/",
        views.payment_group_list,
        name="payment_group_list",
    ),
    path(
        "trip-proposals/<int:proposal_id>/payment-groups/<int:group_id>/",
        views.payment_group_view,
        name="payment_group_detail",
    ),
    path("trip-proposals/<int:proposal_id>/reminders/", views.reminder_list, name="reminder_list"),
]
