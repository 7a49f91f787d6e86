from django.apps import AppConfig


class TripProposalsConfig(AppConfig):
    default_auto_field = "django.db.models.BigAutoField"
    name = "trip_proposals"
    verbose_name = "Trip proposals"
