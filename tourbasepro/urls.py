"""
URL configuration for tourbasepro project.

The staff JSON API lives under /api/admin/, the Django admin under /admin/.
"""
from django.contrib import admin
from django.urls import include, path

from trip_proposals.views import stripe_webhook

urlpatterns = [
    path('api/admin/', include('trip_proposals.urls')),
    path('stripe/webhook/', stripe_webhook, name='stripe_webhook'),
    path('admin/', admin.site.urls),
]
