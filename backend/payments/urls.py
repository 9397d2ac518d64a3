from django.urls import path

from . import api
from .stripe_api import stripe_webhook

app_name = "payments"

urlpatterns = [
    path("stripe/webhook/", stripe_webhook, name="stripe_webhook"),
    path("connect/account/", api.connect_account, name="connect_account"),
    path("connect/status/", api.connect_status, name="connect_status"),
]
