from django.urls import path

from . import api

app_name = "payment_releases"

urlpatterns = [
    path("", api.PaymentReleaseView.as_view(), name="list"),
    path("<int:booking_id>/release/", api.SinglePaymentReleaseView.as_view(), name="release"),
]
