from django.urls import path

from . import api

app_name = "booking_admin"

urlpatterns = [
    path("<int:booking_id>/deposit/", api.DepositResolutionView.as_view(), name="deposit"),
]
