from django.urls import path

from .api import PointsBalanceView, PointsTransactionListView

app_name = "points"

urlpatterns = [
    path("", PointsBalanceView.as_view(), name="balance"),
    path("transactions/", PointsTransactionListView.as_view(), name="transactions"),
]
