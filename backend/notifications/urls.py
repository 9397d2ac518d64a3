from django.urls import include, path
from rest_framework.routers import DefaultRouter

from .api import BroadcastView, NotificationPreferenceView, NotificationViewSet, PushDeviceView

app_name = "notifications"

router = DefaultRouter()
router.register("", NotificationViewSet, basename="notification")

urlpatterns = [
    path("preferences/", NotificationPreferenceView.as_view(), name="preferences"),
    path("player-id/", PushDeviceView.as_view(), name="player-id"),
    path("broadcast/", BroadcastView.as_view(), name="broadcast"),
    path("", include(router.urls)),
]
