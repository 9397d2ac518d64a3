"""URL routing for the identity verification API endpoints."""

from django.urls import path

from identity.api import create_verification_session, verification_status

app_name = "identity"

urlpatterns = [
    path("verification-session/", create_verification_session, name="verification-session"),
    path("status/", verification_status, name="status"),
]
