from django.urls import path

from .api import ContactSubmissionView
from .pricing import pricing_summary

app_name = "core"

urlpatterns = [
    path("contact/", ContactSubmissionView.as_view(), name="contact"),
    path("platform/pricing/", pricing_summary, name="pricing_summary"),
]
