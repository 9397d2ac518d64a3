from django.contrib import admin
from django.contrib.auth.admin import UserAdmin as BaseUserAdmin

from .models import User


@admin.register(User)
class UserAdmin(BaseUserAdmin):
    list_display = ("username", "email", "role", "identity_verified", "is_staff", "is_active")
    list_filter = BaseUserAdmin.list_filter + ("role", "identity_verified")
    fieldsets = BaseUserAdmin.fieldsets + (
        ("Marketplace", {"fields": ("role", "phone", "city", "state", "postal_code", "bio")}),
        (
            "Payments",
            {
                "fields": (
                    "stripe_customer_id",
                    "stripe_account_id",
                    "stripe_onboarding_complete",
                    "charges_enabled",
                    "payouts_enabled",
                )
            },
        ),
        ("Verification", {"fields": ("identity_verified", "identity_verified_at")}),
    )
    add_fieldsets = BaseUserAdmin.add_fieldsets + (("Marketplace", {"fields": ("role",)}),)
