from __future__ import annotations

import logging
import re
from typing import Optional

from django.contrib.auth import get_user_model
from django.contrib.auth.password_validation import validate_password
from django.utils.text import slugify
from rest_framework import serializers
from rest_framework.exceptions import AuthenticationFailed
from rest_framework_simplejwt.serializers import TokenObtainPairSerializer

User = get_user_model()
PHONE_CLEAN_RE = re.compile(r"\D+")
GENERIC_NAME_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9\s\.'-]{0,63}$")

logger = logging.getLogger(__name__)


def normalize_phone(raw_phone: Optional[str]) -> str:
    """Return a best-effort E.164 number; local numbers must carry a country code."""
    stripped = (raw_phone or "").strip()
    if not stripped:
        return ""

    digits = PHONE_CLEAN_RE.sub("", stripped)
    if not digits or not stripped.startswith("+"):
        raise serializers.ValidationError("Include country code (e.g. +61...).")

    normalized = f"+{digits}"
    if len(normalized) < 9 or len(normalized) > 17:
        raise serializers.ValidationError("Enter a valid phone number.")
    return normalized


class ProfileSerializer(serializers.ModelSerializer):
    """Profile of the signed-in user, including payout and verification flags."""

    class Meta:
        model = User
        fields = [
            "id",
            "username",
            "email",
            "first_name",
            "last_name",
            "phone",
            "city",
            "state",
            "postal_code",
            "bio",
            "avatar_url",
            "role",
            "date_joined",
            "stripe_customer_id",
            "stripe_account_id",
            "stripe_onboarding_complete",
            "charges_enabled",
            "payouts_enabled",
            "identity_verified",
            "identity_verified_at",
            "rating",
            "total_reviews",
        ]
        read_only_fields = (
            "id",
            "username",
            "email",
            "role",
            "date_joined",
            "stripe_customer_id",
            "stripe_account_id",
            "stripe_onboarding_complete",
            "charges_enabled",
            "payouts_enabled",
            "identity_verified",
            "identity_verified_at",
            "rating",
            "total_reviews",
        )

    def validate_phone(self, value: Optional[str]) -> str:
        return normalize_phone(value)

    def validate_city(self, value: Optional[str]) -> str:
        cleaned = (value or "").strip()
        if cleaned and not GENERIC_NAME_RE.match(cleaned):
            raise serializers.ValidationError("Enter a valid city name.")
        return cleaned


class PublicProfileSerializer(serializers.ModelSerializer):
    """Limited profile details that are safe to expose publicly."""

    class Meta:
        model = User
        fields = [
            "id",
            "username",
            "first_name",
            "last_name",
            "city",
            "avatar_url",
            "date_joined",
            "identity_verified",
            "rating",
            "total_reviews",
        ]
        read_only_fields = tuple(fields)


class SignupSerializer(serializers.ModelSerializer):
    """Create a renter or owner account with an email address."""

    password = serializers.CharField(write_only=True)
    email = serializers.EmailField()
    role = serializers.ChoiceField(
        choices=[User.Role.RENTER, User.Role.OWNER],
        required=False,
        default=User.Role.RENTER,
    )

    class Meta:
        model = User
        fields = [
            "id",
            "username",
            "email",
            "password",
            "first_name",
            "last_name",
            "role",
        ]
        extra_kwargs = {"username": {"required": False}}

    def validate_password(self, value: str) -> str:
        validate_password(value)
        return value

    def validate_email(self, value: str) -> str:
        email = value.strip().lower()
        if User.objects.filter(email__iexact=email).exists():
            raise serializers.ValidationError("A user with this email already exists.")
        return email

    def create(self, validated_data: dict) -> User:
        password = validated_data.pop("password")
        if not validated_data.get("username"):
            validated_data["username"] = self._generate_username(validated_data["email"])
        user = User.objects.create_user(password=password, **validated_data)
        logger.info("users: signed up user %s as %s", user.id, user.role)
        return user

    @staticmethod
    def _generate_username(email: str) -> str:
        base = slugify(email.split("@", 1)[0])[:120] or "user"
        candidate = base
        suffix = 1
        while User.objects.filter(username__iexact=candidate).exists():
            suffix += 1
            candidate = f"{base}{suffix}"
        return candidate


class EmailTokenObtainPairSerializer(TokenObtainPairSerializer):
    """Accepts an email address or username and returns a JWT pair."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.fields["email"] = serializers.CharField(required=False, allow_blank=True)
        if self.username_field in self.fields:
            self.fields[self.username_field].required = False

    def validate(self, attrs: dict) -> dict:
        identifier = (attrs.get("email") or attrs.get(self.username_field) or "").strip()
        if not identifier or not attrs.get("password"):
            raise serializers.ValidationError(
                {"non_field_errors": ["Provide credentials to log in."]}
            )

        if "@" in identifier:
            user = User.objects.filter(email__iexact=identifier).first()
        else:
            user = User.objects.filter(username__iexact=identifier).first()
        if not user:
            raise AuthenticationFailed(self.error_messages["no_active_account"])

        attrs[self.username_field] = user.get_username()
        return super().validate(attrs)
