"""
Provisioning intent store.

Between staging a signup and the checkout redirect returning, the intent
(organization name, slug, logo, plan) lives server-side under the signup
token. One slot per token, so a second signup in the same session replaces
the first. Intents expire after PROVISIONING_INTENT_TTL_SECONDS.
"""

import hashlib
from collections.abc import Callable
from datetime import datetime, timedelta
from typing import Protocol

from django.conf import settings
from django.core.cache import cache
from django.utils import timezone
from pydantic import BaseModel, ConfigDict, Field

from apps.billing.plans import DEFAULT_PLAN_ID, BillingInterval
from apps.core.logging import get_logger

logger = get_logger(__name__)

CACHE_KEY_PREFIX = "provisioning_intent"

Clock = Callable[[], datetime]


def hash_signup_token(signup_token: str) -> str:
    """SHA-256 of a signup token, for storing alongside a provisioning run."""
    return hashlib.sha256(signup_token.encode()).hexdigest()


class ProvisioningIntent(BaseModel):
    """Signup data staged before checkout. Never mutated once saved."""

    model_config = ConfigDict(frozen=True)

    name: str = Field(..., min_length=1, max_length=255)
    slug: str = Field(..., min_length=2, max_length=128, pattern=r"^[a-z0-9][a-z0-9-]*$")
    logo: str | None = Field(None, description="Base64-encoded logo image")
    plan_id: str = DEFAULT_PLAN_ID
    billing_interval: BillingInterval = BillingInterval.MONTH
    checkout_session_id: str = ""
    created_at: datetime = Field(default_factory=timezone.now)

    def is_expired(self, now: datetime, ttl_seconds: int) -> bool:
        return now - self.created_at >= timedelta(seconds=ttl_seconds)


class IntentStore(Protocol):
    signup_token: str

    def save(self, intent: ProvisioningIntent) -> None: ...

    def load(self) -> ProvisioningIntent | None: ...

    def clear(self) -> None: ...


class CacheIntentStore:
    """
    Intent store backed by the Django cache.

    The cache timeout is set to the TTL, but expiry is also checked against
    the intent's own created_at so an injected clock governs it in tests.
    """

    def __init__(
        self,
        signup_token: str,
        clock: Clock = timezone.now,
        ttl_seconds: int | None = None,
    ):
        if not signup_token:
            raise ValueError("signup_token is required")
        self.signup_token = signup_token
        self.clock = clock
        if ttl_seconds is None:
            ttl_seconds = settings.PROVISIONING_INTENT_TTL_SECONDS
        self.ttl_seconds = ttl_seconds

    @property
    def key(self) -> str:
        return f"{CACHE_KEY_PREFIX}:{self.signup_token}"

    def save(self, intent: ProvisioningIntent) -> None:
        cache.set(self.key, intent.model_dump(mode="json"), timeout=self.ttl_seconds)
        logger.info(
            "provisioning_intent_saved",
            slug=intent.slug,
            plan_id=intent.plan_id,
            checkout_session_id=intent.checkout_session_id,
        )

    def load(self) -> ProvisioningIntent | None:
        data = cache.get(self.key)
        if data is None:
            return None

        intent = ProvisioningIntent.model_validate(data)
        if intent.is_expired(self.clock(), self.ttl_seconds):
            logger.info("provisioning_intent_expired", slug=intent.slug)
            self.clear()
            return None
        return intent

    def clear(self) -> None:
        cache.delete(self.key)
