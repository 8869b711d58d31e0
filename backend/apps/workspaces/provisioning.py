"""
Provisioning saga.

Creates a workspace across Stytch, the database and Stripe after the
checkout redirect returns:

    idle -> creating_org -> creating_workspace -> linking_billing -> done
                 \\________________\\_________________\\-> failed

There is no transaction spanning the three systems. Each step commits on
its own, and a failed run is retried by re-invoking the saga. A retry whose
previous attempt already committed the workspace row resumes at
linking_billing with that row; any other retry starts over at creating_org.
Linking is idempotent on the checkout session id, which Stripe issues once
per completed checkout.

Duplicate requests for the same checkout are serialized on the
ProvisioningRun row: a finished run returns its workspace to the signup
token that claimed it, a live run rejects the duplicate.

Orphan policy: when a retry follows an attempt that created a Stytch
organization but no workspace row, the new organization gets the intent's
slug plus a random suffix. The earlier organization is recorded on the run
for reconciliation.
"""

import base64
import hmac
import secrets
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta

import stripe
from django.conf import settings
from django.db import DatabaseError, transaction
from django.utils import timezone
from stytch.core.response_base import StytchError

from apps.billing.exceptions import BillingError
from apps.billing.plans import get_plan
from apps.billing.services import resolve_checkout_session
from apps.core.logging import get_logger
from apps.organizations.services import create_organization, set_organization_logo
from apps.workspaces.exceptions import (
    ExternalCallFailed,
    MissingSessionData,
    ProvisioningInProgress,
)
from apps.workspaces.intents import IntentStore, ProvisioningIntent, hash_signup_token
from apps.workspaces.mirror import apply_plan, apply_subscription_snapshot
from apps.workspaces.models import ProvisioningRun, Workspace

logger = get_logger(__name__)

State = ProvisioningRun.State

# Errors that fail a step. Network errors from the provider SDKs surface as
# OSError subclasses (requests.RequestException, socket timeouts).
STEP_ERRORS = (StytchError, stripe.StripeError, BillingError, DatabaseError, OSError)

# binascii.Error and PIL decode errors are ValueErrors
LOGO_ERRORS = (StytchError, OSError, ValueError)


def fresh_slug(slug: str) -> str:
    """Slug with a random suffix, for retries after an orphaned organization."""
    return f"{slug}-{secrets.token_hex(3)}"


def get_run(checkout_session_id: str) -> ProvisioningRun | None:
    """Step-level progress for a checkout, if a run was ever started."""
    return (
        ProvisioningRun.objects.select_related("workspace")
        .filter(checkout_session_id=checkout_session_id)
        .first()
    )


def run_claimed_by(run: ProvisioningRun, signup_token: str) -> bool:
    """Whether `signup_token` is the token that claimed the run."""
    if not run.signup_token_hash or not signup_token:
        return False
    return hmac.compare_digest(run.signup_token_hash, hash_signup_token(signup_token))


@dataclass(frozen=True)
class _Claim:
    run: ProvisioningRun
    finished: Workspace | None = None
    resume: Workspace | None = None
    orphaned_org_id: str = ""


class ProvisioningSaga:
    """
    Runs provisioning for one signup session.

    Usage:
        saga = ProvisioningSaga(CacheIntentStore(signup_token))
        workspace = saga.run(checkout_session_id)
    """

    def __init__(self, intent_store: IntentStore, clock: Callable[[], datetime] = timezone.now):
        self.intent_store = intent_store
        self.clock = clock

    def run(self, checkout_ref: str) -> Workspace:
        """
        Provision the workspace for a completed checkout.

        Raises:
            MissingSessionData: No checkout reference, or no live intent for it
            ProvisioningInProgress: Another run for this checkout is still going
            ExternalCallFailed: A step failed; the run is marked failed and the
                intent is kept so the caller can retry
        """
        if not checkout_ref:
            raise MissingSessionData("Missing checkout session reference")

        finished = self._finished_workspace(checkout_ref)
        if finished is not None:
            self._clear_intent_for(checkout_ref)
            logger.info(
                "provisioning_already_done",
                checkout_session_id=checkout_ref,
                workspace_id=finished.id,
            )
            return finished

        intent = self.intent_store.load()
        if intent is None:
            raise MissingSessionData("No signup in progress, or it has expired")
        if intent.checkout_session_id != checkout_ref:
            raise MissingSessionData("Checkout session does not match the signup in progress")

        claim = self._claim(checkout_ref)
        run = claim.run
        if claim.finished is not None:
            self.intent_store.clear()
            return claim.finished

        logger.info(
            "provisioning_started",
            checkout_session_id=checkout_ref,
            slug=intent.slug,
            plan_id=intent.plan_id,
            attempt=run.attempts,
            resumed=claim.resume is not None,
        )

        step = State(run.state)
        try:
            if claim.resume is None:
                slug = fresh_slug(intent.slug) if claim.orphaned_org_id else intent.slug
                org = create_organization(intent.name, slug)
                run.stytch_org_id = org.organization_id
                self._save_run(run, "stytch_org_id")
                logo_url = self._attach_logo(org.organization_id, intent)

                step = State.CREATING_WORKSPACE
                self._transition(run, step)
                workspace = self._create_workspace(intent, org.organization_id, org.slug or slug, logo_url)

                step = State.LINKING_BILLING
                self._transition(run, step)
            else:
                workspace = claim.resume
            workspace = self._link_billing(workspace, checkout_ref)
        except STEP_ERRORS as e:
            self._fail(run, step, e)
            raise ExternalCallFailed(step, e) from e

        run.workspace = workspace
        self._transition(run, State.DONE, "workspace")
        self.intent_store.clear()

        logger.info(
            "provisioning_completed",
            checkout_session_id=checkout_ref,
            workspace_id=workspace.id,
            stytch_org_id=workspace.stytch_org_id,
            status=workspace.status,
        )
        return workspace

    def _finished_workspace(self, checkout_ref: str) -> Workspace | None:
        run = get_run(checkout_ref)
        if run is None or run.state != State.DONE or run.workspace is None:
            return None
        if not run_claimed_by(run, self.intent_store.signup_token):
            logger.warning("provisioning_run_token_mismatch", checkout_session_id=checkout_ref)
            return None
        return run.workspace

    def _clear_intent_for(self, checkout_ref: str) -> None:
        intent = self.intent_store.load()
        if intent is not None and intent.checkout_session_id == checkout_ref:
            self.intent_store.clear()

    def _claim(self, checkout_ref: str) -> _Claim:
        """
        Lock the run row and start a new attempt.

        The attempt starts at creating_org, or at linking_billing when the
        previous attempt's organization already has its workspace row. A
        checkout whose billing is already linked finishes the run at once.
        """
        now = self.clock()
        stale_after = timedelta(seconds=settings.PROVISIONING_RUN_STALE_SECONDS)

        with transaction.atomic():
            run, _ = ProvisioningRun.objects.select_for_update().get_or_create(
                checkout_session_id=checkout_ref
            )

            if run.is_in_progress and now - run.heartbeat_at < stale_after:
                raise ProvisioningInProgress(checkout_ref, run.state)

            run.signup_token_hash = hash_signup_token(self.intent_store.signup_token)
            run.heartbeat_at = now

            linked = Workspace.objects.filter(stripe_checkout_session_id=checkout_ref).first()
            if linked is not None:
                run.workspace = linked
                run.state = State.DONE
                run.save()
                logger.info(
                    "provisioning_already_linked",
                    checkout_session_id=checkout_ref,
                    workspace_id=linked.id,
                )
                return _Claim(run, finished=linked)

            resume = None
            orphaned_org_id = run.stytch_org_id
            if orphaned_org_id:
                resume = Workspace.objects.filter(stytch_org_id=orphaned_org_id).first()
            if resume is not None:
                orphaned_org_id = ""
                run.state = State.LINKING_BILLING
                logger.info(
                    "provisioning_resumed",
                    checkout_session_id=checkout_ref,
                    workspace_id=resume.id,
                )
            else:
                if orphaned_org_id:
                    run.orphaned_org_ids = [*run.orphaned_org_ids, orphaned_org_id]
                    logger.warning(
                        "provisioning_org_orphaned",
                        checkout_session_id=checkout_ref,
                        stytch_org_id=orphaned_org_id,
                    )
                run.state = State.CREATING_ORG
                run.stytch_org_id = ""

            run.history = [str(run.state)]
            run.attempts += 1
            run.failed_step = ""
            run.error_message = ""
            run.save()

        return _Claim(run, resume=resume, orphaned_org_id=orphaned_org_id)

    def _attach_logo(self, stytch_org_id: str, intent: ProvisioningIntent) -> str:
        """Best effort; a bad or rejected logo never fails provisioning."""
        if not intent.logo:
            return ""
        try:
            image_bytes = base64.b64decode(intent.logo, validate=True)
            return set_organization_logo(stytch_org_id, image_bytes)
        except LOGO_ERRORS as e:
            logger.warning(
                "provisioning_logo_attach_failed",
                stytch_org_id=stytch_org_id,
                error=str(e),
            )
            return ""

    def _create_workspace(
        self,
        intent: ProvisioningIntent,
        stytch_org_id: str,
        slug: str,
        logo_url: str,
    ) -> Workspace:
        workspace = Workspace(
            stytch_org_id=stytch_org_id,
            name=intent.name,
            slug=slug,
            logo_url=logo_url,
            status=Workspace.Status.ACTIVE,
        )
        apply_plan(workspace, get_plan(intent.plan_id), intent.billing_interval.value)
        workspace.save()
        logger.info(
            "workspace_created",
            workspace_id=workspace.id,
            stytch_org_id=stytch_org_id,
            plan_id=workspace.plan_id,
        )
        return workspace

    def _link_billing(self, workspace: Workspace, checkout_ref: str) -> Workspace:
        # Stripe call first, outside the transaction
        result = resolve_checkout_session(checkout_ref)

        with transaction.atomic():
            workspace = Workspace.objects.select_for_update().get(pk=workspace.pk)
            workspace.stripe_customer_id = result.customer_id
            workspace.stripe_checkout_session_id = checkout_ref
            fields = apply_subscription_snapshot(workspace, result.subscription)
            workspace.save(
                update_fields=[
                    *dict.fromkeys(["stripe_customer_id", "stripe_checkout_session_id", *fields]),
                    "updated_at",
                ]
            )

        logger.info(
            "workspace_billing_linked",
            workspace_id=workspace.id,
            stripe_customer_id=workspace.stripe_customer_id,
            stripe_subscription_id=workspace.stripe_subscription_id,
            checkout_session_id=checkout_ref,
        )
        return workspace

    def _transition(self, run: ProvisioningRun, state: str, *extra_fields: str) -> None:
        run.state = state
        run.history = [*run.history, str(state)]
        self._save_run(run, "state", "history", *extra_fields)

    def _save_run(self, run: ProvisioningRun, *fields: str) -> None:
        run.heartbeat_at = self.clock()
        run.save(update_fields=[*fields, "heartbeat_at", "updated_at"])

    def _fail(self, run: ProvisioningRun, step: str, error: BaseException) -> None:
        run.failed_step = str(step)
        run.error_message = str(error)[:2000]
        try:
            self._transition(run, State.FAILED, "failed_step", "error_message")
        except DatabaseError:
            logger.exception("provisioning_run_update_failed", checkout_session_id=run.checkout_session_id)
        logger.error(
            "provisioning_failed",
            checkout_session_id=run.checkout_session_id,
            step=str(step),
            error=str(error),
            stytch_org_id=run.stytch_org_id,
        )
