"""
Management command to report drift between Stytch organizations and workspaces.

Lists every organization with its canonical status and which links are
broken. With --repair, creates the missing workspace rows.
Usage: python manage.py reconcile_workspaces [--repair] [--only-drift]
"""

from django.core.management.base import BaseCommand, CommandError
from stytch.core.response_base import StytchError

from apps.workspaces.reconciliation import drift_report, repair_organization
from apps.workspaces.status import CanonicalStatus


class Command(BaseCommand):
    """Report organization/workspace/billing drift and optionally repair it."""

    help = "Report drift between Stytch organizations, workspaces and Stripe"

    def add_arguments(self, parser):
        parser.add_argument(
            "--repair",
            action="store_true",
            help="Create workspace rows for organizations that have none",
        )
        parser.add_argument(
            "--only-drift",
            action="store_true",
            help="Only list organizations with a broken link",
        )

    def handle(self, *args, **options):
        repair = options["repair"]
        only_drift = options["only_drift"]

        total = 0
        drifted = 0
        repaired = 0

        try:
            for entry in drift_report():
                total += 1
                if entry.has_drift:
                    drifted += 1
                elif only_drift:
                    continue

                facets = entry.resolution.facets
                self.stdout.write(
                    f"{entry.organization.organization_id}  {entry.organization.name!r}  "
                    f"status={entry.resolution.status}  "
                    f"org_db={facets.org_db_synced}  "
                    f"db_customer={facets.db_customer_synced}  "
                    f"customer_subscription={facets.customer_subscription_synced}"
                    + ("  canceling" if facets.canceling else "")
                )

                if repair and entry.resolution.status == CanonicalStatus.NO_DB_RECORD:
                    workspace, created = repair_organization(entry.organization)
                    if created:
                        repaired += 1
                        self.stdout.write(self.style.SUCCESS(f"  created workspace {workspace.id}"))
        except StytchError as e:
            raise CommandError(f"Failed to list organizations: {e.details.error_message}") from e

        self.stdout.write(
            self.style.SUCCESS(
                f"Checked {total} organizations: {drifted} with drift, {repaired} repaired"
            )
        )
