"""
Usage counter ledger.

Per-workspace counters for brands, members, storage, API calls and AI
credits. Every increment updates the current-period and lifetime columns
together in a single UPDATE with F() expressions, so concurrent increments
never lose writes.
"""

from dataclasses import dataclass
from enum import StrEnum

from django.db.models import F
from django.utils import timezone

from apps.core.logging import get_logger
from apps.workspaces.exceptions import InvariantViolation, WorkspaceNotFound
from apps.workspaces.models import Workspace

logger = get_logger(__name__)

BYTES_PER_GB = 1024**3


class Counter(StrEnum):
    BRANDS = "brands"
    MEMBERS = "members"
    STORAGE = "storage"
    API_CALLS = "api_calls"
    AI_CREDITS = "ai_credits"


class ResetScope(StrEnum):
    """Which current-period counters a reset clears. Lifetime totals are kept."""

    CREDITS = "credits"
    API = "api"
    STORAGE = "storage"
    ALL = "all"


@dataclass(frozen=True)
class CounterColumns:
    current: str
    lifetime: str
    limit: str


COLUMNS: dict[Counter, CounterColumns] = {
    Counter.BRANDS: CounterColumns("usage_brands_count", "total_brands_created", "limit_brands"),
    Counter.MEMBERS: CounterColumns("usage_members_count", "total_members_added", "limit_members"),
    Counter.STORAGE: CounterColumns(
        "usage_storage_bytes", "total_storage_bytes_all_time", "limit_storage_gb"
    ),
    Counter.API_CALLS: CounterColumns(
        "usage_api_calls_count", "total_api_calls_all_time", "limit_api_calls_per_month"
    ),
    Counter.AI_CREDITS: CounterColumns(
        "usage_ai_credits_used", "total_ai_credits_all_time", "limit_ai_credits_per_month"
    ),
}

RESET_COUNTERS: dict[ResetScope, tuple[Counter, ...]] = {
    ResetScope.CREDITS: (Counter.AI_CREDITS,),
    ResetScope.API: (Counter.API_CALLS,),
    ResetScope.STORAGE: (Counter.STORAGE,),
    ResetScope.ALL: (Counter.AI_CREDITS, Counter.API_CALLS, Counter.STORAGE),
}


@dataclass(frozen=True)
class UsageLine:
    counter: Counter
    used: int
    lifetime: int
    limit: int | None

    @property
    def remaining(self) -> int | None:
        if self.limit is None:
            return None
        return max(self.limit - self.used, 0)


def _update(workspace_id: int, **values) -> None:
    updated = Workspace.objects.filter(pk=workspace_id).update(updated_at=timezone.now(), **values)
    if not updated:
        raise WorkspaceNotFound(workspace_id)


def _as_counter(value: Counter | str) -> Counter:
    try:
        return Counter(value)
    except ValueError as e:
        raise InvariantViolation(f"Unknown usage counter: {value}") from e


def increment(workspace_id: int, counter: Counter | str, amount: int = 1) -> None:
    """
    Add `amount` to a counter's current-period and lifetime columns.

    Negative amounts are allowed for current-period counters that shrink
    (a brand deleted, a member removed, a file freed); lifetime totals only
    ever grow.
    """
    counter = _as_counter(counter)
    columns = COLUMNS[counter]
    now = timezone.now()

    values = {
        columns.current: F(columns.current) + amount,
        "last_activity_at": now,
    }
    if amount > 0:
        values[columns.lifetime] = F(columns.lifetime) + amount

    _update(workspace_id, **values)
    logger.debug(
        "usage_incremented",
        workspace_id=workspace_id,
        counter=counter.value,
        amount=amount,
    )


def reset_usage(workspace_id: int, scope: ResetScope | str) -> None:
    """Zero the current-period counters for a scope."""
    try:
        scope = ResetScope(scope)
    except ValueError as e:
        raise InvariantViolation(f"Unknown usage reset scope: {scope}") from e

    values = {COLUMNS[counter].current: 0 for counter in RESET_COUNTERS[scope]}
    if scope == ResetScope.ALL:
        values["usage_reset_at"] = timezone.now()

    _update(workspace_id, **values)
    logger.info("usage_reset", workspace_id=workspace_id, scope=scope.value)


def add_bonus_credits(workspace_id: int, amount: int) -> None:
    """Grant AI credits on top of the plan's monthly allowance."""
    if amount <= 0:
        raise InvariantViolation("Bonus credit amount must be positive")
    _update(workspace_id, credits_balance=F("credits_balance") + amount)
    logger.info("bonus_credits_added", workspace_id=workspace_id, amount=amount)


def effective_limit(workspace: Workspace, counter: Counter | str) -> int | None:
    """Limit in the counter's own unit; None means unlimited."""
    counter = _as_counter(counter)
    limit = getattr(workspace, COLUMNS[counter].limit)
    if limit is None:
        return None
    if counter == Counter.STORAGE:
        return limit * BYTES_PER_GB
    if counter == Counter.AI_CREDITS:
        return limit + workspace.credits_balance
    return limit


def check_limit(workspace: Workspace, counter: Counter | str, amount: int = 1) -> bool:
    """Whether `amount` more fits under the workspace's limit."""
    counter = _as_counter(counter)
    limit = effective_limit(workspace, counter)
    if limit is None:
        return True
    return getattr(workspace, COLUMNS[counter].current) + amount <= limit


def get_usage_summary(workspace: Workspace) -> list[UsageLine]:
    return [
        UsageLine(
            counter=counter,
            used=getattr(workspace, columns.current),
            lifetime=getattr(workspace, columns.lifetime),
            limit=effective_limit(workspace, counter),
        )
        for counter, columns in COLUMNS.items()
    ]
