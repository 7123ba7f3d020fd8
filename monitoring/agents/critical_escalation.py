"""Critical Escalation: consecutive-critical streak tracking across runs."""
from __future__ import annotations

import logging
from dataclasses import replace

import config
from monitoring._base import SEVERITY_CRITICAL, CheckResult, StatusDocument

log = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Public entry points
# ---------------------------------------------------------------------------

def apply_critical_escalation(
    results: list[CheckResult],
    previous_status: StatusDocument | None,
    threshold: int | None = None,
) -> list[CheckResult]:
    """Backfill streak fields on *results* from the previous run's document.

    Critical results extend the streak and flag ``escalation_needed`` once it
    reaches *threshold*; any other severity resets it.
    """
    limit = threshold or config.ESCALATION_THRESHOLD
    updated: list[CheckResult] = []
    for result in results:
        if result.severity != SEVERITY_CRITICAL:
            updated.append(replace(
                result,
                consecutive_critical_count=0,
                first_critical_at=None,
                escalation_needed=False,
            ))
            continue

        count, first_at = previous_critical_streak(result.check_name, previous_status)
        count += 1
        escalate = count >= limit
        if escalate:
            log.warning(
                "%s critical for %d consecutive runs; escalation needed",
                result.check_name, count,
            )
        updated.append(replace(
            result,
            consecutive_critical_count=count,
            first_critical_at=first_at or result.timestamp,
            escalation_needed=escalate,
        ))
    return updated


def previous_critical_streak(
    check_name: str,
    previous_status: StatusDocument | None,
) -> tuple[int, str | None]:
    """Return ``(count, first_critical_at)`` recorded for *check_name* last run."""
    if previous_status is None:
        return 0, None
    previous = previous_status.previous_result(check_name)
    if previous is None:
        return 0, None
    return max(0, previous.consecutive_critical_count or 0), previous.first_critical_at
