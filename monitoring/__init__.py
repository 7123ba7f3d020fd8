"""Monitoring package: cognitive checks, status I/O, and reporting."""

from monitoring._base import (  # noqa: F401
    SEVERITY_CRITICAL,
    SEVERITY_OK,
    SEVERITY_WARN,
    CheckResult,
    CognitiveMeta,
    StatusDocument,
    parse_severity,
    worst_severity,
)

from monitoring.health import (  # noqa: F401
    compute_overall_severity,
    refresh,
    run_all_checks,
)

from monitoring.status import (  # noqa: F401
    read_history_file,
    read_status_file,
    write_cognitive_results,
)

__all__ = [
    "CheckResult",
    "CognitiveMeta",
    "SEVERITY_CRITICAL",
    "SEVERITY_OK",
    "SEVERITY_WARN",
    "StatusDocument",
    "compute_overall_severity",
    "parse_severity",
    "read_history_file",
    "read_status_file",
    "refresh",
    "run_all_checks",
    "worst_severity",
    "write_cognitive_results",
]
