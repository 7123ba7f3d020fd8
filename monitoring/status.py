"""Status file I/O: defensive readers and the atomic cognitive-results writer.

The status document is shared with the L1 daemon. The daemon owns
``last_check``, ``overall_severity``, ``daemon_checks`` and
``auto_heal_history``; this module only ever replaces ``cognitive_checks``,
``cognitive_meta`` and ``sitrep_collectors``.
"""
from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

from monitoring._base import (
    CheckResult,
    CognitiveMeta,
    HistoryDocument,
    SitrepCollectorResult,
    StatusDocument,
    parse_json,
)
from utils import atomic_write

log = logging.getLogger(__name__)

DEFAULT_TEXT_MAX_CHARS = 4000


def _load_json_object(path: Path, label: str) -> dict[str, Any] | None:
    if not path.exists():
        log.debug("%s file not found: %s", label, path)
        return None
    try:
        text = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as exc:
        log.warning("Failed to read %s file %s: %s", label, path, exc)
        return None
    raw = parse_json(text)
    if raw is None:
        log.warning("%s file is not valid JSON: %s", label, path)
        return None
    if not isinstance(raw, dict):
        log.warning("%s file is not an object: %s", label, path)
        return None
    return raw


def read_status_file(path: str | Path) -> StatusDocument | None:
    """Read the shared status document, keeping every well-formed field."""
    raw = _load_json_object(Path(path), "Status")
    if raw is None:
        return None
    return StatusDocument.from_raw(raw)


def read_history_file(path: str | Path) -> HistoryDocument | None:
    raw = _load_json_object(Path(path), "History")
    if raw is None:
        return None
    return HistoryDocument.from_raw(raw)


def read_json_input(path: str | Path) -> Any | None:
    """Read a check's JSON subject file (any JSON value) or None."""
    target = Path(path)
    if not target.exists():
        log.debug("Input file not found: %s", target)
        return None
    try:
        text = target.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as exc:
        log.warning("Failed to read input %s: %s", target, exc)
        return None
    data = parse_json(text)
    if data is None:
        log.warning("Input file is not valid JSON: %s", target)
    return data


def read_text_input(path: str | Path, max_chars: int = DEFAULT_TEXT_MAX_CHARS) -> str | None:
    target = Path(path)
    if not target.exists():
        log.debug("Input file not found: %s", target)
        return None
    try:
        return target.read_text(encoding="utf-8", errors="replace")[:max_chars]
    except OSError as exc:
        log.warning("Failed to read text input %s: %s", target, exc)
        return None


def write_cognitive_results(
    status_path: str | Path,
    cognitive_checks: list[CheckResult],
    cognitive_meta: CognitiveMeta,
    sitrep_collectors: list[SitrepCollectorResult] | None = None,
) -> bool:
    """Merge cognitive results into the status file via temp file + rename.

    Returns False (never raises) when the directory is missing or any I/O
    step fails.
    """
    target = Path(status_path)
    try:
        if not target.parent.is_dir():
            log.warning("Status directory does not exist: %s", target.parent)
            return False

        existing: dict[str, Any] = {}
        if target.exists():
            parsed = parse_json(target.read_text(encoding="utf-8", errors="replace"))
            if isinstance(parsed, dict):
                existing = parsed
            else:
                log.warning(
                    "Could not parse existing status file %s; writing cognitive fields only",
                    target,
                )

        merged = {
            **existing,
            "cognitive_checks": [check.to_dict() for check in cognitive_checks],
            "cognitive_meta": cognitive_meta.to_dict(),
        }
        if sitrep_collectors is not None:
            merged["sitrep_collectors"] = [c.to_dict() for c in sitrep_collectors]

        atomic_write(target, json.dumps(merged, indent=2, ensure_ascii=False) + "\n")
    except Exception as exc:
        log.error("Failed to write status file %s: %s", target, exc, exc_info=True)
        return False

    log.info("Wrote %d cognitive checks to %s", len(cognitive_checks), target)
    return True
