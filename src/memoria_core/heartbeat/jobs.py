"""Heartbeat job runner."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from memoria_core.memory.models import AdvancedSuggestion, AutoOrganizationResult

if TYPE_CHECKING:
    from memoria_core.engine import MemoryEngine

logger = logging.getLogger(__name__)

LAST_AUTO_ORGANIZATION_KEY = "lastAutoOrganization"


def run_cleanup_job(engine: MemoryEngine) -> dict[str, int] | None:
    """Purge actions and patterns past the retention window."""
    try:
        removed = engine.run_cleanup()
    except Exception as exc:  # noqa: BLE001
        logger.warning("heartbeat: cleanup failed: %s", exc)
        return None
    if removed.get("actions") or removed.get("patterns"):
        logger.info("heartbeat: cleanup removed expired records", extra=removed)
    return removed


def auto_organization_due(engine: MemoryEngine) -> bool:
    last = engine.store.get_meta(LAST_AUTO_ORGANIZATION_KEY)
    if not isinstance(last, (int, float)):
        return True
    interval_ms = engine.config.organization.auto_interval_hours * 60 * 60 * 1000
    return engine.clock() - int(last) >= interval_ms


def run_auto_organization_job(engine: MemoryEngine) -> AutoOrganizationResult | None:
    """Hourly check; auto-organization itself runs at most once per interval."""
    try:
        if not auto_organization_due(engine):
            logger.debug("heartbeat: auto-organization skipped (not due)")
            return None
        return engine.auto_organize()
    except Exception as exc:  # noqa: BLE001
        logger.warning("heartbeat: auto-organization failed: %s", exc)
        return None


def run_suggestion_refresh_job(engine: MemoryEngine) -> list[AdvancedSuggestion] | None:
    try:
        suggestions = engine.refresh_suggestions()
    except Exception as exc:  # noqa: BLE001
        logger.warning("heartbeat: suggestion refresh failed: %s", exc)
        return None
    logger.debug("heartbeat: suggestions refreshed", extra={"count": len(suggestions)})
    return suggestions


def run_all_jobs(engine: MemoryEngine) -> dict[str, Any]:
    """Run every job once; used by the CLI and tests."""
    cleanup = run_cleanup_job(engine)
    organized = run_auto_organization_job(engine)
    suggestions = run_suggestion_refresh_job(engine)
    return {
        "cleanup": cleanup,
        "autoOrganization": None
        if organized is None
        else {
            "merged": organized.merged,
            "archived": organized.archived,
            "clustered": organized.clustered,
            "retagged": organized.retagged,
        },
        "suggestions": None if suggestions is None else len(suggestions),
    }
