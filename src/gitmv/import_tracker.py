"""Polling of asynchronous repository import jobs.

After ``migrate_repo`` starts a server-side import, the tracker polls the
destination until the job reports "complete":

    started -> polling -> polling -> ... -> complete
    started -> polling ... (MAX_ATTEMPTS) -> exhausted
    started -> polling ... -> failed

The delay after attempt ``n`` is ``min(2**n, MAX_DELAY_SECONDS)`` seconds.
Exhaustion only logs a warning: import completion is monitored on a best
effort basis and issue/label migration does not depend on it. A failed
import is reported to the caller, which records it as a run failure.
"""

from __future__ import annotations

import enum
import logging
from typing import TYPE_CHECKING, Final

from .exceptions import ProviderError

if TYPE_CHECKING:
    import threading

    from .protocols import GitProvider

logger: logging.Logger = logging.getLogger(__name__)

MAX_ATTEMPTS: Final[int] = 5
BASE_DELAY_SECONDS: Final[float] = 1.0
MAX_DELAY_SECONDS: Final[float] = 20.0

COMPLETE_STATUS: Final[str] = "complete"
# Statuses after which GitHub will not make further progress on its own
FAILED_STATUSES: Final[frozenset[str]] = frozenset(
    {"error", "auth_failed", "detection_found_nothing", "detection_found_multiple", "detection_needs_auth"}
)


class ImportOutcome(enum.Enum):
    """Final state of a tracked import."""

    COMPLETE = "complete"
    FAILED = "failed"
    EXHAUSTED = "exhausted"
    CANCELLED = "cancelled"


def backoff_delay(attempt: int) -> float:
    """Return the delay in seconds after poll ``attempt`` (1-based)."""
    return min(BASE_DELAY_SECONDS * 2**attempt, MAX_DELAY_SECONDS)


def wait_for_import(
    provider: GitProvider,
    repository_name: str,
    cancel_event: threading.Event,
    *,
    max_attempts: int = MAX_ATTEMPTS,
) -> ImportOutcome:
    """Poll the import progress of ``repository_name`` until it completes.

    Args:
        provider: Destination provider running the import
        repository_name: Name of the repository being imported
        cancel_event: Set to stop waiting early (e.g. on SIGINT)
        max_attempts: Maximum number of polls

    Returns:
        How tracking ended
    """
    status = ""
    for attempt in range(1, max_attempts + 1):
        try:
            status = provider.get_import_progress(repository_name)
        except ProviderError as e:
            logger.warning(f"Failed to retrieve import progress of {repository_name} (attempt {attempt}): {e}")
        else:
            logger.debug(f"Import of {repository_name}: {status} (attempt {attempt}/{max_attempts})")
            if status == COMPLETE_STATUS:
                logger.info(f"{repository_name} finished importing")
                return ImportOutcome.COMPLETE
            if status in FAILED_STATUSES:
                logger.error(f"Import of {repository_name} failed with status '{status}'")
                return ImportOutcome.FAILED

        if attempt == max_attempts:
            break
        # Event.wait returns True as soon as the event is set
        if cancel_event.wait(backoff_delay(attempt)):
            logger.info(f"Stopped waiting for import of {repository_name}: run cancelled")
            return ImportOutcome.CANCELLED

    logger.warning(f"Import status retries exhausted for {repository_name} (last status: {status or 'unknown'})")
    return ImportOutcome.EXHAUSTED
