"""
AWS Lambda entry point.

Settings are read from the environment. The run's deadline is the
function's remaining time minus a safety margin, so a run that would time
out stops before persisting instead of being killed mid-write.
"""

import logging
import time
from typing import Any, Dict

from .bootstrap import build_sync_service
from .concurrency import CancelToken
from .config import load_settings
from .errors import IdpScimSyncError
from .logging_setup import configure_logging


logger = logging.getLogger(__name__)

# Seconds kept free at the end of the invocation for the state write
DEADLINE_MARGIN = 10.0


def handler(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    """
    Run one reconciliation.

    Returns:
        The sync report as a dict

    Raises:
        IdpScimSyncError: Re-raised after logging so the invocation is marked failed
    """
    settings = load_settings(is_lambda=True)
    configure_logging(settings.effective_log_level, settings.log_format)

    token = None
    if context is not None and hasattr(context, "get_remaining_time_in_millis"):
        remaining = context.get_remaining_time_in_millis() / 1000.0
        token = CancelToken(deadline=time.monotonic() + max(0.0, remaining - DEADLINE_MARGIN))

    try:
        report = build_sync_service(settings).reconcile(token=token)
    except IdpScimSyncError:
        logger.exception("Sync failed")
        raise

    logger.info(f"Sync report: {report.to_dict()}")
    return report.to_dict()
