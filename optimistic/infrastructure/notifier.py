"""Logging Notifier — routes toast-style signals to the log when no UI is attached."""

import logging

from optimistic.core.errors import ErrorSeverity
from optimistic.core.protocols import NotifierAction

logger = logging.getLogger(__name__)

_LEVELS = {
    ErrorSeverity.INFO: logging.INFO,
    ErrorSeverity.WARNING: logging.WARNING,
    ErrorSeverity.ERROR: logging.ERROR,
    ErrorSeverity.CRITICAL: logging.CRITICAL,
}


class LoggingNotifier:
    """Notifier that writes each message at a level matching its severity."""

    def notify(
        self,
        message: str,
        severity: ErrorSeverity,
        action: NotifierAction | None = None,
    ) -> None:
        suffix = f" [{action.label}]" if action is not None else ""
        logger.log(_LEVELS.get(severity, logging.INFO), f"{message}{suffix}")
