import logging
import time
from typing import Callable, Any, Dict, Optional


class StandupError(Exception):
    """Base class for all errors raised by the standup scheduler."""


class ConflictError(StandupError):
    """A record that must be unique already exists (e.g. today's session)."""


class NotFoundError(StandupError):
    """A session or channel configuration is missing when it was expected."""


class StorageError(StandupError):
    """The persistence layer failed. Retried implicitly on the next tick."""


class NotifierError(StandupError):
    """The chat platform rejected or failed a send."""


class ScheduleConfigError(StandupError):
    """A channel schedule is malformed (bad timezone, bad time, bad roster...)."""


class OperationResult:
    """
    Outcome of an operation whose failure must not be upgraded to a fatal error.

    Best-effort bookkeeping (reminder counters, audit records) returns one of
    these instead of raising, so callers have to decide explicitly whether a
    failure matters.
    """

    def __init__(self, ok: bool, value: Any = None, error: Optional[Exception] = None,
                 fatal: bool = False):
        self.ok = ok
        self.value = value
        self.error = error
        self.fatal = fatal

    @classmethod
    def success(cls, value: Any = None) -> 'OperationResult':
        return cls(True, value=value)

    @classmethod
    def advisory_failure(cls, error: Exception) -> 'OperationResult':
        return cls(False, error=error, fatal=False)

    @classmethod
    def fatal_failure(cls, error: Exception) -> 'OperationResult':
        return cls(False, error=error, fatal=True)

    def __bool__(self) -> bool:
        return self.ok

    def __repr__(self) -> str:
        if self.ok:
            return f"OperationResult(ok, value={self.value!r})"
        kind = 'fatal' if self.fatal else 'advisory'
        return f"OperationResult({kind}, error={self.error!r})"


class ErrorHandler:
    """
    Centralized error handling for the standup scheduler.
    Logs failures with context and keeps per-operation error statistics.
    """

    def __init__(self, logger=None):
        """
        Initialize the error handler.

        Args:
            logger: Optional logger instance. If not provided, a new one will be created.
        """
        self.logger = logger or logging.getLogger('standup_bot.error_handler')
        self.error_counts: Dict[str, Dict[str, Any]] = {}

    def best_effort(self, func: Callable, *args, context: Optional[str] = None,
                    **kwargs) -> OperationResult:
        """
        Run a best-effort operation.

        Any exception is logged as a warning, counted, and returned as an
        advisory OperationResult. Nothing is raised and nothing is retried.

        Args:
            func: The operation to run.
            context: Optional description used in the log line.

        Returns:
            OperationResult wrapping the return value or the error.
        """
        try:
            return OperationResult.success(func(*args, **kwargs))
        except Exception as e:
            self._count(func, e)
            self.log_exception(e, context or f"Best-effort {func.__name__} failed")
            return OperationResult.advisory_failure(e)

    def _count(self, func: Callable, e: Exception) -> None:
        error_key = f"{getattr(func, '__module__', '?')}.{getattr(func, '__name__', repr(func))}"
        stats = self.error_counts.setdefault(error_key, {
            'count': 0,
            'last_error': None,
            'last_error_time': None
        })
        stats['count'] += 1
        stats['last_error'] = str(e)
        stats['last_error_time'] = time.time()

    def get_error_stats(self) -> Dict[str, Dict[str, Any]]:
        """
        Get statistics about errors that have occurred.

        Returns:
            Dictionary with error statistics.
        """
        return self.error_counts

    def reset_error_stats(self) -> None:
        """Reset error statistics."""
        self.error_counts = {}

    def log_exception(self, e: Exception, context: str = None, critical: bool = False) -> None:
        """
        Log an exception with context.

        Args:
            e: The exception to log.
            context: Additional context for the error.
            critical: Whether this is a critical error. If True, logs at ERROR level.
        """
        log_level = logging.ERROR if critical else logging.WARNING
        message = f"Exception: {str(e)}"
        if context:
            message = f"{context}: {message}"

        self.logger.log(log_level, message, exc_info=True)
