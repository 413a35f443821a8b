"""Structured event log with file, Supabase and in-memory outputs.

Provides the ``EngineLogger`` class that writes structured entries to local
JSON-lines files (via ``aiofiles``) and, when a store client is supplied,
to the ``posting_logs`` table.  A lightweight in-memory ring buffer allows
fast ``get_recent()`` queries, e.g. the attempt history of one job.

Global helpers:
    - ``init_logger()``  -- create and register a singleton ``EngineLogger``
    - ``get_logger()``   -- retrieve the singleton (raises if not initialised)
"""

import asyncio
import logging
import traceback
from collections import deque
from pathlib import Path
from typing import Any, Deque, Dict, List, Optional, Set, Union

import aiofiles

from postflow.logging.models import LogComponent, LogEntry, LogLevel
from postflow.utils import utc_now

logger = logging.getLogger(__name__)

POSTING_LOGS_TABLE = "posting_logs"


class EngineLogger:
    """Central structured event log of the engine.

    Parameters:
        log_dir: Directory for log files (created if missing).
        supabase_client: Optional client with an async
            ``insert(table, data)`` method (see
            :class:`~postflow.database.SupabaseJobStore`).
        min_level: Minimum level for Supabase writes.
        max_recent: Size of the in-memory ring buffer.
    """

    def __init__(
        self,
        log_dir: str = "logs",
        supabase_client: Any = None,
        min_level: LogLevel = LogLevel.INFO,
        max_recent: int = 1000,
    ) -> None:
        self.log_dir = Path(log_dir)
        self.log_dir.mkdir(parents=True, exist_ok=True)

        self.supabase = supabase_client
        self.min_level = min_level

        # Log file paths
        self._main_log = self.log_dir / "events.log"
        self._error_log = self.log_dir / "errors.log"
        self._debug_log = self.log_dir / "debug.log"

        self._recent_logs: Deque[LogEntry] = deque(maxlen=max_recent)

        # Track pending async tasks to prevent garbage collection
        self._pending_tasks: Set["asyncio.Task[None]"] = set()

    # ------------------------------------------------------------------
    # Core log method
    # ------------------------------------------------------------------

    async def log(
        self,
        level: LogLevel,
        component: LogComponent,
        message: str,
        job_id: Optional[str] = None,
        content_ref: Optional[str] = None,
        data: Optional[Dict[str, Any]] = None,
        error: Optional[BaseException] = None,
        duration_ms: Optional[int] = None,
    ) -> LogEntry:
        """Log a structured message.

        Writes to the log files (always) and to Supabase when connected and
        the severity threshold is met.  Returns the created entry.
        """
        entry = LogEntry(
            timestamp=utc_now(),
            level=level,
            component=component,
            message=message,
            job_id=job_id,
            content_ref=content_ref,
            data=data or {},
            duration_ms=duration_ms,
        )

        if error is not None:
            entry.error_type = type(error).__name__
            entry.error_traceback = "".join(
                traceback.format_exception(type(error), error, error.__traceback__)
            )

        self._recent_logs.append(entry)

        # Awaited so file I/O completes before return
        await self._write_to_file(entry)

        if self.supabase and level.value >= self.min_level.value:
            task = asyncio.create_task(self._write_to_supabase(entry))
            self._pending_tasks.add(task)
            task.add_done_callback(self._pending_tasks.discard)

        return entry

    # ------------------------------------------------------------------
    # Convenience methods
    # ------------------------------------------------------------------

    async def debug(self, component: LogComponent, message: str, **kwargs: Any) -> LogEntry:
        """Log at DEBUG level."""
        return await self.log(LogLevel.DEBUG, component, message, **kwargs)

    async def info(self, component: LogComponent, message: str, **kwargs: Any) -> LogEntry:
        """Log at INFO level."""
        return await self.log(LogLevel.INFO, component, message, **kwargs)

    async def warning(self, component: LogComponent, message: str, **kwargs: Any) -> LogEntry:
        """Log at WARNING level."""
        return await self.log(LogLevel.WARNING, component, message, **kwargs)

    async def error(self, component: LogComponent, message: str, **kwargs: Any) -> LogEntry:
        """Log at ERROR level."""
        return await self.log(LogLevel.ERROR, component, message, **kwargs)

    # ------------------------------------------------------------------
    # Query methods
    # ------------------------------------------------------------------

    def get_recent(
        self,
        limit: int = 20,
        level: Optional[LogLevel] = None,
        component: Optional[LogComponent] = None,
        job_id: Optional[str] = None,
    ) -> List[LogEntry]:
        """Return recent logs from the in-memory ring buffer, oldest first.

        Filters are applied in-memory (fast, no I/O).
        """
        logs = list(self._recent_logs)

        if level is not None:
            logs = [entry for entry in logs if entry.level == level]
        if component is not None:
            logs = [entry for entry in logs if entry.component == component]
        if job_id is not None:
            logs = [entry for entry in logs if entry.job_id == job_id]

        return logs[-limit:]

    # ------------------------------------------------------------------
    # Flush (call before shutdown)
    # ------------------------------------------------------------------

    async def flush(self) -> None:
        """Wait for all pending Supabase writes."""
        if self._pending_tasks:
            await asyncio.gather(*self._pending_tasks, return_exceptions=True)
            self._pending_tasks.clear()

    # ------------------------------------------------------------------
    # Private output methods
    # ------------------------------------------------------------------

    async def _write_to_file(self, entry: LogEntry) -> None:
        """Write log entry to JSON log files using async I/O.

        - ``events.log`` -- all entries
        - ``errors.log`` -- ERROR and CRITICAL only
        - ``debug.log``  -- DEBUG only
        """
        json_line = entry.to_json() + "\n"

        async with aiofiles.open(self._main_log, "a", encoding="utf-8") as f:
            await f.write(json_line)

        if entry.level.value >= LogLevel.ERROR.value:
            async with aiofiles.open(self._error_log, "a", encoding="utf-8") as f:
                await f.write(json_line)

        if entry.level == LogLevel.DEBUG:
            async with aiofiles.open(self._debug_log, "a", encoding="utf-8") as f:
                await f.write(json_line)

    async def _write_to_supabase(self, entry: LogEntry) -> None:
        """Write log entry to the ``posting_logs`` table."""
        try:
            await self.supabase.insert(POSTING_LOGS_TABLE, entry.to_dict())
        except Exception as exc:
            logger.warning("[STORE] Failed to write event log entry to Supabase: %s", exc)


# ======================================================================
# GLOBAL LOGGER SINGLETON
# ======================================================================

_logger: Optional[EngineLogger] = None


def init_logger(
    log_dir: str = "logs",
    supabase_client: Any = None,
    min_level: Union[LogLevel, str] = LogLevel.INFO,
) -> EngineLogger:
    """Initialise and register the global ``EngineLogger`` singleton.

    *min_level* may be a level name such as ``"warning"`` (the
    ``log_level`` setting).  Returns the newly created logger instance.
    """
    global _logger
    if isinstance(min_level, str):
        min_level = LogLevel.from_name(min_level)
    _logger = EngineLogger(
        log_dir=log_dir,
        supabase_client=supabase_client,
        min_level=min_level,
    )
    return _logger


def get_logger() -> EngineLogger:
    """Retrieve the global ``EngineLogger`` singleton.

    Raises:
        RuntimeError: If ``init_logger()`` has not been called yet.
    """
    if _logger is None:
        raise RuntimeError("Logger not initialized. Call init_logger() first.")
    return _logger


def reset_logger() -> None:
    """Drop the global singleton (tests)."""
    global _logger
    _logger = None
