"""Per-component logger wrapper.

``ComponentLogger`` binds a fixed ``LogComponent`` so a subsystem can log
without repeating it.  It writes to an explicit ``EngineLogger`` when one
is given and to the global singleton otherwise.
"""

from typing import Any, Optional

from postflow.logging.engine_logger import EngineLogger, get_logger
from postflow.logging.models import LogComponent, LogEntry


class ComponentLogger:
    """Wrapper that binds a fixed ``LogComponent`` to an ``EngineLogger``.

    Usage::

        self.events = ComponentLogger(LogComponent.SCHEDULER)
        await self.events.info("Job published", job_id=job.id)
    """

    def __init__(
        self,
        component: LogComponent,
        engine_logger: Optional[EngineLogger] = None,
    ) -> None:
        self.component = component
        self._engine_logger = engine_logger

    @property
    def engine_logger(self) -> EngineLogger:
        return self._engine_logger or get_logger()

    async def info(self, message: str, **kwargs: Any) -> LogEntry:
        """Log at INFO level for this component."""
        return await self.engine_logger.info(self.component, message, **kwargs)

    async def warning(self, message: str, **kwargs: Any) -> LogEntry:
        """Log at WARNING level for this component."""
        return await self.engine_logger.warning(self.component, message, **kwargs)

    async def error(
        self, message: str, error: Optional[BaseException] = None, **kwargs: Any
    ) -> LogEntry:
        """Log at ERROR level for this component."""
        return await self.engine_logger.error(self.component, message, error=error, **kwargs)
