"""Structured event log for the postflow engine."""
from postflow.logging.models import LogLevel, LogComponent, LogEntry
from postflow.logging.engine_logger import EngineLogger, init_logger, get_logger, reset_logger
from postflow.logging.component_logger import ComponentLogger

__all__ = [
    "LogLevel", "LogComponent", "LogEntry",
    "EngineLogger", "init_logger", "get_logger", "reset_logger",
    "ComponentLogger",
]
