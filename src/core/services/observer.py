"""
Progress sinks for deployment runs.

An observer is handed to one ``DeploymentOrchestrator`` run and receives
stage-boundary progress plus per-run log messages. Sinks are notified
synchronously but a failing sink never affects the deployment.
"""

import logging
from typing import Any, Dict, List, Optional, Protocol, Sequence, runtime_checkable

logger = logging.getLogger(__name__)


@runtime_checkable
class DeploymentObserver(Protocol):
    """Receives progress and log events for one deployment run."""

    def on_progress(self, stage: str, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        ...

    def on_log(self, level: int, message: str) -> None:
        ...


class LoggingObserver:
    """Default observer: forwards everything to ``logging``."""

    def __init__(self, log: Optional[logging.Logger] = None):
        self._logger = log or logger

    def on_progress(self, stage: str, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        self._logger.info(f"[{stage}] {message}")

    def on_log(self, level: int, message: str) -> None:
        self._logger.log(level, message)


class RecordingObserver:
    """Keeps every event in memory; the log of one run only."""

    def __init__(self) -> None:
        self.progress: List[Dict[str, Any]] = []
        self.logs: List[Dict[str, Any]] = []

    def on_progress(self, stage: str, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        self.progress.append({"stage": stage, "message": message, "details": details})

    def on_log(self, level: int, message: str) -> None:
        self.logs.append({"level": logging.getLevelName(level), "message": message})

    def stages(self) -> List[str]:
        return [event["stage"] for event in self.progress]


class SafeObserver:
    """
    Fans events out to several observers, isolating each of them.

    Exceptions raised by a sink are logged and dropped.
    """

    def __init__(self, observers: Sequence[DeploymentObserver] = ()):
        self._observers = list(observers) or [LoggingObserver()]

    def on_progress(self, stage: str, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        for observer in self._observers:
            try:
                observer.on_progress(stage, message, details)
            except Exception as e:
                logger.warning(f"Progress observer {type(observer).__name__} failed: {e}")

    def on_log(self, level: int, message: str) -> None:
        for observer in self._observers:
            try:
                observer.on_log(level, message)
            except Exception as e:
                logger.warning(f"Log observer {type(observer).__name__} failed: {e}")

    def info(self, message: str) -> None:
        self.on_log(logging.INFO, message)

    def warning(self, message: str) -> None:
        self.on_log(logging.WARNING, message)

    def error(self, message: str) -> None:
        self.on_log(logging.ERROR, message)
