"""Progress events emitted while a recipe runs.

The engine never renders anything itself. It sends a ``StepStarted`` event
before each step and a ``ProgressUpdate`` after each completed step to a
sink supplied by the caller.
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Protocol, Union

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StepStarted:
    """Emitted before a step runs."""

    title: str
    description: str


@dataclass(frozen=True)
class ProgressUpdate:
    """Emitted after a step; ``percent`` is a fraction in [0, 1] of the whole batch."""

    percent: float


ProgressEvent = Union[StepStarted, ProgressUpdate]


class ProgressSink(Protocol):
    """Receives progress events."""

    def send(self, event: ProgressEvent) -> None: ...


class LoggingProgressSink:
    """Writes progress events to the log."""

    def send(self, event: ProgressEvent) -> None:
        if isinstance(event, StepStarted):
            logger.info(f"{event.title} {event.description}")
        else:
            logger.debug(f"Progress: {event.percent:.0%}")


class CallbackProgressSink:
    """Forwards every event to a callable (e.g. a UI update function)."""

    def __init__(self, callback: Callable[[ProgressEvent], None]):
        self.callback = callback

    def send(self, event: ProgressEvent) -> None:
        self.callback(event)


class NullProgressSink:
    """Discards all events."""

    def send(self, event: ProgressEvent) -> None:
        pass
