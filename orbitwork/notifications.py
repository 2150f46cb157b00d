"""Semantic state-transition events for the notification subsystem."""

from __future__ import annotations

import enum
import logging
from collections.abc import Callable
from dataclasses import dataclass

_LOG = logging.getLogger(__name__)


class TransitionKind(enum.StrEnum):
    WORK_STARTED = "work_started"
    SUBMITTED = "submitted"
    APPROVED = "approved"
    REJECTED = "rejected"
    DISPUTED = "disputed"


@dataclass(frozen=True)
class StateTransition:
    kind: TransitionKind
    escrow_id: int
    milestone_index: int | None
    project_title: str
    payer: str
    beneficiary: str
    actor: str | None = None
    reason: str | None = None


Listener = Callable[[StateTransition], None]


class TransitionPublisher:
    """Fan-out of confirmed transitions to subscribed listeners."""

    def __init__(self):
        self._listeners: list[Listener] = []

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register *listener*; returns a function that unsubscribes it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def publish(self, transition: StateTransition) -> None:
        for listener in list(self._listeners):
            try:
                listener(transition)
            except Exception:
                _LOG.exception("listener failed for %s on escrow %s", transition.kind, transition.escrow_id)
