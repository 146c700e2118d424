"""Per-client observability events backed by blinker signals."""

from __future__ import annotations

import itertools
import threading
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Literal, get_args

from blinker import Signal

EventKind = Literal["request", "response", "error", "log"]
WILDCARD = "*"
EVENT_KINDS: tuple[str, ...] = get_args(EventKind)


@dataclass(frozen=True)
class EventContext:
    """Attribution attached to every emitted event."""

    instance_id: int


Handler = Callable[[Any, EventContext], None]
WildcardHandler = Callable[[str, Any, EventContext], None]


class EmitterInstance:
    """Emit handle scoped to one fetch or live call."""

    def __init__(self, emitter: Emitter, instance_id: int) -> None:
        self._emitter = emitter
        self.instance_id = instance_id

    def emit(self, kind: EventKind, payload: Any) -> None:
        self._emitter.emit(kind, payload, EventContext(self.instance_id))


class Emitter:
    """Typed multi-subscriber broadcast for request/response/error/log events.

    Each client owns one emitter; calls obtain an :class:`EmitterInstance`
    so listeners can tell concurrent calls apart.
    """

    def __init__(self) -> None:
        self._signals = {kind: Signal(f"idxs.{kind}") for kind in (*EVENT_KINDS, WILDCARD)}
        self._receivers: dict[str, dict[Callable[..., None], Callable[..., None]]] = {
            kind: {} for kind in self._signals
        }
        self._ids = itertools.count()
        self._lock = threading.Lock()

    def instance(self) -> EmitterInstance:
        with self._lock:
            instance_id = next(self._ids)
        return EmitterInstance(self, instance_id)

    def on(self, kind: str, handler: Callable[..., None]) -> Callable[[], None]:
        """Subscribe ``handler`` to ``kind`` (or ``"*"`` for every kind).

        Returns a callable that removes the subscription.
        """

        signal = self._signal(kind)
        if kind == WILDCARD:

            def _receiver(sender: Any, *, kind: str, payload: Any, context: EventContext) -> None:
                handler(kind, payload, context)

        else:

            def _receiver(sender: Any, *, kind: str, payload: Any, context: EventContext) -> None:
                handler(payload, context)

        with self._lock:
            previous = self._receivers[kind].pop(handler, None)
            if previous is not None:
                signal.disconnect(previous)
            self._receivers[kind][handler] = _receiver
            signal.connect(_receiver, weak=False)
        return lambda: self.off(kind, handler)

    def off(self, kind: str, handler: Callable[..., None] | None = None) -> None:
        """Remove one handler, or every handler of ``kind`` when omitted."""

        signal = self._signal(kind)
        with self._lock:
            receivers = self._receivers[kind]
            if handler is None:
                targets = list(receivers.values())
                receivers.clear()
            else:
                receiver = receivers.pop(handler, None)
                targets = [] if receiver is None else [receiver]
            for receiver in targets:
                signal.disconnect(receiver)

    def emit(self, kind: EventKind, payload: Any, context: EventContext) -> None:
        signal = self._signal(kind)
        if kind == WILDCARD:
            raise ValueError("Cannot emit the wildcard event")
        signal.send(self, kind=kind, payload=payload, context=context)
        self._signals[WILDCARD].send(self, kind=kind, payload=payload, context=context)

    def _signal(self, kind: str) -> Signal:
        try:
            return self._signals[kind]
        except KeyError:
            raise ValueError(f"Unknown event kind: {kind!r}") from None
