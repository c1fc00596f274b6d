"""Playback lifecycle for a single player.

Listeners registered while a source is active (progress, error, ready
handlers) are owned by the player and released by one cleanup routine on
every exit transition, so a previous clip can never fire into the next one.
"""

import logging
from enum import Enum
from typing import Callable

logger = logging.getLogger(__name__)


class PlaybackState(str, Enum):
    IDLE = "idle"
    LOADING = "loading"
    BUFFERING = "buffering"
    PLAYING = "playing"
    PAUSED = "paused"
    ERROR = "error"


class PlaybackEvent(str, Enum):
    LOAD = "load"
    BUFFER = "buffer"
    READY = "ready"
    PLAY = "play"
    PAUSE = "pause"
    STALL = "stall"
    FAIL = "fail"
    STOP = "stop"


class InvalidTransition(Exception):
    def __init__(self, state: PlaybackState, event: PlaybackEvent):
        self.state = state
        self.event = event
        super().__init__(f"Cannot {event.value} while {state.value}")


S = PlaybackState
E = PlaybackEvent

TRANSITIONS: dict[tuple[PlaybackState, PlaybackEvent], PlaybackState] = {
    (S.LOADING, E.BUFFER): S.BUFFERING,
    (S.PLAYING, E.BUFFER): S.BUFFERING,
    (S.LOADING, E.READY): S.PLAYING,
    (S.BUFFERING, E.READY): S.PLAYING,
    (S.PLAYING, E.PAUSE): S.PAUSED,
    (S.BUFFERING, E.PAUSE): S.PAUSED,
    (S.PAUSED, E.PLAY): S.PLAYING,
    # Network stalls mid-clip drop back to buffering until ready fires again
    (S.PLAYING, E.STALL): S.BUFFERING,
    (S.LOADING, E.STALL): S.BUFFERING,
}

# Exit transitions release everything tied to the current source
_EXIT_STATES = {S.IDLE, S.ERROR}


class Player:
    """State machine for one video element."""

    def __init__(self):
        self.state = PlaybackState.IDLE
        self.source: str | None = None
        self.error: str | None = None
        self._listeners: dict[str, Callable[..., None]] = {}

    @property
    def listeners(self) -> dict[str, Callable[..., None]]:
        return dict(self._listeners)

    def add_listener(self, name: str, handler: Callable[..., None]) -> None:
        if self.state in _EXIT_STATES:
            raise RuntimeError("No active source to listen on")
        self._listeners[name] = handler

    def emit(self, name: str, *args) -> None:
        handler = self._listeners.get(name)
        if handler is not None:
            handler(*args)

    def _cleanup(self) -> None:
        self._listeners.clear()

    def dispatch(self, event: PlaybackEvent | str, source: str | None = None, error: str | None = None) -> PlaybackState:
        event = PlaybackEvent(event)
        previous = self.state

        if event == E.LOAD:
            if not source:
                raise ValueError("load requires a source")
            self._cleanup()
            self.source = source
            self.error = None
            self.state = S.LOADING
        elif event == E.STOP:
            self._cleanup()
            self.source = None
            self.state = S.IDLE
        elif event == E.FAIL:
            self._cleanup()
            self.error = error or "Playback failed"
            self.state = S.ERROR
        else:
            target = TRANSITIONS.get((previous, event))
            if target is None:
                raise InvalidTransition(previous, event)
            self.state = target

        logger.debug(f"Playback {previous.value} -> {self.state.value} on {event.value}")
        return self.state

    def load(self, source: str) -> PlaybackState:
        return self.dispatch(E.LOAD, source=source)

    def fail(self, error: str) -> PlaybackState:
        return self.dispatch(E.FAIL, error=error)

    def stop(self) -> PlaybackState:
        return self.dispatch(E.STOP)
