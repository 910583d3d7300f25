"""
Playback of a precomputed Trajectory, one sample per tick.

    IDLE ──start/play──► PLAYING ──last sample──► COMPLETED
                            │
                            └──cancel()──► CANCELLED

Pacing only changes the wall-clock gap between samples, never which samples
are emitted or in what order.
"""

import asyncio
import enum
import logging
from typing import Callable, Optional

from physics import SimulationSample
from trajectory import Trajectory

logger = logging.getLogger(__name__)

# Called as on_sample(sample, index); driver.history holds everything emitted so far
SampleCallback = Callable[[SimulationSample, int], None]


class PlaybackState(enum.Enum):
    IDLE = 0
    PLAYING = 1
    CANCELLED = 2
    COMPLETED = 3


class CancellationToken:
    """Cooperative stop flag, checked by the driver before every emission."""

    def __init__(self):
        self._cancelled = False

    def cancel(self) -> None:
        self._cancelled = True

    @property
    def cancelled(self) -> bool:
        return self._cancelled


class PlaybackDriver:
    """Replays a Trajectory at a caller-chosen pace.

    Only one playback is active at a time: ``start()`` cancels whatever is
    running (flag + pending sleep) before scheduling the new one.
    """

    def __init__(self, on_sample: Optional[SampleCallback] = None):
        self.on_sample = on_sample
        self.state = PlaybackState.IDLE
        self.trajectory: Optional[Trajectory] = None
        self._history: list = []
        self._token: Optional[CancellationToken] = None
        self._task: Optional[asyncio.Task] = None

    # ── Read side (rendering collaborators) ──
    @property
    def current_sample(self) -> Optional[SimulationSample]:
        return self._history[-1] if self._history else None

    @property
    def history(self) -> tuple:
        return tuple(self._history)

    @property
    def index(self) -> int:
        """Number of samples emitted so far in the current playback."""
        return len(self._history)

    @property
    def is_playing(self) -> bool:
        return self.state == PlaybackState.PLAYING

    # ── Control ──
    async def play(self, trajectory: Trajectory, delay: float = 0.05,
                   token: Optional[CancellationToken] = None) -> PlaybackState:
        """Emit every sample in order, sleeping ``delay`` seconds between them.

        Returns the final state (COMPLETED, or CANCELLED if the token fired).
        """
        if delay < 0:
            raise ValueError(f"delay must be >= 0, got {delay}")
        if token is None:
            token = CancellationToken()
        self._token = token
        self.trajectory = trajectory
        self._history = []
        self.state = PlaybackState.PLAYING
        logger.debug("Playback started: %d samples, delay=%.3fs", len(trajectory), delay)

        for i, sample in enumerate(trajectory):
            if token.cancelled:
                break
            self._history.append(sample)
            if self.on_sample is not None:
                self.on_sample(sample, i)
            if i + 1 < len(trajectory):
                await asyncio.sleep(delay)

        if token.cancelled:
            self.state = PlaybackState.CANCELLED
            logger.debug("Playback cancelled after %d/%d samples", self.index, len(trajectory))
        else:
            self.state = PlaybackState.COMPLETED
            logger.debug("Playback completed: %d samples", self.index)
        return self.state

    def start(self, trajectory: Trajectory, delay: float = 0.05) -> asyncio.Task:
        """Cancel any active playback, then schedule ``play`` on the running loop.

        Raises RuntimeError, leaving the driver untouched, when no loop is running.
        """
        if delay < 0:
            raise ValueError(f"delay must be >= 0, got {delay}")
        loop = asyncio.get_running_loop()
        self.cancel()
        token = CancellationToken()
        self._token = token
        self.trajectory = trajectory
        self._history = []
        self.state = PlaybackState.PLAYING
        self._task = loop.create_task(self.play(trajectory, delay, token))
        return self._task

    def cancel(self) -> None:
        """Stop the active playback. Idempotent; no-op when nothing is playing."""
        if self._token is not None:
            self._token.cancel()
        if self._task is not None and not self._task.done():
            self._task.cancel()
        if self.state == PlaybackState.PLAYING:
            self.state = PlaybackState.CANCELLED
            logger.debug("Playback cancelled at sample %d", self.index)
        self._task = None

    def reset(self) -> None:
        """Cancel and forget the trajectory and emitted history."""
        self.cancel()
        self._token = None
        self.trajectory = None
        self._history = []
        self.state = PlaybackState.IDLE

    async def wait(self) -> PlaybackState:
        """Await the task scheduled by ``start()``, if any."""
        task = self._task
        if task is not None:
            await asyncio.wait([task])
        return self.state
