"""
Trajectory generation: free fall followed by the elastic phase, sampled every dt.

    params ──► TrajectoryGenerator.generate() ──► Trajectory (write-once) ──► playback
"""

import logging
import math
from dataclasses import dataclass
from collections.abc import Sequence
from typing import Callable, Iterator, Optional

import numpy as np

from physics import (
    ConfigurationError, Phase, PhaseOneModel, PhaseTwoModel,
    PhysicalParameters, SimulationSample,
)

logger = logging.getLogger(__name__)

# Guards floor(t / dt) against values like 2.9999999999 for an exact multiple
# (so a span that is a whole number of steps includes its end point)
_STEP_EPS = 1e-9

TraceHook = Callable[[SimulationSample], None]


def _step_count(span: float, dt: float) -> int:
    """Number of dt steps in [0, span], both ends inclusive.

    When span is a multiple of dt (within _STEP_EPS steps) the last sample
    lands exactly on span.
    """
    if span < 0:
        return 0
    return int(math.floor(span / dt + _STEP_EPS)) + 1


@dataclass(frozen=True)
class TrajectorySummary:
    sample_count: int
    free_fall_samples: int
    duration: float
    lowest_point: Optional[SimulationSample]
    max_g_force: float
    max_speed: float
    peak_positions: tuple
    safety_margin: float
    truncated: bool
    approximated: bool

    def to_dict(self) -> dict:
        return {
            "sample_count": self.sample_count,
            "free_fall_samples": self.free_fall_samples,
            "duration": self.duration,
            "lowest_point": self.lowest_point.to_dict() if self.lowest_point else None,
            "max_g_force": self.max_g_force,
            "max_speed": self.max_speed,
            "peak_positions": list(self.peak_positions),
            "safety_margin": self.safety_margin,
            "truncated": self.truncated,
            "approximated": self.approximated,
        }


class Trajectory(Sequence):
    """Time-ordered, immutable sequence of samples from one run.

    Attributes:
        params:               Snapshot the run was generated from.
        requested_duration:   Duration asked of the generator (s).
        truncated:            True if the elastic phase was cut at the total height.
        truncation_position:  Position of the first rejected sample, else None.
        approximated:         True if the degenerate-damping approximation was used.
    """

    def __init__(self, samples, params: PhysicalParameters, requested_duration: float,
                 truncated: bool = False, truncation_position: Optional[float] = None,
                 approximated: bool = False):
        self._samples = tuple(samples)
        self.params = params
        self.requested_duration = requested_duration
        self.truncated = truncated
        self.truncation_position = truncation_position
        self.approximated = approximated

    def __len__(self) -> int:
        return len(self._samples)

    def __getitem__(self, index):
        return self._samples[index]

    def __iter__(self) -> Iterator[SimulationSample]:
        return iter(self._samples)

    def __eq__(self, other) -> bool:
        if not isinstance(other, Trajectory):
            return NotImplemented
        return self._samples == other._samples and self.params == other.params

    __hash__ = None

    def __repr__(self) -> str:
        return (f"Trajectory({len(self)} samples, duration={self.duration:.2f}s, "
                f"truncated={self.truncated})")

    @property
    def samples(self) -> tuple:
        return self._samples

    @property
    def duration(self) -> float:
        return self._samples[-1].time if self._samples else 0.0

    def phase_samples(self, phase: Phase) -> list:
        return [s for s in self._samples if s.phase is phase]

    def as_arrays(self) -> dict:
        """Column view: {"time", "position", "velocity", "acceleration", "force", ...} -> ndarray."""
        cols = {
            "time": [], "position": [], "velocity": [], "acceleration": [], "force": [],
            "kinetic": [], "potential": [], "elastic": [], "total": [],
        }
        for s in self._samples:
            cols["time"].append(s.time)
            cols["position"].append(s.position)
            cols["velocity"].append(s.velocity)
            cols["acceleration"].append(s.acceleration)
            cols["force"].append(s.force)
            cols["kinetic"].append(s.energy.kinetic)
            cols["potential"].append(s.energy.potential)
            cols["elastic"].append(s.energy.elastic)
            cols["total"].append(s.energy.total)
        arrays = {k: np.array(v, dtype=float) for k, v in cols.items()}
        arrays["elastic_phase"] = np.array(
            [s.phase is Phase.ELASTIC for s in self._samples], dtype=bool)
        return arrays

    def peak_indices(self) -> list:
        """Indices of local maxima of position (lowest points) within the elastic phase."""
        elastic = [i for i, s in enumerate(self._samples) if s.phase is Phase.ELASTIC]
        if len(elastic) < 3:
            return []
        pos = np.array([self._samples[i].position for i in elastic])
        d = np.diff(pos)
        # rising then non-rising; the strict '>' on the left avoids plateau doubles
        inner = np.nonzero((d[:-1] > 0) & (d[1:] <= 0))[0] + 1
        return [elastic[i] for i in inner]

    def summary(self) -> TrajectorySummary:
        p = self.params
        if not self._samples:
            return TrajectorySummary(0, 0, 0.0, None, 0.0, 0.0, (), p.total_height,
                                     self.truncated, self.approximated)
        arr = self.as_arrays()
        lowest_idx = int(np.argmax(arr["position"]))
        lowest = self._samples[lowest_idx]
        return TrajectorySummary(
            sample_count=len(self),
            free_fall_samples=int(np.count_nonzero(~arr["elastic_phase"])),
            duration=self.duration,
            lowest_point=lowest,
            max_g_force=float(np.max(arr["force"])) / p.weight,
            max_speed=float(np.max(np.abs(arr["velocity"]))),
            peak_positions=tuple(self._samples[i].position for i in self.peak_indices()),
            safety_margin=p.total_height - lowest.position,
            truncated=self.truncated,
            approximated=self.approximated,
        )

    def to_dicts(self) -> list:
        return [s.to_dict() for s in self._samples]


class TrajectoryGenerator:
    """Builds the full sample sequence for a run. Stateless between calls."""

    def __init__(self, exact_damping: bool = False):
        self.exact_damping = exact_damping

    def generate(self, params: PhysicalParameters, total_duration: float,
                 trace: Optional[TraceHook] = None) -> Trajectory:
        """
        Sample the jump from t=0 to total_duration.

        Args:
            params:         Frozen run configuration.
            total_duration: Seconds of jump to generate (> 0).
            trace:          Optional hook called once per emitted sample.

        Returns:
            Trajectory. Shorter than requested when the elastic phase would
            carry the jumper past the total height (``truncated`` is set).
        """
        if not isinstance(params, PhysicalParameters):
            raise ConfigurationError(f"expected PhysicalParameters, got {type(params).__name__}")
        try:
            total_duration = float(total_duration)
        except (TypeError, ValueError) as exc:
            raise ConfigurationError(f"duration must be a number, got {total_duration!r}") from exc
        if not math.isfinite(total_duration) or total_duration <= 0:
            raise ConfigurationError(f"duration must be > 0, got {total_duration}")

        dt = params.time_step
        samples: list = []

        def emit(sample: SimulationSample) -> None:
            samples.append(sample)
            if trace is not None:
                trace(sample)

        # Phase 1: free fall, clipped to the requested duration
        phase_one = PhaseOneModel(params)
        t1 = phase_one.duration
        n_free = _step_count(min(t1, total_duration), dt)
        n_elastic = _step_count(total_duration - t1, dt)
        # t1 on the grid: the rope is taut at t1, so that instant belongs to phase 2 only
        if n_elastic and abs((n_free - 1) * dt - t1) <= _STEP_EPS * dt:
            n_free -= 1
        for i in range(n_free):
            emit(phase_one.evaluate(i * dt))

        # Phase 2: elastic, entered with the exact phase-1 exit velocity
        truncated = False
        truncation_position = None
        approximated = False
        mode = None
        phase_two = None
        if n_elastic:
            phase_two = PhaseTwoModel(params, entry_velocity=phase_one.velocity(t1),
                                      exact_damping=self.exact_damping)
            approximated = phase_two.approximated
            mode = phase_two.mode
        for i in range(n_elastic):
            sample = phase_two.evaluate(i * dt)
            if sample.position > params.total_height:
                truncated = True
                truncation_position = sample.position
                logger.info("Trajectory truncated at t=%.2fs: position %.2fm exceeds "
                            "total height %.2fm", sample.time, sample.position,
                            params.total_height)
                break
            emit(sample)

        logger.info("Generated %d samples (%.2fs requested, mode=%s)",
                    len(samples), total_duration, mode)
        return Trajectory(samples, params, total_duration, truncated=truncated,
                          truncation_position=truncation_position,
                          approximated=approximated)


def generate(params: PhysicalParameters, total_duration: float,
             trace: Optional[TraceHook] = None, exact_damping: bool = False) -> Trajectory:
    """Module-level shortcut for TrajectoryGenerator(...).generate(...)."""
    return TrajectoryGenerator(exact_damping=exact_damping).generate(params, total_duration, trace)
