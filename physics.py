"""
Bungee Jump Physics Engine
Phase 1: Free fall (slack rope)   Phase 2: Damped elastic oscillation

Both phases are closed-form: each model maps elapsed time straight to a
kinematic state, nothing is integrated step by step.
"""

import enum
import logging
import math
import warnings
from dataclasses import dataclass
from typing import Optional

logger = logging.getLogger(__name__)

# ──────────────────────────────────────────────
# Constants (SI units)
# ──────────────────────────────────────────────
GRAVITY: float = 9.81  # m/s^2
TIME_STEP: float = 0.01  # s  (sampling interval of a trajectory)

# The critical/overdamped branch reuses the oscillating formula with this
# fraction of the natural frequency unless exact damping is requested.
DEGENERATE_OMEGA_FACTOR: float = 0.9

# |discriminant| below this is treated as critical damping (exact mode only)
CRITICAL_TOLERANCE: float = 1e-12


class ConfigurationError(ValueError):
    """Physical parameters that cannot describe a real jump."""


class DegenerateBranchWarning(UserWarning):
    """Critical/overdamped configuration solved with the 0.9·omega0 approximation."""


class Phase(enum.Enum):
    FREE_FALL = "free_fall"
    ELASTIC = "elastic"


@dataclass(frozen=True)
class Energy:
    """Energy bookkeeping (J). Potential datum is the platform, positive-down."""
    kinetic: float
    potential: float
    elastic: float
    total: float

    def to_dict(self) -> dict:
        return {
            "kinetic": self.kinetic,
            "potential": self.potential,
            "elastic": self.elastic,
            "total": self.total,
        }


@dataclass(frozen=True)
class SimulationSample:
    """One time step of the jump. position/velocity are positive downward."""
    time: float
    position: float
    velocity: float
    acceleration: float
    phase: Phase
    energy: Energy
    force: float

    def to_dict(self) -> dict:
        return {
            "time": self.time,
            "position": self.position,
            "velocity": self.velocity,
            "acceleration": self.acceleration,
            "phase": self.phase.value,
            "energy": self.energy.to_dict(),
            "force": self.force,
        }


def _require_finite(name: str, value: float) -> float:
    try:
        value = float(value)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(f"{name} must be a number, got {value!r}") from exc
    if not math.isfinite(value):
        raise ConfigurationError(f"{name} must be finite, got {value!r}")
    return value


@dataclass(frozen=True)
class PhysicalParameters:
    """Frozen snapshot of one run's configuration.

    Built once when a run starts; every model reads from the same snapshot,
    so later edits to the UI inputs cannot leak into a run in progress.
    """
    total_height: float          # H  (m)
    mass: float                  # m  (kg)
    natural_rope_length: float   # L0 (m)
    spring_constant: float       # k  (N/m)
    damping_coefficient: float   # gamma (1/s)
    gravity: float = GRAVITY
    time_step: float = TIME_STEP

    def __post_init__(self):
        for name in ("total_height", "mass", "natural_rope_length", "spring_constant",
                     "damping_coefficient", "gravity", "time_step"):
            object.__setattr__(self, name, _require_finite(name, getattr(self, name)))

        for name in ("total_height", "mass", "natural_rope_length", "spring_constant",
                     "gravity", "time_step"):
            if getattr(self, name) <= 0:
                raise ConfigurationError(f"{name} must be > 0, got {getattr(self, name)}")
        if self.damping_coefficient < 0:
            raise ConfigurationError(
                f"damping_coefficient must be >= 0, got {self.damping_coefficient}")
        if self.natural_rope_length >= self.total_height:
            raise ConfigurationError(
                f"rope length {self.natural_rope_length} m must be shorter than "
                f"the total height {self.total_height} m")

    # ── Derived quantities ──
    @property
    def free_fall_time(self) -> float:
        """t1 = sqrt(2·L0/g): time for the rope to go taut."""
        return math.sqrt(2.0 * self.natural_rope_length / self.gravity)

    @property
    def natural_frequency(self) -> float:
        """omega0 = sqrt(k/m)."""
        return math.sqrt(self.spring_constant / self.mass)

    @property
    def equilibrium(self) -> float:
        """Depth where the rope tension balances the weight."""
        return self.natural_rope_length + self.mass * self.gravity / self.spring_constant

    @property
    def discriminant(self) -> float:
        return self.damping_coefficient ** 2 - 4.0 * self.natural_frequency ** 2

    @property
    def is_underdamped(self) -> bool:
        return self.discriminant < 0

    @property
    def weight(self) -> float:
        return self.mass * self.gravity

    def g_force(self, force: float) -> float:
        """Force expressed in multiples of the jumper's weight."""
        return force / self.weight


def _energy(params: PhysicalParameters, position: float, velocity: float,
            elastic: float = 0.0) -> Energy:
    kinetic = 0.5 * params.mass * velocity * velocity
    potential = -params.mass * params.gravity * position
    return Energy(kinetic=kinetic, potential=potential, elastic=elastic,
                  total=kinetic + potential + elastic)


# ──────────────────────────────────────────
# Phase 1: Free fall
# ──────────────────────────────────────────
class PhaseOneModel:
    """Free fall from the platform until the rope reaches its natural length."""

    def __init__(self, params: PhysicalParameters):
        self.params = params

    @property
    def duration(self) -> float:
        return self.params.free_fall_time

    def position(self, t: float) -> float:
        return 0.5 * self.params.gravity * t * t

    def velocity(self, t: float) -> float:
        return self.params.gravity * t

    def evaluate(self, t: float) -> SimulationSample:
        p = self.params
        position = self.position(t)
        velocity = self.velocity(t)
        return SimulationSample(
            time=t,
            position=position,
            velocity=velocity,
            acceleration=p.gravity,
            phase=Phase.FREE_FALL,
            energy=_energy(p, position, velocity),
            # Slack rope: only the weight acts
            force=p.mass * p.gravity,
        )


# ──────────────────────────────────────────
# Phase 2: Damped elastic oscillation
# ──────────────────────────────────────────
class PhaseTwoModel:
    """Damped oscillation about the equilibrium depth, tau measured from rope-taut.

    Solves  y'' + gamma·y' + omega0²·(y - equilibrium) = 0
    with y(0) = L0 and y'(0) = v1 (the free-fall exit velocity).

    Branches:
      discriminant < 0            oscillating solution, exact
      discriminant >= 0 (default) oscillating formula with omega_d = 0.9·omega0,
                                  flagged by DegenerateBranchWarning
      discriminant >= 0 (exact)   critically damped / overdamped closed forms
    """

    def __init__(self, params: PhysicalParameters, entry_velocity: Optional[float] = None,
                 exact_damping: bool = False):
        self.params = params
        self.exact_damping = exact_damping

        phase_one = PhaseOneModel(params)
        self.time_offset = phase_one.duration
        if entry_velocity is None:
            entry_velocity = phase_one.velocity(self.time_offset)
        self.entry_velocity = float(entry_velocity)

        self.omega0 = params.natural_frequency
        self.gamma = params.damping_coefficient
        self.equilibrium = params.equilibrium
        self.discriminant = params.discriminant
        self.y0 = params.natural_rope_length - self.equilibrium

        self.approximated = False
        if self.discriminant < 0:
            self._mode = "underdamped"
            # sqrt(omega0² - gamma²/4), taken from the discriminant so it is never 0 here
            self.omega_d = math.sqrt(-self.discriminant) / 2.0
        elif not exact_damping:
            self._mode = "underdamped"
            self.omega_d = DEGENERATE_OMEGA_FACTOR * self.omega0
            self.approximated = True
            msg = (f"gamma={self.gamma:.4g} 1/s is at or above critical damping "
                   f"(2·omega0={2.0 * self.omega0:.4g}); using omega_d = "
                   f"{DEGENERATE_OMEGA_FACTOR}·omega0 approximation")
            logger.warning(msg)
            warnings.warn(msg, DegenerateBranchWarning, stacklevel=2)
        elif self.discriminant <= CRITICAL_TOLERANCE:
            self._mode = "critical"
            self.omega_d = 0.0
        else:
            self._mode = "overdamped"
            self.omega_d = 0.0
            root = math.sqrt(self.discriminant)
            self.r1 = (-self.gamma + root) / 2.0
            self.r2 = (-self.gamma - root) / 2.0

        # Integration constants for the active branch
        v1, y0, half = self.entry_velocity, self.y0, self.gamma / 2.0
        if self._mode == "underdamped":
            self.A = y0
            self.B = (v1 + half * y0) / self.omega_d
        elif self._mode == "critical":
            self.A = y0
            self.B = v1 + half * y0
        else:
            self.A = (v1 - self.r2 * y0) / (self.r1 - self.r2)
            self.B = y0 - self.A

    @property
    def mode(self) -> str:
        """'underdamped', 'critical' or 'overdamped' (the solution actually used)."""
        return self._mode

    def displacement(self, tau: float) -> tuple:
        """(y - equilibrium, y') at tau."""
        A, B = self.A, self.B
        if self._mode == "underdamped":
            half = self.gamma / 2.0
            decay = math.exp(-half * tau)
            c = math.cos(self.omega_d * tau)
            s = math.sin(self.omega_d * tau)
            y = decay * (A * c + B * s)
            v = decay * ((-half * A + self.omega_d * B) * c +
                         (-self.omega_d * A - half * B) * s)
            return y, v
        if self._mode == "critical":
            half = self.gamma / 2.0
            decay = math.exp(-half * tau)
            y = (A + B * tau) * decay
            v = (B - half * (A + B * tau)) * decay
            return y, v
        e1 = math.exp(self.r1 * tau)
        e2 = math.exp(self.r2 * tau)
        return A * e1 + B * e2, self.r1 * A * e1 + self.r2 * B * e2

    def evaluate(self, tau: float) -> SimulationSample:
        p = self.params
        y, velocity = self.displacement(tau)
        position = self.equilibrium + y
        acceleration = -self.omega0 ** 2 * y - self.gamma * velocity
        stretch = position - p.natural_rope_length
        return SimulationSample(
            time=tau + self.time_offset,
            position=position,
            velocity=velocity,
            acceleration=acceleration,
            phase=Phase.ELASTIC,
            energy=_energy(p, position, velocity, 0.5 * p.spring_constant * stretch * stretch),
            force=p.spring_constant * stretch,
        )


# ──────────────────────────────────────────
# Quick analytic estimates (shown before a run)
# ──────────────────────────────────────────
@dataclass(frozen=True)
class JumpEstimates:
    free_fall_time: float
    entry_velocity: float
    natural_frequency: float
    period: float
    equilibrium: float
    lowest_point: float
    safety_margin: float

    def to_dict(self) -> dict:
        return {
            "free_fall_time": self.free_fall_time,
            "entry_velocity": self.entry_velocity,
            "natural_frequency": self.natural_frequency,
            "period": self.period,
            "equilibrium": self.equilibrium,
            "lowest_point": self.lowest_point,
            "safety_margin": self.safety_margin,
        }


def estimate_jump(params: PhysicalParameters) -> JumpEstimates:
    """Back-of-envelope figures for the parameter panel.

    lowest_point is the undamped amplitude about equilibrium,
    sqrt(y0² + (v1/omega0)²), added to the equilibrium depth. Damping only
    lowers it; Trajectory.summary() gives the value a run actually reaches.
    """
    t1 = params.free_fall_time
    omega0 = params.natural_frequency
    v1 = PhaseOneModel(params).velocity(t1)
    y0 = params.natural_rope_length - params.equilibrium
    lowest = params.equilibrium + math.hypot(y0, v1 / omega0)
    return JumpEstimates(
        free_fall_time=t1,
        entry_velocity=v1,
        natural_frequency=omega0,
        period=2.0 * math.pi / omega0,
        equilibrium=params.equilibrium,
        lowest_point=lowest,
        safety_margin=params.total_height - lowest,
    )
