"""
Jump Preset System
Named jump configurations from the parameter panel, each set up and
(optionally) simulated in one call.
"""

from physics import PhysicalParameters, estimate_jump
from trajectory import TrajectoryGenerator

DEFAULT_DURATION = 15.0     # s
DEFAULT_DAMPING = 0.1       # 1/s
DEFAULT_SPEED_MS = 50       # ms between frames

# Quick-pick buttons: (value, label)
DURATION_PRESETS = [
    (10.0, "Short (10s)"),
    (20.0, "Medium (20s)"),
    (30.0, "Long (30s)"),
    (60.0, "Very long (60s)"),
]

DAMPING_PRESETS = [
    (0.0,  "None (ideal)"),
    (0.05, "Light"),
    (0.1,  "Normal"),
    (0.2,  "Strong"),
]

SPEED_PRESETS = [
    (5,   "Very fast"),
    (20,  "Fast"),
    (50,  "Normal"),
    (100, "Slow"),
]


def _build(name: str, height: float, mass: float, rope: float, k: float,
           damping: float, duration: float, run: bool) -> dict:
    params = PhysicalParameters(
        total_height=height,
        mass=mass,
        natural_rope_length=rope,
        spring_constant=k,
        damping_coefficient=damping,
    )
    trajectory = None
    if run:
        trajectory = TrajectoryGenerator().generate(params, duration)
    return {
        "name": name,
        "inputs": {
            "total_height": height,
            "jumper_mass": mass,
            "rope_length": rope,
            "spring_constant": k,
        },
        "params": params,
        "duration": duration,
        "estimates": estimate_jump(params),
        "trajectory": trajectory,
    }


class JumpPreset:
    """Each preset returns {name, inputs, params, duration, estimates, trajectory}.

    With run=False the trajectory is None (parameter setup only).
    """

    @staticmethod
    def centro_ibo(damping: float = DEFAULT_DAMPING, duration: float = DEFAULT_DURATION,
                   run=True) -> dict:
        """Reference jump: 70 m platform, 70 kg jumper, 35 m rope, k=140 N/m."""
        return _build("Centro Ibó (Original)", 70.0, 70.0, 35.0, 140.0,
                      damping, duration, run)

    @staticmethod
    def high_jump(damping: float = DEFAULT_DAMPING, duration: float = DEFAULT_DURATION,
                  run=True) -> dict:
        return _build("Salto Alto", 100.0, 80.0, 45.0, 160.0, damping, duration, run)

    @staticmethod
    def soft_jump(damping: float = DEFAULT_DAMPING, duration: float = DEFAULT_DURATION,
                  run=True) -> dict:
        """Short stiff rope: gentle, quick rebounds."""
        return _build("Salto Suave", 50.0, 60.0, 20.0, 200.0, damping, duration, run)

    @staticmethod
    def extreme_jump(damping: float = DEFAULT_DAMPING, duration: float = DEFAULT_DURATION,
                     run=True) -> dict:
        """Heavy jumper on a long soft rope; deepest drop of the set."""
        return _build("Salto Extremo", 120.0, 100.0, 60.0, 120.0, damping, duration, run)


# Key → (preset fn, label); the controller and server share this map
PRESETS = {
    "centro_ibo":   (JumpPreset.centro_ibo,   "Centro Ibó (Original)"),
    "high_jump":    (JumpPreset.high_jump,    "Salto Alto"),
    "soft_jump":    (JumpPreset.soft_jump,    "Salto Suave"),
    "extreme_jump": (JumpPreset.extreme_jump, "Salto Extremo"),
}
