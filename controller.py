"""
BungeeController — Layer 2 (Run Logic)

Owns the UI inputs, the run lifecycle and the playback driver.
Communicates with Layer 3 (server.py / browser canvas) via one queue:
  - pending_events : dicts to forward to clients (sample, run_started, run_finished, …)

Layer 3 calls:
  ctrl.set_input(attr, value)  — range-checked parameter edits (refused while running)
  ctrl.start_run()             — generate + start playback (needs a running asyncio loop)
  ctrl.stop() / ctrl.reset()
  ctrl.load_script(name)       — apply a scripts/*.py jump (may autostart)
  ctrl.pending_events          — list of dicts to consume and broadcast
  ctrl.<state properties>      — read-only references to mode, status_msg, etc.
"""

import json
import logging
import runpy
from pathlib import Path

from jump_presets import DEFAULT_DAMPING, DEFAULT_DURATION, DEFAULT_SPEED_MS, PRESETS
from physics import (
    ConfigurationError, PhaseOneModel, PhaseTwoModel, PhysicalParameters, estimate_jump,
)
from playback import PlaybackDriver
from trajectory import Trajectory, TrajectoryGenerator

logger = logging.getLogger(__name__)

# Rope may be at most this fraction of the total height
ROPE_MAX_FRACTION = 0.8

# (attr, label, min, max, step); rope_length max is ROPE_MAX_FRACTION × total_height
INPUT_RANGES = [
    ("total_height",       "Total height (m)",   50.0, 200.0, 5.0),
    ("jumper_mass",        "Jumper mass (kg)",   40.0, 150.0, 5.0),
    ("rope_length",        "Rope length (m)",    10.0, None,  2.5),
    ("spring_constant",    "Spring k (N/m)",     50.0, 500.0, 10.0),
    ("damping",            "Damping (1/s)",       0.0,   0.5, 0.01),
    ("duration",           "Duration (s)",       10.0,  60.0, 1.0),
    ("animation_speed_ms", "Frame delay (ms)",    5.0, 200.0, 5.0),
]

INPUT_DEFAULTS = {
    "total_height":       70.0,
    "jumper_mass":        70.0,
    "rope_length":        35.0,
    "spring_constant":    140.0,
    "damping":            DEFAULT_DAMPING,
    "duration":           DEFAULT_DURATION,
    "animation_speed_ms": float(DEFAULT_SPEED_MS),
}

# Jump scripts shipped with the project (SCRIPT dicts)
SCRIPTS_DIR = Path(__file__).parent / "scripts"

# Elastic-phase offsets (s) reported by key_points()
KEY_POINT_TAUS = (0.0, 1.0, 2.0, 3.0, 4.0)

DEFAULT_INFO_MSG = "[Start] Run  [Stop] Pause  [Reset] Clear  Presets: Centro Ibó / Alto / Suave / Extremo"


class BungeeController:
    """Layer 2: input state + run state machine + playback orchestration."""

    def __init__(self, exact_damping: bool = False):
        self.inputs: dict = dict(INPUT_DEFAULTS)
        self.generator = TrajectoryGenerator(exact_damping=exact_damping)
        self.driver = PlaybackDriver(on_sample=self._on_sample)
        self.trajectory: Trajectory | None = None
        self.params: PhysicalParameters | None = None

        self.mode = "idle"          # "idle"|"running"
        self.status_msg = ""
        self.info_msg = DEFAULT_INFO_MSG

        # Script state
        self._last_script_path = ""
        self._last_script: dict = {}

        self.pending_events: list[dict] = []

    # ──────────────────────────────────────────────────────────────────────────
    # Inputs
    # ──────────────────────────────────────────────────────────────────────────

    def input_range(self, attr: str) -> tuple:
        for name, _label, lo, hi, _step in INPUT_RANGES:
            if name == attr:
                if hi is None:
                    hi = ROPE_MAX_FRACTION * self.inputs["total_height"]
                return lo, hi
        raise KeyError(f"Unknown input '{attr}'")

    def set_input(self, attr: str, value: float) -> bool:
        """Clamp and store one input. Refused (returns False) while a run is playing."""
        if self.mode == "running":
            return False
        lo, hi = self.input_range(attr)
        self.inputs[attr] = max(lo, min(hi, float(value)))
        if attr == "total_height":
            lo, hi = self.input_range("rope_length")
            self.inputs["rope_length"] = max(lo, min(hi, self.inputs["rope_length"]))
        return True

    def adjust_input(self, index: int, direction: int, fine: bool = False) -> float | None:
        """Step input ``index`` of INPUT_RANGES up (+1) or down (-1)."""
        if not 0 <= index < len(INPUT_RANGES):
            return None
        attr, _label, _lo, _hi, step = INPUT_RANGES[index]
        s = step / 10.0 if fine else step
        if not self.set_input(attr, self.inputs[attr] + direction * s):
            return None
        return self.inputs[attr]

    def get_inputs_table(self) -> list:
        """All inputs with their current value and (possibly dynamic) bounds."""
        result = []
        for attr, label, _lo, _hi, step in INPUT_RANGES:
            lo, hi = self.input_range(attr)
            result.append({
                "attr": attr, "label": label,
                "value": round(self.inputs[attr], 6),
                "min": lo, "max": round(hi, 6), "step": step,
            })
        return result

    def apply_preset(self, key: str) -> bool:
        """Load a named jump configuration (parameters only)."""
        if self.mode == "running":
            return False
        if key not in PRESETS:
            self.status_msg = f"Unknown preset '{key}'."
            return False
        fn, label = PRESETS[key]
        preset = fn(damping=self.inputs["damping"], duration=self.inputs["duration"], run=False)
        # total_height first so the rope bound is already widened
        for attr in ("total_height", "jumper_mass", "rope_length", "spring_constant"):
            self.set_input(attr, preset["inputs"][attr])
        self.info_msg = f"Preset {label}"
        self.status_msg = "Preset loaded. Press Start."
        return True

    def build_parameters(self) -> PhysicalParameters:
        """Freeze the current inputs into a run snapshot."""
        return PhysicalParameters(
            total_height=self.inputs["total_height"],
            mass=self.inputs["jumper_mass"],
            natural_rope_length=self.inputs["rope_length"],
            spring_constant=self.inputs["spring_constant"],
            damping_coefficient=self.inputs["damping"],
        )

    def estimates(self) -> dict | None:
        try:
            return estimate_jump(self.build_parameters()).to_dict()
        except ConfigurationError:
            return None

    # ──────────────────────────────────────────────────────────────────────────
    # Runs
    # ──────────────────────────────────────────────────────────────────────────

    def simulate(self) -> Trajectory:
        """Headless: generate a trajectory from the current inputs, no playback.

        Raises ConfigurationError for invalid inputs.
        """
        params = self.build_parameters()
        return self.generator.generate(params, self.inputs["duration"])

    def start_run(self) -> bool:
        """Cancel any playback, generate a fresh trajectory and start replaying it.

        Must be called from inside a running asyncio loop.
        """
        self.driver.cancel()
        try:
            params = self.build_parameters()
            trajectory = self.generator.generate(params, self.inputs["duration"])
        except ConfigurationError as exc:
            logger.warning("Run rejected: %s", exc)
            self.mode = "idle"
            self.status_msg = f"Invalid parameters: {exc}"
            self.pending_events.append({"type": "config_error", "message": str(exc)})
            return False

        self.params = params
        self.trajectory = trajectory
        summary = trajectory.summary()
        self.pending_events.append({
            "type": "run_started",
            "count": len(trajectory),
            "params": self._params_dict(params),
            "estimates": estimate_jump(params).to_dict(),
            "summary": summary.to_dict(),
        })
        if trajectory.approximated:
            self.pending_events.append({"type": "degenerate_branch"})
        if trajectory.truncated:
            self.pending_events.append({
                "type": "truncated",
                "position": trajectory.truncation_position,
                "time": trajectory.duration,
            })

        if not len(trajectory):
            self.status_msg = "No samples generated."
            return False

        try:
            self.driver.start(trajectory, delay=self.inputs["animation_speed_ms"] / 1000.0)
        except RuntimeError as exc:
            # No running event loop: the trajectory is kept, nothing plays
            logger.warning("Playback not started: %s", exc)
            self.mode = "idle"
            self.status_msg = "Playback needs a running event loop; use simulate() headless."
            self.pending_events.append({"type": "playback_error", "message": str(exc)})
            return False

        self.mode = "running"
        self.status_msg = "Running..."
        return True

    def _on_sample(self, sample, index: int) -> None:
        count = len(self.trajectory) if self.trajectory is not None else 0
        self.pending_events.append({
            "type": "sample",
            "index": index,
            "count": count,
            "sample": sample.to_dict(),
            "g_force": self.params.g_force(sample.force),
        })
        if index + 1 >= count:
            self._on_run_finished()

    def _on_run_finished(self) -> None:
        self.mode = "idle"
        if self.trajectory is not None and self.trajectory.truncated:
            self.status_msg = "Stopped early: the jumper would pass the total height."
        else:
            self.status_msg = "Finished."
        self.pending_events.append({"type": "run_finished", "count": self.driver.index})

    def stop(self) -> None:
        if self.mode != "running":
            return
        self.driver.cancel()
        self.mode = "idle"
        self.status_msg = "Stopped."
        self.pending_events.append({"type": "run_stopped", "index": self.driver.index})

    def toggle(self) -> bool:
        """Start when idle, stop when running (single Start/Stop button)."""
        if self.mode == "running":
            self.stop()
            return False
        return self.start_run()

    def reset(self) -> None:
        self.driver.reset()
        self.trajectory = None
        self.params = None
        self.mode = "idle"
        self.status_msg = ""
        self.info_msg = DEFAULT_INFO_MSG
        self.pending_events.append({"type": "reset"})

    def key_points(self) -> dict:
        """Phase-1 terminal state and elastic-phase states at KEY_POINT_TAUS."""
        params = self.build_parameters()
        phase_one = PhaseOneModel(params)
        t1 = phase_one.duration
        phase_two = PhaseTwoModel(params, entry_velocity=phase_one.velocity(t1),
                                  exact_damping=self.generator.exact_damping)
        end = phase_one.evaluate(t1)
        points = [phase_two.evaluate(tau) for tau in KEY_POINT_TAUS]
        logger.debug("Phase 1 end t=%.3fs: pos=%.3fm vel=%.3fm/s", t1, end.position, end.velocity)
        for p in points:
            logger.debug("t=%.1fs: pos=%.1fm vel=%.1fm/s", p.time, p.position, p.velocity)
        return {
            "phase_one_end": end.to_dict(),
            "elastic": [p.to_dict() for p in points],
        }

    @staticmethod
    def _params_dict(params: PhysicalParameters) -> dict:
        return {
            "total_height": params.total_height,
            "mass": params.mass,
            "natural_rope_length": params.natural_rope_length,
            "spring_constant": params.spring_constant,
            "damping_coefficient": params.damping_coefficient,
            "gravity": params.gravity,
            "time_step": params.time_step,
        }

    # ──────────────────────────────────────────────────────────────────────────
    # JSON command surface
    # ──────────────────────────────────────────────────────────────────────────

    def get_state_json(self) -> str:
        """Current inputs, mode and estimates as compact JSON."""
        current = self.driver.current_sample
        return json.dumps({
            "mode": self.mode,
            "inputs": {k: round(v, 6) for k, v in self.inputs.items()},
            "estimates": self.estimates(),
            "index": self.driver.index,
            "current": current.to_dict() if current is not None else None,
        }, separators=(',', ':'))

    def execute_command(self, text: str) -> None:
        """Parse a JSON command string and dispatch to handlers."""
        if not text:
            logger.debug("execute_command: empty text")
            return
        text = text.replace('\r', '')
        try:
            data = json.loads(text)
        except json.JSONDecodeError as exc:
            logger.info("execute_command: JSON parse error: %s", exc)
            self.status_msg = f"JSON error: {exc}"
            return
        if not isinstance(data, dict):
            self.status_msg = "Command must be a JSON object."
            return
        cmd = str(data.get("cmd", "")).lower().strip()
        logger.debug("execute_command: cmd=%s", cmd)
        if cmd == "set":
            self._cmd_set(data)
        elif cmd == "preset":
            self.apply_preset(str(data.get("name", "")))
        elif cmd == "start":
            self.start_run()
        elif cmd == "stop":
            self.stop()
        elif cmd == "reset":
            self.reset()
        else:
            self.status_msg = f"Unknown cmd '{cmd}'. Use set/preset/start/stop/reset."

    def _cmd_set(self, data: dict) -> None:
        """set: {"cmd": "set", "inputs": {"rope_length": 30, ...}}"""
        values = data.get("inputs", {})
        if not isinstance(values, dict) or not values:
            self.status_msg = "set: 'inputs' field required."
            return
        if self.mode == "running":
            self.status_msg = "Stop the run before changing parameters."
            return
        known = {attr for attr, *_ in INPUT_RANGES}
        updated = []
        # total_height first: the rope bound depends on it
        for attr in sorted(values, key=lambda a: a != "total_height"):
            if attr not in known:
                continue
            try:
                self.set_input(attr, float(values[attr]))
            except (TypeError, ValueError):
                self.status_msg = f"set: '{attr}' must be a number."
                return
            updated.append(attr)
        self.status_msg = f"Updated {', '.join(updated)}." if updated else "set: no known inputs."

    # ──────────────────────────────────────────────────────────────────────────
    # Script system
    # ──────────────────────────────────────────────────────────────────────────

    def collect_script_files(self, scripts_dir=SCRIPTS_DIR) -> list:
        """Jump scripts available to load_script(), sorted by file name."""
        d = Path(scripts_dir)
        if not d.is_dir():
            return []
        return sorted(p for p in d.glob("*.py") if not p.name.startswith("_"))

    def list_scripts(self, scripts_dir=SCRIPTS_DIR) -> list:
        return [p.stem for p in self.collect_script_files(scripts_dir)]

    def execute_script(self, script: dict) -> bool:
        """Apply a jump script dict {"label", "inputs", "autostart"}.

        Returns False when refused (a run is playing) or when autostart
        could not start playback.
        """
        if self.mode == "running":
            self.status_msg = "Stop the run before loading a script."
            return False
        self._last_script = script
        self.driver.reset()
        self.trajectory = None

        inputs = script.get("inputs", {})
        self._cmd_set({"inputs": inputs})
        label = script.get("label", "")
        self.info_msg = f"Script {label}" if label else DEFAULT_INFO_MSG
        self.status_msg = f"Script: {len(inputs)} input(s) set."
        if script.get("autostart"):
            return self.start_run()
        return True

    def load_script(self, name: str, scripts_dir=SCRIPTS_DIR) -> bool:
        """Load a script from the scripts directory by name (file stem)."""
        for path in self.collect_script_files(scripts_dir):
            if path.stem == name:
                return self.load_script_file(path)
        self.status_msg = f"Unknown script '{name}'."
        return False

    def load_script_file(self, path) -> bool:
        """Run a .py jump script and apply the SCRIPT dict it defines."""
        path = Path(path).resolve()
        if not path.is_file():
            self.status_msg = f"Script not found: {path}"
            return False
        try:
            namespace = runpy.run_path(str(path))
        except Exception as exc:
            logger.warning("Script %s failed to load: %s", path, exc)
            self.status_msg = f"Script error in {path.name}: {exc}"
            return False
        script = namespace.get("SCRIPT")
        if not isinstance(script, dict):
            self.status_msg = f"{path.name} does not define a SCRIPT dict."
            return False
        logger.info("Loaded jump script %s", path.name)
        self._last_script_path = str(path)
        return self.execute_script(script)

    def reload_script(self) -> bool:
        """Re-run the last script (re-read from disk when it came from a file)."""
        if self._last_script_path:
            return self.load_script_file(self._last_script_path)
        if self._last_script:
            return self.execute_script(self._last_script)
        self.status_msg = "No script loaded yet. Pick one from the scripts list."
        return False
