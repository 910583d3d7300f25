"""
Tests for BungeeController (Layer 2) — inputs, presets, run lifecycle,
JSON command surface and jump scripts.

Runs that play back need a running loop, so those tests wrap the scenario
in asyncio.run and set the frame delay to 0 through ``ctrl.inputs``.
"""

import sys
import os
import asyncio
import json
import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from controller import BungeeController, INPUT_RANGES, KEY_POINT_TAUS
from physics import DegenerateBranchWarning
from playback import PlaybackState

SCRIPTS_DIR = os.path.join(os.path.dirname(__file__), "..", "scripts")


# ── Helpers ──────────────────────────────────────────────

def events_of(ctrl, kind):
    return [e for e in ctrl.pending_events if e["type"] == kind]


def run_to_end(ctrl):
    """Start a run at full speed and wait for playback to finish."""
    ctrl.inputs["animation_speed_ms"] = 0.0

    async def scenario():
        started = ctrl.start_run()
        await ctrl.driver.wait()
        return started

    return asyncio.run(scenario())


# ── Inputs ───────────────────────────────────────────────

class TestInputs:

    def test_defaults(self):
        ctrl = BungeeController()
        assert ctrl.inputs["total_height"] == 70.0
        assert ctrl.inputs["rope_length"] == 35.0
        assert ctrl.inputs["spring_constant"] == 140.0
        assert ctrl.inputs["damping"] == 0.1
        assert ctrl.inputs["duration"] == 15.0
        assert ctrl.mode == "idle"

    @pytest.mark.parametrize("attr,value,expected", [
        ("jumper_mass", 500.0, 150.0),
        ("jumper_mass", 1.0, 40.0),
        ("damping", -1.0, 0.0),
        ("damping", 0.9, 0.5),
        ("spring_constant", 250.0, 250.0),
        ("duration", 5.0, 10.0),
        ("total_height", 1000.0, 200.0),
    ])
    def test_set_input_clamps(self, attr, value, expected):
        ctrl = BungeeController()
        assert ctrl.set_input(attr, value)
        assert ctrl.inputs[attr] == pytest.approx(expected)

    def test_rope_limited_by_height(self):
        ctrl = BungeeController()
        ctrl.set_input("rope_length", 60.0)
        assert ctrl.inputs["rope_length"] == pytest.approx(56.0), "0.8 × 70 m"

    def test_lowering_height_reclamps_rope(self):
        ctrl = BungeeController()
        ctrl.set_input("total_height", 100.0)
        ctrl.set_input("rope_length", 70.0)
        ctrl.set_input("total_height", 50.0)
        assert ctrl.inputs["rope_length"] == pytest.approx(40.0)

    def test_unknown_input(self):
        with pytest.raises(KeyError):
            BungeeController().set_input("wind_speed", 3.0)

    def test_adjust_input(self):
        ctrl = BungeeController()
        assert ctrl.adjust_input(0, +1) == pytest.approx(75.0)
        assert ctrl.adjust_input(0, -1, fine=True) == pytest.approx(74.5)
        assert ctrl.adjust_input(len(INPUT_RANGES), +1) is None

    def test_inputs_table(self):
        table = BungeeController().get_inputs_table()
        assert [row["attr"] for row in table] == [r[0] for r in INPUT_RANGES]
        rope = next(row for row in table if row["attr"] == "rope_length")
        assert rope["max"] == pytest.approx(56.0)
        assert rope["value"] == 35.0

    def test_estimates(self):
        est = BungeeController().estimates()
        assert est["lowest_point"] == pytest.approx(59.07, abs=0.01)
        assert est["safety_margin"] == pytest.approx(10.93, abs=0.01)


# ── Presets ──────────────────────────────────────────────

class TestPresets:

    def test_apply_preset(self):
        ctrl = BungeeController()
        assert ctrl.apply_preset("high_jump")
        assert ctrl.inputs["total_height"] == 100.0
        assert ctrl.inputs["jumper_mass"] == 80.0
        assert ctrl.inputs["rope_length"] == 45.0
        assert ctrl.inputs["spring_constant"] == 160.0
        assert "Salto Alto" in ctrl.info_msg

    def test_preset_widens_rope_bound_first(self):
        ctrl = BungeeController()
        ctrl.set_input("total_height", 50.0)
        assert ctrl.apply_preset("extreme_jump")
        assert ctrl.inputs["rope_length"] == 60.0, "rope must not be clamped to 0.8 × 50 m"

    def test_unknown_preset(self):
        ctrl = BungeeController()
        assert not ctrl.apply_preset("moon_jump")
        assert "Unknown preset" in ctrl.status_msg


# ── Runs ─────────────────────────────────────────────────

class TestRuns:

    def test_simulate_headless(self):
        traj = BungeeController().simulate()
        assert len(traj) == 1501
        assert not traj.truncated

    def test_run_lifecycle_events(self):
        ctrl = BungeeController()
        ctrl.set_input("duration", 10.0)
        assert run_to_end(ctrl)

        types = [e["type"] for e in ctrl.pending_events]
        assert types[0] == "run_started"
        assert types[-1] == "run_finished"
        samples = events_of(ctrl, "sample")
        assert len(samples) == len(ctrl.trajectory) == ctrl.pending_events[0]["count"]
        assert [e["index"] for e in samples] == list(range(len(samples)))
        assert samples[0]["sample"]["phase"] == "free_fall"
        assert samples[-1]["sample"]["phase"] == "elastic"
        assert samples[0]["g_force"] == pytest.approx(1.0)
        assert ctrl.mode == "idle"
        assert ctrl.status_msg == "Finished."
        assert ctrl.driver.state is PlaybackState.COMPLETED

    def test_truncated_run_reported(self):
        ctrl = BungeeController()
        ctrl.set_input("total_height", 50.0)
        ctrl.set_input("duration", 10.0)
        run_to_end(ctrl)
        truncated = events_of(ctrl, "truncated")
        assert len(truncated) == 1
        assert truncated[0]["position"] > 50.0
        assert ctrl.status_msg.startswith("Stopped early")
        assert all(e["sample"]["position"] <= 50.0 for e in events_of(ctrl, "sample"))

    def test_stop_cancels_playback(self):
        ctrl = BungeeController()

        async def scenario():
            ctrl.inputs["animation_speed_ms"] = 10.0
            ctrl.start_run()
            await asyncio.sleep(0.05)
            ctrl.stop()
            count = len(events_of(ctrl, "sample"))
            await asyncio.sleep(0.05)
            return count

        count = asyncio.run(scenario())
        assert ctrl.mode == "idle"
        assert ctrl.status_msg == "Stopped."
        assert events_of(ctrl, "run_stopped")[0]["index"] == count
        assert len(events_of(ctrl, "sample")) == count
        assert not events_of(ctrl, "run_finished")

    def test_inputs_locked_while_running(self):
        ctrl = BungeeController()

        async def scenario():
            ctrl.start_run()
            locked = (ctrl.set_input("jumper_mass", 100.0), ctrl.apply_preset("soft_jump"))
            ctrl.stop()
            return locked

        assert asyncio.run(scenario()) == (False, False)
        assert ctrl.inputs["jumper_mass"] == 70.0
        assert ctrl.set_input("jumper_mass", 100.0)

    def test_toggle(self):
        ctrl = BungeeController()

        async def scenario():
            assert ctrl.toggle() is True
            assert ctrl.mode == "running"
            assert ctrl.toggle() is False
            assert ctrl.mode == "idle"

        asyncio.run(scenario())

    def test_start_without_event_loop_stays_idle(self):
        ctrl = BungeeController()
        assert not ctrl.start_run()
        assert ctrl.mode == "idle"
        assert ctrl.driver.state is PlaybackState.IDLE
        assert events_of(ctrl, "playback_error")
        assert ctrl.trajectory is not None, "trajectory is still generated"
        assert ctrl.set_input("jumper_mass", 80.0), "inputs must stay editable"

    def test_autostart_script_without_event_loop(self):
        ctrl = BungeeController()
        assert not ctrl.execute_script({"inputs": {"jumper_mass": 80.0}, "autostart": True})
        assert ctrl.mode == "idle"
        assert ctrl.driver.state is PlaybackState.IDLE
        assert ctrl.inputs["jumper_mass"] == 80.0
        assert ctrl.apply_preset("soft_jump")

    def test_start_command_without_event_loop(self):
        ctrl = BungeeController()
        ctrl.execute_command('{"cmd": "start"}')
        assert ctrl.mode == "idle"
        assert "event loop" in ctrl.status_msg

    def test_invalid_configuration_reported(self):
        ctrl = BungeeController()
        ctrl.inputs["rope_length"] = 80.0     # bypasses the clamp
        assert not ctrl.start_run()
        errors = events_of(ctrl, "config_error")
        assert len(errors) == 1 and "rope length" in errors[0]["message"]
        assert ctrl.mode == "idle"
        assert ctrl.trajectory is None

    def test_degenerate_damping_flagged(self):
        ctrl = BungeeController()
        ctrl.inputs["damping"] = 3.0          # above critical for m=70, k=140

        async def scenario():
            with pytest.warns(DegenerateBranchWarning):
                ctrl.start_run()
            ctrl.stop()

        asyncio.run(scenario())
        assert events_of(ctrl, "degenerate_branch")
        assert ctrl.pending_events[0]["summary"]["approximated"] is True

    def test_reset(self):
        ctrl = BungeeController()
        ctrl.set_input("duration", 10.0)
        run_to_end(ctrl)
        ctrl.pending_events.clear()
        ctrl.reset()
        assert ctrl.pending_events == [{"type": "reset"}]
        assert ctrl.trajectory is None
        assert ctrl.driver.state is PlaybackState.IDLE
        assert ctrl.driver.current_sample is None

    def test_key_points(self):
        kp = BungeeController().key_points()
        assert kp["phase_one_end"]["position"] == pytest.approx(35.0, abs=1e-6)
        assert kp["phase_one_end"]["velocity"] == pytest.approx(26.2, abs=0.01)
        assert len(kp["elastic"]) == len(KEY_POINT_TAUS)
        t1 = kp["phase_one_end"]["time"]
        for tau, point in zip(KEY_POINT_TAUS, kp["elastic"]):
            assert point["time"] == pytest.approx(t1 + tau)


# ── JSON command surface ─────────────────────────────────

class TestCommands:

    def test_state_json(self):
        state = json.loads(BungeeController().get_state_json())
        assert state["mode"] == "idle"
        assert state["inputs"]["total_height"] == 70.0
        assert state["index"] == 0
        assert state["current"] is None
        assert state["estimates"]["equilibrium"] == pytest.approx(39.905)

    def test_set_applies_height_before_rope(self):
        ctrl = BungeeController()
        ctrl.execute_command('{"cmd": "set", "inputs": {"rope_length": 70, "total_height": 100}}')
        assert ctrl.inputs["total_height"] == 100.0
        assert ctrl.inputs["rope_length"] == 70.0
        assert ctrl.status_msg == "Updated total_height, rope_length."

    def test_set_rejects_non_numbers(self):
        ctrl = BungeeController()
        ctrl.execute_command('{"cmd": "set", "inputs": {"jumper_mass": "heavy"}}')
        assert "must be a number" in ctrl.status_msg
        assert ctrl.inputs["jumper_mass"] == 70.0

    def test_set_requires_inputs(self):
        ctrl = BungeeController()
        ctrl.execute_command('{"cmd": "set"}')
        assert "'inputs' field required" in ctrl.status_msg

    def test_preset_command(self):
        ctrl = BungeeController()
        ctrl.execute_command('{"cmd": "preset", "name": "soft_jump"}')
        assert ctrl.inputs["spring_constant"] == 200.0

    def test_bad_json(self):
        ctrl = BungeeController()
        ctrl.execute_command("{not json")
        assert ctrl.status_msg.startswith("JSON error")

    def test_unknown_command(self):
        ctrl = BungeeController()
        ctrl.execute_command('{"cmd": "fly"}')
        assert ctrl.status_msg.startswith("Unknown cmd 'fly'")

    def test_reset_command(self):
        ctrl = BungeeController()
        ctrl.execute_command('{"cmd": "reset"}')
        assert events_of(ctrl, "reset")


# ── Scripts ──────────────────────────────────────────────

class TestScripts:

    def test_list_scripts(self):
        assert BungeeController().list_scripts() == ["low_platform", "reference_jump",
                                                     "undamped_jump"]

    def test_load_script_by_name(self):
        ctrl = BungeeController()

        async def scenario():
            started = ctrl.load_script("undamped_jump")
            ctrl.stop()
            return started

        assert asyncio.run(scenario())
        assert ctrl.inputs["damping"] == 0.0
        assert ctrl.inputs["duration"] == 30.0

    def test_load_unknown_script(self):
        ctrl = BungeeController()
        assert not ctrl.load_script("../server")
        assert ctrl.status_msg == "Unknown script '../server'."

    def test_script_without_script_dict(self, tmp_path):
        path = tmp_path / "empty.py"
        path.write_text("LABEL = 'nothing here'\n")
        ctrl = BungeeController()
        assert not ctrl.load_script_file(path)
        assert "does not define a SCRIPT dict" in ctrl.status_msg

    def test_script_that_raises(self, tmp_path):
        path = tmp_path / "broken.py"
        path.write_text("raise RuntimeError('boom')\n")
        ctrl = BungeeController()
        assert not ctrl.load_script_file(path)
        assert ctrl.status_msg.startswith("Script error in broken.py")

    def test_collect_script_files(self):
        files = BungeeController().collect_script_files(SCRIPTS_DIR)
        names = [f.name for f in files]
        for expected in ("low_platform.py", "reference_jump.py", "undamped_jump.py"):
            assert expected in names

    @pytest.mark.parametrize("name", ["reference_jump.py", "undamped_jump.py", "low_platform.py"])
    def test_script_loads_and_starts(self, name):
        ctrl = BungeeController()

        async def scenario():
            ctrl.load_script_file(os.path.join(SCRIPTS_DIR, name))
            mode = ctrl.mode
            ctrl.stop()
            return mode

        assert asyncio.run(scenario()) == "running"
        assert events_of(ctrl, "run_started")
        assert ctrl.info_msg.startswith("Script ")

    def test_low_platform_script_truncates(self):
        ctrl = BungeeController()

        async def scenario():
            ctrl.load_script_file(os.path.join(SCRIPTS_DIR, "low_platform.py"))
            ctrl.stop()

        asyncio.run(scenario())
        assert ctrl.inputs["total_height"] == 50.0
        assert events_of(ctrl, "truncated")

    def test_execute_script_without_autostart(self):
        ctrl = BungeeController()
        ctrl.execute_script({"label": "Stiff", "inputs": {"spring_constant": 300.0}})
        assert ctrl.inputs["spring_constant"] == 300.0
        assert ctrl.mode == "idle"
        assert ctrl.info_msg == "Script Stiff"

    def test_missing_script(self):
        ctrl = BungeeController()
        ctrl.load_script_file(os.path.join(SCRIPTS_DIR, "nope.py"))
        assert ctrl.status_msg.startswith("Script not found")

    def test_reload_without_script(self):
        ctrl = BungeeController()
        ctrl.reload_script()
        assert ctrl.status_msg.startswith("No script loaded yet")

    def test_reload_reapplies_last_script(self):
        ctrl = BungeeController()
        ctrl.execute_script({"inputs": {"jumper_mass": 90.0}})
        ctrl.set_input("jumper_mass", 50.0)
        ctrl.reload_script()
        assert ctrl.inputs["jumper_mass"] == 90.0
