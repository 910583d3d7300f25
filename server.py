"""
Bungee Jump Web Server — Layer 3 (FastAPI + WebSocket)

Serves the canvas frontend, runs playback on the server's event loop and
streams every replayed sample to browser clients over WebSocket.
"""

import asyncio
import json
import logging
import time
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI, HTTPException, WebSocket, WebSocketDisconnect
from fastapi.responses import FileResponse
from fastapi.staticfiles import StaticFiles
from pydantic import BaseModel

from controller import BungeeController
from jump_presets import DAMPING_PRESETS, DURATION_PRESETS, PRESETS, SPEED_PRESETS
from physics import GRAVITY, TIME_STEP, ConfigurationError, PhysicalParameters, estimate_jump
from trajectory import TrajectoryGenerator

logger = logging.getLogger(__name__)

STATIC_DIR = Path(__file__).parent / "static"
HOST = "0.0.0.0"
PORT = 8000

# ── Controller ──────────────────────────────────────────────────────────────

ctrl = BungeeController()


# ── Lifespan (startup/shutdown) ─────────────────────────────────────────────

@asynccontextmanager
async def lifespan(app: FastAPI):
    task = asyncio.create_task(broadcast_loop())
    yield
    ctrl.reset()
    task.cancel()


app = FastAPI(lifespan=lifespan)

clients: list[WebSocket] = []

# ── Broadcast loop ──────────────────────────────────────────────────────────

TARGET_FPS = 60
FRAME_DT = 1.0 / TARGET_FPS


async def broadcast_loop():
    """Drain controller events to every client at ~60 fps."""
    while True:
        now = time.perf_counter()

        if clients and ctrl.pending_events:
            frame_msg = _build_frame_message()
            dead: list[WebSocket] = []
            for ws in clients:
                try:
                    await ws.send_text(frame_msg)
                except Exception:
                    dead.append(ws)
            for ws in dead:
                if ws in clients:
                    clients.remove(ws)
        elif not clients:
            # Nobody listening: don't let the queue grow for the whole run
            ctrl.pending_events.clear()

        elapsed = time.perf_counter() - now
        sleep_time = FRAME_DT - elapsed
        await asyncio.sleep(sleep_time if sleep_time > 0 else 0)


def _build_frame_message() -> str:
    """Serialize drained events + controller status into one JSON frame."""
    events = list(ctrl.pending_events)
    ctrl.pending_events.clear()
    frame = {
        "type": "frame",
        "events": events,
        "mode": ctrl.mode,
        "status": ctrl.status_msg,
        "info": ctrl.info_msg,
    }
    return json.dumps(frame, separators=(',', ':'))


def _init_message() -> str:
    return json.dumps({
        "type": "init",
        "gravity": GRAVITY,
        "time_step": TIME_STEP,
        "inputs": ctrl.get_inputs_table(),
        "presets": [{"key": k, "label": label} for k, (_fn, label) in PRESETS.items()],
        "durations": [{"value": v, "label": label} for v, label in DURATION_PRESETS],
        "dampings": [{"value": v, "label": label} for v, label in DAMPING_PRESETS],
        "speeds": [{"value": v, "label": label} for v, label in SPEED_PRESETS],
        "scripts": ctrl.list_scripts(),
        "estimates": ctrl.estimates(),
        "mode": ctrl.mode,
    })


# ── REST ────────────────────────────────────────────────────────────────────

class SimulateRequest(BaseModel):
    total_height: float
    jumper_mass: float
    rope_length: float
    spring_constant: float
    damping: float = 0.1
    duration: float = 15.0
    exact_damping: bool = False


@app.get("/api/params")
async def get_params():
    return {"inputs": ctrl.get_inputs_table(), "estimates": ctrl.estimates()}


@app.post("/api/simulate")
async def simulate(req: SimulateRequest):
    """Generate a full trajectory without playback (plots, exports)."""
    try:
        params = PhysicalParameters(
            total_height=req.total_height,
            mass=req.jumper_mass,
            natural_rope_length=req.rope_length,
            spring_constant=req.spring_constant,
            damping_coefficient=req.damping,
        )
        trajectory = TrajectoryGenerator(exact_damping=req.exact_damping).generate(
            params, req.duration)
    except ConfigurationError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    return {
        "estimates": estimate_jump(params).to_dict(),
        "summary": trajectory.summary().to_dict(),
        "samples": trajectory.to_dicts(),
    }


# ── WebSocket endpoint ──────────────────────────────────────────────────────

@app.websocket("/ws")
async def websocket_endpoint(ws: WebSocket):
    await ws.accept()
    clients.append(ws)
    await ws.send_text(_init_message())

    try:
        while True:
            data = await ws.receive_text()
            try:
                msg = json.loads(data)
            except json.JSONDecodeError:
                continue
            if not isinstance(msg, dict):
                continue

            cmd = msg.get("cmd", "")
            if cmd == "set_input":
                attr = str(msg.get("attr", ""))
                try:
                    ctrl.set_input(attr, float(msg.get("value", 0.0)))
                except (KeyError, TypeError, ValueError):
                    continue
                await ws.send_text(json.dumps({
                    "type": "params",
                    "data": ctrl.get_inputs_table(),
                    "estimates": ctrl.estimates(),
                }))
            elif cmd == "adjust_param":
                idx = int(msg.get("index", 0))
                direction = int(msg.get("direction", 0))
                new_val = ctrl.adjust_input(idx, direction, fine=bool(msg.get("fine", False)))
                if new_val is not None:
                    await ws.send_text(json.dumps({
                        "type": "param_update",
                        "index": idx,
                        "value": round(new_val, 6),
                    }))
            elif cmd == "preset":
                if ctrl.apply_preset(str(msg.get("name", ""))):
                    await ws.send_text(json.dumps({
                        "type": "params",
                        "data": ctrl.get_inputs_table(),
                        "estimates": ctrl.estimates(),
                    }))
            elif cmd == "list_scripts":
                await ws.send_text(json.dumps({"type": "scripts", "data": ctrl.list_scripts()}))
            elif cmd == "load_script":
                ctrl.load_script(str(msg.get("name", "")))
                await ws.send_text(json.dumps({
                    "type": "params",
                    "data": ctrl.get_inputs_table(),
                    "estimates": ctrl.estimates(),
                }))
            elif cmd == "start":
                ctrl.start_run()
            elif cmd == "stop":
                ctrl.stop()
            elif cmd == "toggle":
                ctrl.toggle()
            elif cmd == "reset":
                ctrl.reset()
            elif cmd == "execute":
                ctrl.execute_command(msg.get("text", ""))
            elif cmd == "get_state":
                await ws.send_text(json.dumps({
                    "type": "state_json",
                    "data": ctrl.get_state_json(),
                }))
            elif cmd == "get_params":
                await ws.send_text(json.dumps({
                    "type": "params",
                    "data": ctrl.get_inputs_table(),
                    "estimates": ctrl.estimates(),
                }))
            elif cmd == "key_points":
                await ws.send_text(json.dumps({
                    "type": "key_points",
                    "data": ctrl.key_points(),
                }))
    except WebSocketDisconnect:
        pass
    finally:
        if ws in clients:
            clients.remove(ws)


# ── Static files + root route ───────────────────────────────────────────────

app.mount("/static", StaticFiles(directory=STATIC_DIR), name="static")


@app.get("/")
async def root():
    return FileResponse(STATIC_DIR / "index.html")


# ── Run with uvicorn ────────────────────────────────────────────────────────

if __name__ == "__main__":
    import uvicorn
    logging.basicConfig(level=logging.INFO,
                        format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    uvicorn.run("server:app", host=HOST, port=PORT, reload=False)
