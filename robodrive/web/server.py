import json
import logging
from pathlib import Path
from typing import Any

from fastapi import FastAPI, Request, WebSocket, WebSocketDisconnect
from fastapi.responses import FileResponse, JSONResponse
from fastapi.staticfiles import StaticFiles
from pydantic import BaseModel, Field

from robodrive.config import config
from robodrive.errors import ActuatorError, DriveBusyError, DriveError, InvalidCommand
from robodrive.hw import create_drive_hardware
from robodrive.messages import ControlMode, DriveCommand, Nudge
from robodrive.nodes.drive import DriveNode

logger = logging.getLogger(__name__)

STATIC_DIR = Path(__file__).resolve().parent / "static"

app = FastAPI()
app.mount("/static", StaticFiles(directory=STATIC_DIR), name="static")

drive_node = DriveNode(create_drive_hardware())


def _error(status_code: int, exc: Exception) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": type(exc).__name__, "detail": str(exc)})


@app.exception_handler(InvalidCommand)
async def on_invalid_command(request: Request, exc: InvalidCommand) -> JSONResponse:
    return _error(422, exc)


@app.exception_handler(DriveBusyError)
async def on_drive_busy(request: Request, exc: DriveBusyError) -> JSONResponse:
    return _error(409, exc)


@app.exception_handler(ActuatorError)
async def on_actuator_error(request: Request, exc: ActuatorError) -> JSONResponse:
    return _error(503, exc)


@app.on_event("startup")
async def on_startup() -> None:
    await drive_node.start()
    logger.info("Drive hardware: %s", drive_node.hw.name)


@app.on_event("shutdown")
async def on_shutdown() -> None:
    # Make sure motors get stopped on exit
    await drive_node.shutdown()


@app.get("/health")
async def health() -> dict[str, str]:
    return {"status": "ok"}


@app.get("/")
async def index() -> FileResponse:
    return FileResponse(STATIC_DIR / "index.html")


@app.get("/api/config")
async def get_config() -> dict[str, Any]:
    """Получить конфигурацию для фронтенда"""
    return {
        "drive": {
            "max_speed_sp": config.drive.max_speed_sp,
        },
        "avoidance": {
            "stop_threshold_cm": config.avoidance.stop_threshold_cm,
            "slow_threshold_cm": config.avoidance.slow_threshold_cm,
            "poll_interval_s": config.avoidance.poll_interval_s,
        },
    }


@app.get("/api/state")
async def get_state() -> dict[str, Any]:
    return drive_node.snapshot().as_dict()


class ModeData(BaseModel):
    mode: str


class SpeedData(BaseModel):
    speed: float


class DirectionData(BaseModel):
    direction: float


class CommandData(BaseModel):
    mode: str = "stopped"
    speed: float = Field(0, description="0..100, зажимается")
    turn_bias: float = Field(0, description="-100..100, зажимается")


@app.post("/mode")
async def set_mode(data: ModeData) -> dict[str, Any]:
    """Переключение передачи: stopped / forward / backward."""
    await drive_node.update(mode=DriveCommand.from_raw(mode=data.mode).mode)
    return drive_node.snapshot().as_dict()


@app.post("/speed")
async def set_speed(data: SpeedData) -> dict[str, Any]:
    await drive_node.update(speed=DriveCommand.from_raw(speed=data.speed).speed)
    return drive_node.snapshot().as_dict()


@app.post("/direction")
async def set_direction(data: DirectionData) -> dict[str, Any]:
    await drive_node.update(turn_bias=DriveCommand.from_raw(turn_bias=data.direction).turn_bias)
    return drive_node.snapshot().as_dict()


@app.post("/api/command")
async def apply_command(data: CommandData) -> dict[str, Any]:
    cmd = DriveCommand.from_raw(mode=data.mode, speed=data.speed, turn_bias=data.turn_bias)
    await drive_node.apply_command(cmd)
    return drive_node.snapshot().as_dict()


@app.post("/move/{direction}")
async def move(direction: str) -> dict[str, Any]:
    """Толчок вперёд или назад, как кнопки простого пульта."""
    if direction not in (Nudge.FORWARD.value, Nudge.BACKWARD.value):
        raise InvalidCommand(f"unknown move direction {direction!r}")
    await drive_node.nudge(Nudge(direction))
    return drive_node.snapshot().as_dict()


@app.post("/turn/{side}")
async def turn(side: str) -> dict[str, Any]:
    if side not in (Nudge.LEFT.value, Nudge.RIGHT.value):
        raise InvalidCommand(f"unknown turn side {side!r}")
    await drive_node.nudge(Nudge(side))
    return drive_node.snapshot().as_dict()


@app.post("/api/auto/start")
async def auto_start() -> dict[str, Any]:
    await drive_node.start_autonomous()
    return drive_node.snapshot().as_dict()


@app.post("/api/auto/stop")
async def auto_stop() -> dict[str, Any]:
    await drive_node.stop_autonomous()
    return drive_node.snapshot().as_dict()


@app.post("/api/emergency_stop")
async def emergency_stop() -> dict[str, Any]:
    await drive_node.emergency_stop()
    return drive_node.snapshot().as_dict()


async def _handle_control_message(msg: dict[str, Any]) -> None:
    bus = drive_node.bus
    msg_type = msg.get("type")
    if msg_type == "drive":
        drive_cmd = DriveCommand.from_raw(
            mode=msg.get("mode", "stopped"),
            speed=msg.get("speed", 0),
            turn_bias=msg.get("turn_bias", 0),
        )
        await bus.publish_drive_cmd(drive_cmd)

    elif msg_type == "auto":
        enabled = msg.get("enabled")
        if not isinstance(enabled, bool):
            raise InvalidCommand('"enabled" must be true or false')
        await bus.publish_auto(enabled)

    elif msg_type == "emergency_stop":
        await drive_node.emergency_stop()

    else:
        raise InvalidCommand(f"unknown message type {msg_type!r}")


@app.websocket("/ws/control")
async def ws_control(ws: WebSocket) -> None:
    await ws.accept()
    try:
        while True:
            msg_text = await ws.receive_text()
            try:
                msg = json.loads(msg_text)
                if not isinstance(msg, dict):
                    raise InvalidCommand("message must be a JSON object")
                await _handle_control_message(msg)
            except json.JSONDecodeError as e:
                await ws.send_json({"type": "error", "error": "InvalidCommand", "detail": str(e)})
                continue
            except DriveError as e:
                await ws.send_json({"type": "error", "error": type(e).__name__, "detail": str(e)})
                continue
            await ws.send_json({"type": "state", **drive_node.snapshot().as_dict()})

    except WebSocketDisconnect:
        # Оператор пропал: ручное движение останавливаем, автопилот не трогаем
        if drive_node.control_mode == ControlMode.MANUAL:
            await drive_node.bus.publish_drive_cmd(DriveCommand())
