import math
from dataclasses import dataclass
from enum import Enum
from typing import Any

from robodrive.errors import InvalidCommand

SPEED_MIN = 0
SPEED_MAX = 100
TURN_BIAS_MIN = -100
TURN_BIAS_MAX = 100


class DriveMode(str, Enum):
    STOPPED = "stopped"
    FORWARD = "forward"
    BACKWARD = "backward"


class Nudge(str, Enum):
    """Momentary moves of the simple remote."""
    FORWARD = "forward"
    BACKWARD = "backward"
    LEFT = "left"
    RIGHT = "right"


class ControlMode(str, Enum):
    """Who currently owns the motors."""

    MANUAL = "manual"
    AUTONOMOUS = "autonomous"


class AvoidanceState(str, Enum):
    CRUISING = "cruising"
    EVADING = "evading"
    STOPPED = "stopped"


class FeedbackEvent(str, Enum):
    EVADING_START = "evading-start"
    EVADING_END = "evading-end"


def _clamp(value: int, low: int, high: int) -> int:
    return max(low, min(high, value))


def _to_int(name: str, value: Any) -> int:
    if isinstance(value, bool):
        raise InvalidCommand(f"{name} must be a number, got {value!r}")
    try:
        number = float(value)
    except (TypeError, ValueError) as e:
        raise InvalidCommand(f"{name} must be a number, got {value!r}") from e
    if math.isnan(number):
        raise InvalidCommand(f"{name} must not be NaN")
    if math.isinf(number):
        number = math.copysign(1000.0, number)
    return int(round(number))


@dataclass(frozen=True)
class DriveCommand:
    mode: DriveMode = DriveMode.STOPPED
    speed: int = 0  # 0..100
    turn_bias: int = 0  # -100..100, positive bears right

    def __post_init__(self) -> None:
        object.__setattr__(self, "speed", _clamp(int(self.speed), SPEED_MIN, SPEED_MAX))
        object.__setattr__(
            self, "turn_bias", _clamp(int(self.turn_bias), TURN_BIAS_MIN, TURN_BIAS_MAX)
        )

    @classmethod
    def from_raw(cls, mode: Any = DriveMode.STOPPED, speed: Any = 0, turn_bias: Any = 0) -> "DriveCommand":
        """
        Build a command from untrusted transport values.

        Numbers are rounded and clamped into range; anything that cannot be
        read as a number (or an unknown mode) raises InvalidCommand.
        """
        try:
            drive_mode = DriveMode(mode)
        except ValueError as e:
            raise InvalidCommand(f"unknown drive mode {mode!r}") from e
        return cls(
            mode=drive_mode,
            speed=_to_int("speed", speed),
            turn_bias=_to_int("turn_bias", turn_bias),
        )

    def replace(self, **changes: Any) -> "DriveCommand":
        values = {"mode": self.mode, "speed": self.speed, "turn_bias": self.turn_bias}
        values.update({k: v for k, v in changes.items() if v is not None})
        return DriveCommand.from_raw(**values)


@dataclass(frozen=True)
class WheelPowerPair:
    left: float  # -1..1, fraction of max rated wheel speed
    right: float

    def scaled(self, max_speed: int) -> tuple[int, int]:
        """Перевод в нативные единицы привода (например, 900 для EV3)."""
        return int(self.left * max_speed), int(self.right * max_speed)


STOPPED_WHEELS = WheelPowerPair(0.0, 0.0)


@dataclass(frozen=True)
class ProximityReading:
    distance_cm: float
    touching: bool = False


@dataclass
class RobotState:
    control: ControlMode
    command: DriveCommand
    wheels: WheelPowerPair = STOPPED_WHEELS
    avoidance: AvoidanceState | None = None
    last_error: str | None = None

    def as_dict(self) -> dict[str, Any]:
        return {
            "control": self.control.value,
            "mode": self.command.mode.value,
            "speed": self.command.speed,
            "turn_bias": self.command.turn_bias,
            "wheels": {"left": self.wheels.left, "right": self.wheels.right},
            "avoidance": self.avoidance.value if self.avoidance else None,
            "last_error": self.last_error,
        }
