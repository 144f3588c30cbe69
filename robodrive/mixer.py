"""
Differential drive mixer.

Turns a single speed + turn bias command into two wheel power fractions.
Pure functions only: no motor state is kept here.
"""

from robodrive.messages import (
    SPEED_MAX,
    SPEED_MIN,
    TURN_BIAS_MAX,
    TURN_BIAS_MIN,
    STOPPED_WHEELS,
    DriveCommand,
    DriveMode,
    WheelPowerPair,
)


def clamp_command(cmd: DriveCommand) -> tuple[int, int]:
    """Зажать speed и turn_bias в допустимые диапазоны."""
    speed = max(SPEED_MIN, min(SPEED_MAX, cmd.speed))
    turn_bias = max(TURN_BIAS_MIN, min(TURN_BIAS_MAX, cmd.turn_bias))
    return speed, turn_bias


def side_factors(turn_bias: int) -> tuple[float, float]:
    """
    Attenuation factors for the (left, right) wheels.

    Positive bias slows the right wheel (bears right), negative slows the left.
    """
    attenuated = max(0.0, 1.0 - abs(turn_bias) / 100.0)
    if turn_bias > 0:
        return 1.0, attenuated
    if turn_bias < 0:
        return attenuated, 1.0
    return 1.0, 1.0


def compute_wheel_powers(cmd: DriveCommand) -> WheelPowerPair:
    if cmd.mode == DriveMode.STOPPED:
        return STOPPED_WHEELS

    speed, turn_bias = clamp_command(cmd)
    magnitude = min(1.0, speed / 100.0)
    signed_speed = -magnitude if cmd.mode == DriveMode.BACKWARD else magnitude
    left_factor, right_factor = side_factors(turn_bias)

    return WheelPowerPair(left=signed_speed * left_factor, right=signed_speed * right_factor)


def needs_reversal_stop(current: DriveMode, new: DriveMode) -> bool:
    """Прямое переключение вперёд <-> назад требует торможения до нуля."""
    return {current, new} == {DriveMode.FORWARD, DriveMode.BACKWARD}
