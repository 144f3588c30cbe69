"""
Autonomous "wander and avoid obstacles" driving.

Sense-decide-act loop: cruise with speed proportional to the free distance
ahead, back up and pivot in a random direction when something is too close or
the bumper is pressed. The loop runs until a stop is requested or a button is
pressed, and always ends with a braking stop.
"""

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable

from robodrive.config import AvoidanceConfig, config
from robodrive.errors import ActuatorError
from robodrive.hw.base import DriveHardware, braking_on_exit
from robodrive.messages import AvoidanceState, DriveCommand, DriveMode, FeedbackEvent, ProximityReading
from robodrive.mixer import compute_wheel_powers

logger = logging.getLogger(__name__)

StateListener = Callable[[AvoidanceState], Awaitable[None]]

STRAIGHT_AHEAD = DriveCommand(mode=DriveMode.FORWARD, speed=100)


def cruise_duty_cycle(distance_cm: float, stop_cm: float, slow_cm: float) -> int:
    """
    Целевая мощность (0..100 %) в зависимости от расстояния.

    Линейно от 0 % на stop_cm до 100 % на slow_cm и дальше.
    """
    fraction = (min(distance_cm, slow_cm) - stop_cm) / (slow_cm - stop_cm)
    fraction = max(0.0, min(1.0, fraction))
    return int(100 * fraction)


def should_evade(reading: ProximityReading, stop_cm: float) -> bool:
    return reading.touching or reading.distance_cm < stop_cm


class AutonomousRun:
    """Handle of one autonomous run: request a stop, await the outcome."""

    def __init__(self, controller: "ObstacleAvoidanceController") -> None:
        self.controller = controller
        self._stop_requested = asyncio.Event()
        self.task: asyncio.Task[None] | None = None

    @property
    def stop_requested(self) -> bool:
        return self._stop_requested.is_set()

    @property
    def state(self) -> AvoidanceState:
        return self.controller.state

    @property
    def done(self) -> bool:
        return self.task is not None and self.task.done()

    def request_stop(self) -> None:
        self._stop_requested.set()

    async def wait(self) -> None:
        """Дождаться конца прогона; ошибка прогона пробрасывается."""
        if self.task is not None:
            await asyncio.shield(self.task)


class ObstacleAvoidanceController:
    def __init__(
        self,
        hardware: DriveHardware,
        avoidance: AvoidanceConfig | None = None,
        max_speed_sp: int | None = None,
        rng: random.Random | None = None,
        stop_timeout_s: float | None = None,
        on_state: StateListener | None = None,
    ) -> None:
        self.hw = hardware
        self.cfg = avoidance or config.avoidance
        self.max_speed_sp = max_speed_sp or config.drive.max_speed_sp
        self.rng = rng or random.Random()
        self.stop_timeout_s = stop_timeout_s
        self._on_state = on_state
        self.state = AvoidanceState.STOPPED
        self.evasions = 0

    def _fraction(self, speed_sp: int) -> float:
        return min(1.0, speed_sp / self.max_speed_sp)

    async def _set_state(self, state: AvoidanceState) -> None:
        if state == self.state:
            return
        logger.info("Auto drive: %s -> %s", self.state.value, state.value)
        self.state = state
        if self._on_state is not None:
            await self._on_state(state)

    async def _read(self) -> ProximityReading:
        distance_cm = await self.hw.read_distance_cm()
        touching = await self.hw.read_touch()
        return ProximityReading(distance_cm=distance_cm, touching=touching)

    async def _feedback(self, event: FeedbackEvent) -> None:
        try:
            await self.hw.feedback(event)
        except ActuatorError as e:
            logger.warning("Feedback %s failed: %s", event.value, e)

    async def _start_straight(self) -> None:
        wheels = compute_wheel_powers(STRAIGHT_AHEAD)
        await self.hw.set_wheel_power(wheels.left, wheels.right)
        await self.hw.run_continuous()

    async def _run_timed(self, left: float, right: float, duration_ms: int) -> None:
        await self.hw.set_wheel_power(left, right)
        await self.hw.run_for_duration(duration_ms)
        await self.hw.wait_for_motion_start(self.stop_timeout_s)
        await self.hw.wait_for_motion_stop(self.stop_timeout_s)

    async def _backup(self) -> None:
        await self.hw.brake_and_stop()
        await self.hw.wait_for_motion_stop(self.stop_timeout_s)
        await self._feedback(FeedbackEvent.EVADING_START)
        power = -self._fraction(self.cfg.backup_speed_sp)
        await self._run_timed(power, power, self.cfg.backup_duration_ms)

    async def _turn_random(self) -> None:
        # Монетка: разворот влево или вправо
        left_sign, right_sign = self.rng.choice(((-1, 1), (1, -1)))
        duration_ms = self.rng.randint(self.cfg.turn_min_ms, self.cfg.turn_max_ms)
        power = self._fraction(self.cfg.turn_speed_sp)
        logger.debug("Auto drive: pivot %s for %d ms", "left" if left_sign < 0 else "right", duration_ms)
        await self._run_timed(power * left_sign, power * right_sign, duration_ms)

    async def evade(self) -> None:
        """Отъезд назад, случайный разворот и снова прямо."""
        await self._set_state(AvoidanceState.EVADING)
        self.evasions += 1
        await self._backup()
        await self._turn_random()
        await self._feedback(FeedbackEvent.EVADING_END)
        await self._start_straight()

    async def _interrupted(self, run: AutonomousRun) -> bool:
        if run.stop_requested:
            return True
        if self.cfg.stop_on_any_button:
            pressed = await self.hw.pressed_buttons()
            if pressed:
                logger.info("Auto drive: request to exit received (%s)", ", ".join(sorted(pressed)))
                return True
        return False

    async def run(self, run: AutonomousRun) -> None:
        """Цикл автопилота. Моторы тормозятся на любом выходе, включая ошибки."""
        cfg = self.cfg
        logger.info("Auto drive: starting. Press any button to stop.")
        try:
            async with braking_on_exit(self.hw, self.stop_timeout_s):
                await self._set_state(AvoidanceState.CRUISING)
                await self._start_straight()
                while True:
                    reading = await self._read()
                    while should_evade(reading, cfg.stop_threshold_cm):
                        await self.evade()
                        reading = await self._read()
                    await self._set_state(AvoidanceState.CRUISING)

                    duty = cruise_duty_cycle(reading.distance_cm, cfg.stop_threshold_cm, cfg.slow_threshold_cm)
                    wheels = compute_wheel_powers(DriveCommand(mode=DriveMode.FORWARD, speed=duty))
                    await self.hw.set_wheel_power(wheels.left, wheels.right)

                    await asyncio.sleep(cfg.poll_interval_s)
                    if await self._interrupted(run):
                        break
        except ActuatorError as e:
            logger.error("Auto drive: aborted by actuator error: %s", e)
            raise
        finally:
            await self._set_state(AvoidanceState.STOPPED)
        logger.info("Auto drive: stopped.")
