"""
Simulated drive hardware.

Used on machines without pigpio (macOS, CI) and by the tests: sensor values
come from scripts, every call is journaled, and failures can be injected.
"""

import asyncio
import logging
from collections import deque
from collections.abc import Iterable
from typing import Any

from robodrive.errors import ActuatorError
from robodrive.hw.base import DriveHardware
from robodrive.messages import FeedbackEvent, WheelPowerPair

logger = logging.getLogger(__name__)


class SimulatedDrive(DriveHardware):
    name = "simulated"

    def __init__(
        self,
        distances: Iterable[float | Exception] = (),
        touches: Iterable[bool | Exception] = (),
        buttons: Iterable[set[str]] = (),
        default_distance_cm: float = 100.0,
        time_scale: float = 1.0,
        fail_on: Iterable[str] = (),
        max_speed: int = 900,
    ) -> None:
        """
        Args:
            distances: Очередь показаний дальномера; Exception в очереди будет брошен
            touches: Очередь показаний бампера
            buttons: Очередь наборов нажатых кнопок, по одному на опрос
            default_distance_cm: Показание, когда очередь пуста
            time_scale: Множитель для всех задержек (0 = мгновенно)
            fail_on: Имена методов, которые бросают ActuatorError
            max_speed: Нативная шкала, только для логов
        """
        self._distances: deque[float | Exception] = deque(distances)
        self._touches: deque[bool | Exception] = deque(touches)
        self._buttons: deque[set[str]] = deque(buttons)
        self.default_distance_cm = default_distance_cm
        self.time_scale = time_scale
        self.fail_on: set[str] = set(fail_on)
        self.max_speed = max_speed

        self.calls: list[tuple[Any, ...]] = []
        self.wheels = WheelPowerPair(0.0, 0.0)
        self.moving = False
        self.closed = False
        self._started = asyncio.Event()
        self._stopped = asyncio.Event()
        self._stopped.set()
        self._timer: asyncio.Task[None] | None = None

    def calls_named(self, *names: str) -> list[tuple[Any, ...]]:
        return [c for c in self.calls if c[0] in names]

    def _record(self, name: str, *args: Any) -> None:
        self.calls.append((name, *args))
        if name in self.fail_on:
            raise ActuatorError(f"simulated failure in {name}")

    def _cancel_timer(self) -> None:
        if self._timer is not None and not self._timer.done():
            self._timer.cancel()
        self._timer = None

    def _set_moving(self, moving: bool) -> None:
        self.moving = moving
        if moving:
            self._started.set()
            self._stopped.clear()
        else:
            self._stopped.set()

    async def set_wheel_power(self, left: float, right: float) -> None:
        self._record("set_wheel_power", left, right)
        self.wheels = WheelPowerPair(left, right)
        logger.debug("[SIM] wheels sp=%s", self.wheels.scaled(self.max_speed))

    async def brake_and_stop(self) -> None:
        self._record("brake_and_stop")
        self._cancel_timer()
        self._started.clear()
        self._set_moving(False)

    async def run_continuous(self) -> None:
        self._record("run_continuous")
        self._cancel_timer()
        self._set_moving(True)

    async def run_for_duration(self, duration_ms: int) -> None:
        self._record("run_for_duration", duration_ms)
        self._cancel_timer()
        self._set_moving(True)
        self._timer = asyncio.create_task(self._stop_after(duration_ms / 1000.0))

    async def _stop_after(self, seconds: float) -> None:
        await asyncio.sleep(seconds * self.time_scale)
        self._set_moving(False)

    async def _wait(self, event: asyncio.Event, timeout: float | None) -> bool:
        try:
            await asyncio.wait_for(event.wait(), timeout)
        except asyncio.TimeoutError:
            return False
        return True

    async def wait_for_motion_start(self, timeout: float | None = None) -> bool:
        self.calls.append(("wait_for_motion_start",))
        return await self._wait(self._started, timeout)

    async def wait_for_motion_stop(self, timeout: float | None = None) -> bool:
        self.calls.append(("wait_for_motion_stop",))
        return await self._wait(self._stopped, timeout)

    async def read_distance_cm(self) -> float:
        value = self._distances.popleft() if self._distances else self.default_distance_cm
        if isinstance(value, Exception):
            self.calls.append(("read_distance_cm", None))
            raise value
        self._record("read_distance_cm", value)
        return float(value)

    async def read_touch(self) -> bool:
        value = self._touches.popleft() if self._touches else False
        if isinstance(value, Exception):
            self.calls.append(("read_touch", None))
            raise value
        self._record("read_touch", value)
        return bool(value)

    async def pressed_buttons(self) -> set[str]:
        pressed = self._buttons.popleft() if self._buttons else set()
        self._record("pressed_buttons", frozenset(pressed))
        return set(pressed)

    async def feedback(self, event: FeedbackEvent) -> None:
        self._record("feedback", event.value)

    async def close(self) -> None:
        self._cancel_timer()
        self.closed = True
