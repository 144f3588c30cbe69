"""
Drive hardware on a Raspberry Pi via pigpio.

Two DC motors on an L298N-style H-bridge, an HC-SR04 ultrasonic range finder,
a bumper switch, push buttons, two LEDs and a passive buzzer.
There are no wheel encoders: motion state is the commanded state, and a
braking stop counts as finished after brake_settle_s.
"""

import asyncio
import logging
from collections.abc import Callable
from typing import Any, Optional, TYPE_CHECKING

from robodrive.config import HardwareConfig, config
from robodrive.errors import ActuatorError
from robodrive.hw.base import DriveHardware
from robodrive.messages import FeedbackEvent

try:
    import pigpio  # type: ignore[import-not-found]
    PIGPIO_AVAILABLE = True
except ImportError:
    pigpio = None  # type: ignore[assignment]
    PIGPIO_AVAILABLE = False

if TYPE_CHECKING:
    _Pi = pigpio.pi
else:
    _Pi = object

logger = logging.getLogger(__name__)

# Скорость звука: 1 см туда-обратно ~ 58 мкс
_US_PER_CM = 58.0

# Три гудка по 500 мс с паузой 500 мс, как при сдаче назад
_REVERSING_TONES = ((1000, 0.5, 0.5),) * 3


def _connect() -> "_Pi":
    if not PIGPIO_AVAILABLE or pigpio is None:
        raise ActuatorError("pigpio is not available on this platform")
    pi = pigpio.pi()
    if not pi.connected:
        raise ActuatorError("Cannot connect to pigpiod. Is it running? (sudo systemctl start pigpiod)")
    return pi


class PigpioDrive(DriveHardware):
    name = "pigpio"

    def __init__(self, hw_config: HardwareConfig | None = None, pi: Optional["_Pi"] = None) -> None:
        self.cfg = hw_config or config.hardware
        self._pi = pi if pi is not None else _connect()
        self._power = (0.0, 0.0)
        self._running = False
        self._started = asyncio.Event()
        self._stopped = asyncio.Event()
        self._stopped.set()
        self._timer: asyncio.Task[None] | None = None
        self._fault: ActuatorError | None = None
        self._setup_pins()

    def _call(self, fn: Callable[..., Any], *args: Any) -> Any:
        """Вызов pigpio с переводом ошибок в ActuatorError."""
        try:
            return fn(*args)
        except (OSError, pigpio.error) as e:
            raise ActuatorError(f"pigpio {fn.__name__}{args} failed: {e}") from e

    def _setup_pins(self) -> None:
        cfg = self.cfg
        pi = self._pi
        for pin in (cfg.left_in1_pin, cfg.left_in2_pin, cfg.right_in1_pin, cfg.right_in2_pin,
                    cfg.red_led_pin, cfg.green_led_pin, cfg.ultrasonic_trigger_pin):
            self._call(pi.set_mode, pin, pigpio.OUTPUT)
            self._call(pi.write, pin, 0)
        for pin in (cfg.left_pwm_pin, cfg.right_pwm_pin):
            self._call(pi.set_mode, pin, pigpio.OUTPUT)
            self._call(pi.set_PWM_frequency, pin, cfg.pwm_frequency)
            self._call(pi.set_PWM_range, pin, cfg.pwm_range)
            self._call(pi.set_PWM_dutycycle, pin, 0)
        for pin in (cfg.touch_pin, *cfg.button_pins.values()):
            self._call(pi.set_mode, pin, pigpio.INPUT)
            self._call(pi.set_pull_up_down, pin, pigpio.PUD_UP)
        self._call(pi.set_mode, cfg.ultrasonic_echo_pin, pigpio.INPUT)
        self._call(pi.write, cfg.green_led_pin, 1)

    # --- моторы ---------------------------------------------------------

    def _drive_wheel(self, pwm_pin: int, in1: int, in2: int, power: float) -> None:
        forward, backward = (1, 0) if power > 0 else (0, 1) if power < 0 else (0, 0)
        self._call(self._pi.write, in1, forward)
        self._call(self._pi.write, in2, backward)
        duty = int(round(min(1.0, abs(power)) * self.cfg.pwm_range))
        self._call(self._pi.set_PWM_dutycycle, pwm_pin, duty)

    def _apply_power(self) -> None:
        cfg = self.cfg
        left, right = self._power
        self._drive_wheel(cfg.left_pwm_pin, cfg.left_in1_pin, cfg.left_in2_pin, left)
        self._drive_wheel(cfg.right_pwm_pin, cfg.right_in1_pin, cfg.right_in2_pin, right)

    def _brake(self) -> None:
        cfg = self.cfg
        # Оба входа моста в 1 при полном EN - короткое замыкание обмоток
        for pwm_pin, in1, in2 in ((cfg.left_pwm_pin, cfg.left_in1_pin, cfg.left_in2_pin),
                                  (cfg.right_pwm_pin, cfg.right_in1_pin, cfg.right_in2_pin)):
            self._call(self._pi.write, in1, 1)
            self._call(self._pi.write, in2, 1)
            self._call(self._pi.set_PWM_dutycycle, pwm_pin, cfg.pwm_range)

    def _cancel_timer(self) -> None:
        if self._timer is not None and not self._timer.done():
            self._timer.cancel()
        self._timer = None

    def _mark_running(self) -> None:
        self._running = True
        self._started.set()
        self._stopped.clear()

    async def _settle(self, delay_s: float) -> None:
        """Через delay_s тормозим и ещё через brake_settle_s считаем, что стоим."""
        if delay_s > 0:
            await asyncio.sleep(delay_s)
            try:
                self._brake()
            except ActuatorError as e:
                logger.error("Timed run: brake failed: %s", e)
                self._fault = e
        await asyncio.sleep(self.cfg.brake_settle_s)
        self._running = False
        self._stopped.set()

    async def set_wheel_power(self, left: float, right: float) -> None:
        self._power = (left, right)
        if self._running:
            self._apply_power()
        logger.debug("[DRIVE] power left=%.2f right=%.2f", left, right)

    async def brake_and_stop(self) -> None:
        self._cancel_timer()
        self._started.clear()
        self._brake()
        self._timer = asyncio.create_task(self._settle(0.0))

    async def run_continuous(self) -> None:
        self._cancel_timer()
        self._apply_power()
        self._mark_running()

    async def run_for_duration(self, duration_ms: int) -> None:
        self._cancel_timer()
        self._apply_power()
        self._mark_running()
        self._timer = asyncio.create_task(self._settle(duration_ms / 1000.0))

    async def _wait(self, event: asyncio.Event, timeout: float | None) -> bool:
        try:
            await asyncio.wait_for(event.wait(), timeout)
        except asyncio.TimeoutError:
            return False
        return True

    async def wait_for_motion_start(self, timeout: float | None = None) -> bool:
        return await self._wait(self._started, timeout)

    async def wait_for_motion_stop(self, timeout: float | None = None) -> bool:
        stopped = await self._wait(self._stopped, timeout)
        fault, self._fault = self._fault, None
        if fault is not None:
            raise fault
        return stopped

    # --- датчики --------------------------------------------------------

    async def read_distance_cm(self) -> float:
        cfg = self.cfg
        loop = asyncio.get_running_loop()
        echo: asyncio.Future[int] = loop.create_future()
        rise_tick: list[int] = []

        def _resolve(width_us: int) -> None:
            if not echo.done():
                echo.set_result(width_us)

        # Колбэк pigpio приходит из его потока
        def _on_edge(gpio: int, level: int, tick: int) -> None:
            if level == 1:
                rise_tick[:] = [tick]
            elif level == 0 and rise_tick:
                loop.call_soon_threadsafe(_resolve, pigpio.tickDiff(rise_tick[0], tick))

        cb = self._call(self._pi.callback, cfg.ultrasonic_echo_pin, pigpio.EITHER_EDGE, _on_edge)
        try:
            self._call(self._pi.gpio_trigger, cfg.ultrasonic_trigger_pin, 10, 1)
            try:
                width_us = await asyncio.wait_for(echo, cfg.echo_timeout_s)
            except asyncio.TimeoutError as e:
                raise ActuatorError("ultrasonic sensor: no echo") from e
        finally:
            cb.cancel()
        return width_us / _US_PER_CM

    async def read_touch(self) -> bool:
        return self._call(self._pi.read, self.cfg.touch_pin) == 0

    async def pressed_buttons(self) -> set[str]:
        return {
            name for name, pin in self.cfg.button_pins.items()
            if self._call(self._pi.read, pin) == 0
        }

    # --- индикация ------------------------------------------------------

    async def feedback(self, event: FeedbackEvent) -> None:
        cfg = self.cfg
        if event == FeedbackEvent.EVADING_START:
            for frequency, on_s, off_s in _REVERSING_TONES:
                self._call(self._pi.set_PWM_frequency, cfg.buzzer_pin, frequency)
                self._call(self._pi.set_PWM_dutycycle, cfg.buzzer_pin, 128)
                await asyncio.sleep(on_s)
                self._call(self._pi.set_PWM_dutycycle, cfg.buzzer_pin, 0)
                await asyncio.sleep(off_s)
            self._call(self._pi.write, cfg.green_led_pin, 0)
            self._call(self._pi.write, cfg.red_led_pin, 1)
        elif event == FeedbackEvent.EVADING_END:
            self._call(self._pi.write, cfg.red_led_pin, 0)
            self._call(self._pi.write, cfg.green_led_pin, 1)

    async def close(self) -> None:
        """Освобождение ресурсов при выключении"""
        self._cancel_timer()
        cfg = self.cfg
        for pin in (cfg.left_pwm_pin, cfg.right_pwm_pin, cfg.buzzer_pin):
            self._call(self._pi.set_PWM_dutycycle, pin, 0)
        for pin in (cfg.left_in1_pin, cfg.left_in2_pin, cfg.right_in1_pin, cfg.right_in2_pin,
                    cfg.red_led_pin, cfg.green_led_pin):
            self._call(self._pi.write, pin, 0)
        self._pi.stop()
