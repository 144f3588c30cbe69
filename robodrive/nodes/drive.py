import asyncio
import logging
import random

from robodrive import event_bus
from robodrive.bus import TOPIC_DRIVE_AUTO, TOPIC_DRIVE_CMD, EventBus
from robodrive.config import AvoidanceConfig, DriveConfig, config
from robodrive.errors import ActuatorError, DriveBusyError
from robodrive.hw.base import DriveHardware, brake_and_wait
from robodrive.messages import (
    STOPPED_WHEELS,
    AvoidanceState,
    ControlMode,
    DriveCommand,
    DriveMode,
    Nudge,
    RobotState,
    WheelPowerPair,
)
from robodrive.mixer import compute_wheel_powers, needs_reversal_stop
from robodrive.nodes.avoidance import AutonomousRun, ObstacleAvoidanceController

logger = logging.getLogger(__name__)


def _note_run_result(task: "asyncio.Task[None]") -> None:
    # Ошибка уже залогирована и лежит в last_error; run.wait() бросит её снова
    if not task.cancelled() and task.exception() is not None:
        logger.debug("Autonomous run finished with %r", task.exception())


class DriveNode:
    """
    Единственный владелец моторов.

    Ручные команды и автономный прогон исключают друг друга: команда
    применяется целиком под одной блокировкой, а пока идёт автопилот,
    ручные команды отклоняются с DriveBusyError.
    """

    def __init__(
        self,
        hardware: DriveHardware,
        bus: EventBus | None = None,
        drive_config: DriveConfig | None = None,
        avoidance_config: AvoidanceConfig | None = None,
        rng: random.Random | None = None,
    ) -> None:
        self.hw = hardware
        self.bus = bus or event_bus
        self.cfg = drive_config or config.drive
        self.avoidance_cfg = avoidance_config or config.avoidance
        self.rng = rng
        self._lock = asyncio.Lock()
        self._command = DriveCommand()
        self._wheels = STOPPED_WHEELS
        self._run: AutonomousRun | None = None
        self._last_error: str | None = None

    async def start(self) -> None:
        await self.bus.subscribe(TOPIC_DRIVE_CMD, self._on_drive_cmd)
        await self.bus.subscribe(TOPIC_DRIVE_AUTO, self._on_drive_auto)

    async def _on_drive_cmd(self, cmd: DriveCommand) -> None:
        await self.apply_command(cmd)

    async def _on_drive_auto(self, enabled: bool) -> None:
        if enabled:
            await self.start_autonomous()
        else:
            await self.stop_autonomous()

    @property
    def command(self) -> DriveCommand:
        return self._command

    @property
    def wheels(self) -> WheelPowerPair:
        return self._wheels

    @property
    def autonomous_run(self) -> AutonomousRun | None:
        if self._run is not None and not self._run.done:
            return self._run
        return None

    @property
    def control_mode(self) -> ControlMode:
        return ControlMode.AUTONOMOUS if self.autonomous_run else ControlMode.MANUAL

    def snapshot(self) -> RobotState:
        run = self.autonomous_run
        return RobotState(
            control=self.control_mode,
            command=self._command,
            wheels=self._wheels,
            avoidance=run.state if run else None,
            last_error=self._last_error,
        )

    async def _publish(self) -> None:
        await self.bus.publish_state(self.snapshot())

    async def _stop_motors(self) -> None:
        await brake_and_wait(self.hw, self.cfg.stop_wait_timeout_s)

    # --- ручное управление ---------------------------------------------

    def _ensure_manual(self) -> None:
        if self.autonomous_run is not None:
            raise DriveBusyError("autonomous run in progress; stop it first")

    async def apply_command(self, cmd: DriveCommand) -> WheelPowerPair:
        """
        Применить команду: зажать, смешать, отдать моторам.

        При ошибке железа моторы тормозятся, команда сбрасывается в STOPPED,
        а ActuatorError уходит вызывающему.
        """
        async with self._lock:
            wheels = await self._apply_locked(cmd)
        await self._publish()
        return wheels

    async def update(
        self,
        mode: DriveMode | None = None,
        speed: int | None = None,
        turn_bias: int | None = None,
    ) -> WheelPowerPair:
        """Изменить одно или несколько полей текущей команды."""
        async with self._lock:
            # Текущую команду читаем под той же блокировкой, что и применяем
            cmd = self._command.replace(mode=mode, speed=speed, turn_bias=turn_bias)
            wheels = await self._apply_locked(cmd)
        await self._publish()
        return wheels

    async def _apply_locked(self, cmd: DriveCommand) -> WheelPowerPair:
        self._ensure_manual()
        wheels = compute_wheel_powers(cmd)
        try:
            if needs_reversal_stop(self._command.mode, cmd.mode):
                logger.info("Direction change %s -> %s: braking first", self._command.mode.value, cmd.mode.value)
                await self._stop_motors()

            await self.hw.set_wheel_power(wheels.left, wheels.right)
            if cmd.mode == DriveMode.STOPPED:
                await self._stop_motors()
            else:
                await self.hw.run_continuous()
        except ActuatorError as e:
            await self._fail_safe(e)
            raise

        self._command = cmd
        self._wheels = wheels
        self._last_error = None
        logger.debug("Applied %s -> %s", cmd, wheels)
        return wheels

    def _nudge_plan(self, move: Nudge) -> tuple[WheelPowerPair, int]:
        if move == Nudge.FORWARD:
            return WheelPowerPair(1.0, 1.0), self.cfg.nudge_move_ms
        if move == Nudge.BACKWARD:
            return WheelPowerPair(-1.0, -1.0), self.cfg.nudge_move_ms
        turn = self.cfg.nudge_turn_speed_sp / self.cfg.max_speed_sp
        if move == Nudge.LEFT:
            return WheelPowerPair(-turn, turn), self.cfg.nudge_turn_ms
        return WheelPowerPair(turn, -turn), self.cfg.nudge_turn_ms

    async def nudge(self, move: Nudge) -> WheelPowerPair:
        """
        Короткий толчок: проехать или повернуть на месте и остановиться.

        Вызов возвращается, когда колёса уже стоят. Живая команда после
        толчка - STOPPED.
        """
        wheels, duration_ms = self._nudge_plan(move)
        async with self._lock:
            self._ensure_manual()
            try:
                if self._command.mode != DriveMode.STOPPED:
                    await self._stop_motors()
                self._command = DriveCommand()
                self._wheels = STOPPED_WHEELS
                await self.hw.set_wheel_power(wheels.left, wheels.right)
                await self.hw.run_for_duration(duration_ms)
                await self.hw.wait_for_motion_start(self.cfg.stop_wait_timeout_s)
                await self.hw.wait_for_motion_stop(self.cfg.stop_wait_timeout_s)
            except ActuatorError as e:
                await self._fail_safe(e)
                raise
            self._last_error = None
            logger.info("Nudge %s: %s for %d ms", move.value, wheels, duration_ms)
        await self._publish()
        return wheels

    async def _fail_safe(self, error: ActuatorError) -> None:
        logger.error("Drive command failed: %s", error)
        self._last_error = str(error)
        self._command = DriveCommand()
        self._wheels = STOPPED_WHEELS
        try:
            await self._stop_motors()
        except ActuatorError as stop_error:
            logger.error("Safety stop after failure also failed: %s", stop_error)

    # --- автопилот -----------------------------------------------------

    async def start_autonomous(self) -> AutonomousRun:
        async with self._lock:
            if self.autonomous_run is not None:
                raise DriveBusyError("autonomous run already active")
            if self._command.mode != DriveMode.STOPPED:
                await self._stop_motors()
            self._command = DriveCommand()
            self._wheels = STOPPED_WHEELS
            self._last_error = None

            controller = ObstacleAvoidanceController(
                self.hw,
                avoidance=self.avoidance_cfg,
                max_speed_sp=self.cfg.max_speed_sp,
                rng=self.rng,
                stop_timeout_s=self.cfg.stop_wait_timeout_s,
                on_state=self._on_avoidance_state,
            )
            run = AutonomousRun(controller)
            run.task = asyncio.create_task(self._supervise(run), name="autonomous-run")
            run.task.add_done_callback(_note_run_result)
            self._run = run
        return run

    async def _on_avoidance_state(self, state: AvoidanceState) -> None:
        await self._publish()

    async def _supervise(self, run: AutonomousRun) -> None:
        try:
            await run.controller.run(run)
        except ActuatorError as e:
            self._last_error = str(e)
            raise
        finally:
            self._command = DriveCommand()
            self._wheels = STOPPED_WHEELS
            # Задача ещё не завершена, поэтому снимаем прогон явно
            self._run = None
            await self._publish()

    async def request_stop(self, run: AutonomousRun) -> None:
        """Попросить прогон остановиться и дождаться торможения."""
        run.request_stop()
        if run.task is not None:
            await asyncio.wait({run.task})

    async def stop_autonomous(self) -> None:
        run = self.autonomous_run
        if run is not None:
            await self.request_stop(run)

    async def emergency_stop(self) -> None:
        """Остановить всё: автопилот, если есть, и моторы."""
        logger.warning("Emergency stop")
        await self.stop_autonomous()
        await self.apply_command(DriveCommand())

    async def shutdown(self) -> None:
        await self.emergency_stop()
        await self.hw.close()
