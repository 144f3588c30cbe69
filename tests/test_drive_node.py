"""Тесты узла управления моторами: ручной режим, автопилот, блокировки."""

import asyncio

import pytest

from robodrive.bus import EventBus
from robodrive.config import AvoidanceConfig
from robodrive.errors import ActuatorError, DriveBusyError, InvalidCommand
from robodrive.hw.simulated import SimulatedDrive
from robodrive.messages import ControlMode, DriveCommand, DriveMode, Nudge, RobotState, WheelPowerPair
from robodrive.nodes.drive import DriveNode

FAST = AvoidanceConfig(poll_interval_s=0.001)


class _SlowDrive(SimulatedDrive):
    """Симулятор, который уступает управление внутри команды."""

    async def set_wheel_power(self, left: float, right: float) -> None:
        await super().set_wheel_power(left, right)
        await asyncio.sleep(0.01)


def _node(sim: SimulatedDrive | None = None, bus: EventBus | None = None) -> DriveNode:
    return DriveNode(sim or SimulatedDrive(time_scale=0.0), bus=bus or EventBus(), avoidance_config=FAST)


def test_apply_forward_command() -> None:
    sim = SimulatedDrive(time_scale=0.0)
    node = _node(sim)

    wheels = asyncio.run(node.apply_command(DriveCommand(DriveMode.FORWARD, speed=50)))

    assert wheels == WheelPowerPair(0.5, 0.5)
    assert sim.calls == [("set_wheel_power", 0.5, 0.5), ("run_continuous",)]
    assert node.command == DriveCommand(DriveMode.FORWARD, speed=50)
    assert sim.moving


@pytest.mark.parametrize(
    "first,second,power",
    [(DriveMode.FORWARD, DriveMode.BACKWARD, -1.0), (DriveMode.BACKWARD, DriveMode.FORWARD, 1.0)],
)
def test_direct_reversal_brakes_and_waits_first(first: DriveMode, second: DriveMode, power: float) -> None:
    """Смена направления без STOPPED: сначала тормоз и ожидание остановки."""
    sim = SimulatedDrive(time_scale=0.0)
    node = _node(sim)

    async def _run_test() -> None:
        await node.apply_command(DriveCommand(first, speed=100))
        sim.calls.clear()
        await node.apply_command(DriveCommand(second, speed=100))

    asyncio.run(_run_test())

    assert sim.calls == [
        ("brake_and_stop",),
        ("wait_for_motion_stop",),
        ("set_wheel_power", power, power),
        ("run_continuous",),
    ]


def test_reversal_through_stopped_needs_no_extra_brake() -> None:
    sim = SimulatedDrive(time_scale=0.0)
    node = _node(sim)

    async def _run_test() -> None:
        await node.apply_command(DriveCommand(DriveMode.BACKWARD, speed=30))
        await node.apply_command(DriveCommand(DriveMode.STOPPED, speed=30))
        sim.calls.clear()
        await node.apply_command(DriveCommand(DriveMode.FORWARD, speed=30))

    asyncio.run(_run_test())

    assert sim.calls_named("brake_and_stop") == []
    assert sim.calls[-1] == ("run_continuous",)


def test_stopped_command_brakes_and_waits() -> None:
    sim = SimulatedDrive(time_scale=0.0)
    node = _node(sim)

    async def _run_test() -> None:
        await node.apply_command(DriveCommand(DriveMode.FORWARD, speed=70, turn_bias=20))
        sim.calls.clear()
        await node.apply_command(DriveCommand(DriveMode.STOPPED, speed=70, turn_bias=20))

    asyncio.run(_run_test())

    assert sim.calls == [("set_wheel_power", 0.0, 0.0), ("brake_and_stop",), ("wait_for_motion_stop",)]
    assert not sim.moving


def test_partial_updates_keep_other_fields() -> None:
    """Как в пульте: передача, скорость и руль меняются по отдельности."""
    node = _node()

    async def _run_test() -> WheelPowerPair:
        await node.update(mode=DriveMode.FORWARD)
        await node.update(speed=100)
        return await node.update(turn_bias=50)

    wheels = asyncio.run(_run_test())

    assert node.command == DriveCommand(DriveMode.FORWARD, speed=100, turn_bias=50)
    assert wheels == WheelPowerPair(1.0, 0.5)


def test_concurrent_commands_do_not_interleave() -> None:
    """Две команды одновременно: каждая применяется целиком."""
    sim = _SlowDrive(time_scale=0.0)
    node = _node(sim)

    async def _run_test() -> None:
        await asyncio.gather(
            node.apply_command(DriveCommand(DriveMode.FORWARD, speed=20)),
            node.apply_command(DriveCommand(DriveMode.FORWARD, speed=80)),
        )

    asyncio.run(_run_test())

    assert sim.calls == [
        ("set_wheel_power", 0.2, 0.2),
        ("run_continuous",),
        ("set_wheel_power", 0.8, 0.8),
        ("run_continuous",),
    ]
    assert node.command.speed == 80


def test_concurrent_partial_updates_are_not_lost() -> None:
    """Скорость и руль одновременно: обе правки попадают в итоговую команду."""
    sim = _SlowDrive(time_scale=0.0)
    node = _node(sim)

    async def _run_test() -> None:
        await node.apply_command(DriveCommand(DriveMode.FORWARD, speed=20))
        await asyncio.gather(node.update(speed=60), node.update(turn_bias=-50))

    asyncio.run(_run_test())

    assert node.command == DriveCommand(DriveMode.FORWARD, speed=60, turn_bias=-50)
    assert sim.calls_named("set_wheel_power")[-1] == ("set_wheel_power", 0.3, 0.6)


def test_invalid_partial_update_releases_lock() -> None:
    node = _node()

    async def _run_test() -> WheelPowerPair:
        with pytest.raises(InvalidCommand):
            await node.update(speed="fast")
        return await node.update(mode=DriveMode.FORWARD, speed=10)

    assert asyncio.run(_run_test()) == WheelPowerPair(0.1, 0.1)


def test_actuator_error_brakes_and_resets_command() -> None:
    sim = SimulatedDrive(time_scale=0.0, fail_on={"run_continuous"})
    node = _node(sim)

    with pytest.raises(ActuatorError):
        asyncio.run(node.apply_command(DriveCommand(DriveMode.FORWARD, speed=50)))

    assert sim.calls[-2:] == [("brake_and_stop",), ("wait_for_motion_stop",)]
    assert node.command == DriveCommand()
    assert node.snapshot().last_error == "simulated failure in run_continuous"


def test_node_recovers_after_actuator_error() -> None:
    sim = SimulatedDrive(time_scale=0.0, fail_on={"run_continuous"})
    node = _node(sim)

    async def _run_test() -> WheelPowerPair:
        with pytest.raises(ActuatorError):
            await node.apply_command(DriveCommand(DriveMode.FORWARD, speed=50))
        sim.fail_on.clear()
        return await node.apply_command(DriveCommand(DriveMode.FORWARD, speed=50))

    assert asyncio.run(_run_test()) == WheelPowerPair(0.5, 0.5)
    assert node.snapshot().last_error is None


def test_state_is_published_after_command() -> None:
    bus = EventBus()
    node = _node(bus=bus)
    received: list[RobotState] = []

    async def on_state(state: RobotState) -> None:
        received.append(state)

    async def _run_test() -> None:
        await bus.subscribe("robot/state", on_state)
        await node.apply_command(DriveCommand(DriveMode.BACKWARD, speed=10))

    asyncio.run(_run_test())

    assert received[-1].command.mode == DriveMode.BACKWARD
    assert received[-1].control == ControlMode.MANUAL


def test_drive_commands_from_bus() -> None:
    bus = EventBus()
    sim = SimulatedDrive(time_scale=0.0)
    node = _node(sim, bus=bus)

    async def _run_test() -> None:
        await node.start()
        await bus.publish_drive_cmd(DriveCommand(DriveMode.FORWARD, speed=40))

    asyncio.run(_run_test())

    assert node.command.speed == 40
    assert ("set_wheel_power", 0.4, 0.4) in sim.calls


def test_manual_command_rejected_during_autonomous_run() -> None:
    node = _node()

    async def _run_test() -> None:
        run = await node.start_autonomous()
        assert node.control_mode == ControlMode.AUTONOMOUS
        with pytest.raises(DriveBusyError):
            await node.apply_command(DriveCommand(DriveMode.FORWARD, speed=10))
        with pytest.raises(DriveBusyError):
            await node.start_autonomous()
        await node.request_stop(run)

    asyncio.run(_run_test())

    assert node.control_mode == ControlMode.MANUAL


def test_autonomous_run_ends_stopped() -> None:
    sim = SimulatedDrive(time_scale=0.0)
    node = _node(sim)

    async def _run_test() -> None:
        run = await node.start_autonomous()
        while len(sim.calls_named("read_distance_cm")) < 2:
            await asyncio.sleep(0.001)
        await node.request_stop(run)
        await run.wait()

    asyncio.run(_run_test())

    assert sim.calls[-2:] == [("brake_and_stop",), ("wait_for_motion_stop",)]
    assert node.command == DriveCommand()
    assert node.autonomous_run is None


def test_start_autonomous_brakes_manual_motion_first() -> None:
    sim = SimulatedDrive(time_scale=0.0)
    node = _node(sim)

    async def _run_test() -> None:
        await node.apply_command(DriveCommand(DriveMode.FORWARD, speed=60))
        sim.calls.clear()
        run = await node.start_autonomous()
        await node.request_stop(run)

    asyncio.run(_run_test())

    assert sim.calls[:3] == [("brake_and_stop",), ("wait_for_motion_stop",), ("set_wheel_power", 1.0, 1.0)]


def test_autonomous_failure_surfaces_on_wait() -> None:
    """Ошибка автопилота видна вызывающему, моторы при этом заторможены."""
    sim = SimulatedDrive(distances=[ActuatorError("echo pin unplugged")], time_scale=0.0)
    node = _node(sim)

    async def _run_test() -> None:
        run = await node.start_autonomous()
        with pytest.raises(ActuatorError, match="unplugged"):
            await run.wait()

    asyncio.run(_run_test())

    assert sim.calls[-2:] == [("brake_and_stop",), ("wait_for_motion_stop",)]
    assert node.snapshot().last_error == "echo pin unplugged"
    assert node.control_mode == ControlMode.MANUAL


def test_emergency_stop_cancels_autonomous_run() -> None:
    sim = SimulatedDrive(time_scale=0.0)
    node = _node(sim)

    async def _run_test() -> None:
        run = await node.start_autonomous()
        await asyncio.sleep(0.005)
        await node.emergency_stop()
        assert run.done

    asyncio.run(_run_test())

    assert node.control_mode == ControlMode.MANUAL
    assert node.command == DriveCommand()
    assert not sim.moving


def test_autonomous_toggle_from_bus() -> None:
    bus = EventBus()
    node = _node(bus=bus)

    async def _run_test() -> None:
        await node.start()
        await bus.publish_auto(True)
        assert node.control_mode == ControlMode.AUTONOMOUS
        await bus.publish_auto(False)

    asyncio.run(_run_test())

    assert node.control_mode == ControlMode.MANUAL


def test_shutdown_stops_and_closes_hardware() -> None:
    sim = SimulatedDrive(time_scale=0.0)
    node = _node(sim)

    async def _run_test() -> None:
        await node.apply_command(DriveCommand(DriveMode.FORWARD, speed=90))
        await node.shutdown()

    asyncio.run(_run_test())

    assert sim.closed
    assert not sim.moving


@pytest.mark.parametrize(
    "move,wheels,duration_ms",
    [
        (Nudge.FORWARD, WheelPowerPair(1.0, 1.0), 1000),
        (Nudge.BACKWARD, WheelPowerPair(-1.0, -1.0), 1000),
        (Nudge.LEFT, WheelPowerPair(-750 / 900, 750 / 900), 150),
        (Nudge.RIGHT, WheelPowerPair(750 / 900, -750 / 900), 150),
    ],
)
def test_nudge_runs_timed_and_waits(move: Nudge, wheels: WheelPowerPair, duration_ms: int) -> None:
    sim = SimulatedDrive(time_scale=0.0)
    node = _node(sim)

    assert asyncio.run(node.nudge(move)) == wheels
    assert sim.calls == [
        ("set_wheel_power", wheels.left, wheels.right),
        ("run_for_duration", duration_ms),
        ("wait_for_motion_start",),
        ("wait_for_motion_stop",),
    ]
    assert node.command == DriveCommand()
    assert not sim.moving


def test_nudge_from_continuous_drive_brakes_first() -> None:
    sim = SimulatedDrive(time_scale=0.0)
    node = _node(sim)

    async def _run_test() -> None:
        await node.apply_command(DriveCommand(DriveMode.BACKWARD, speed=50))
        sim.calls.clear()
        await node.nudge(Nudge.FORWARD)

    asyncio.run(_run_test())

    assert sim.calls[:3] == [("brake_and_stop",), ("wait_for_motion_stop",), ("set_wheel_power", 1.0, 1.0)]
    assert node.command == DriveCommand()


def test_nudge_rejected_during_autonomous_run() -> None:
    node = _node()

    async def _run_test() -> None:
        run = await node.start_autonomous()
        with pytest.raises(DriveBusyError):
            await node.nudge(Nudge.LEFT)
        await node.request_stop(run)

    asyncio.run(_run_test())


def test_nudge_actuator_error_brakes() -> None:
    sim = SimulatedDrive(time_scale=0.0, fail_on={"run_for_duration"})
    node = _node(sim)

    with pytest.raises(ActuatorError):
        asyncio.run(node.nudge(Nudge.RIGHT))

    assert sim.calls[-2:] == [("brake_and_stop",), ("wait_for_motion_stop",)]
    assert node.snapshot().last_error == "simulated failure in run_for_duration"
