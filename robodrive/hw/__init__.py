"""Бэкенды железа привода."""

import logging

from robodrive.config import HardwareBackend, HardwareConfig, config
from robodrive.errors import ActuatorError
from robodrive.hw.base import DriveHardware, brake_and_wait, braking_on_exit
from robodrive.hw.simulated import SimulatedDrive

logger = logging.getLogger(__name__)


def create_drive_hardware(hw_config: HardwareConfig | None = None) -> DriveHardware:
    """
    Создать бэкенд по конфигу.

    backend=auto берёт pigpio, если модуль есть и pigpiod отвечает,
    иначе симулятор (на macOS просто ездим в логах).
    """
    cfg = hw_config or config.hardware
    if cfg.backend == HardwareBackend.SIMULATED:
        return SimulatedDrive(max_speed=config.drive.max_speed_sp)

    from robodrive.hw.pigpio_drive import PIGPIO_AVAILABLE, PigpioDrive

    if cfg.backend == HardwareBackend.PIGPIO:
        return PigpioDrive(cfg)

    if PIGPIO_AVAILABLE:
        try:
            return PigpioDrive(cfg)
        except ActuatorError as e:
            logger.warning("pigpio backend unavailable (%s), falling back to simulation", e)
    else:
        logger.info("pigpio not installed, using simulated drive hardware")
    return SimulatedDrive(max_speed=config.drive.max_speed_sp)


__all__ = [
    "DriveHardware",
    "SimulatedDrive",
    "brake_and_wait",
    "braking_on_exit",
    "create_drive_hardware",
]
