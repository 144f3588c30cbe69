"""Интерфейс железа привода: моторы, датчики, кнопки, индикация."""

import logging
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from robodrive.messages import FeedbackEvent

logger = logging.getLogger(__name__)


class DriveHardware(ABC):
    """
    Базовый класс бэкенда привода.

    Все методы, которые трогают железо, при сбое бросают ActuatorError.
    Ожидания состояния движения никогда не бросают на таймауте:
    они возвращают False.
    """

    name = "abstract"

    @abstractmethod
    async def set_wheel_power(self, left: float, right: float) -> None:
        """
        Задать мощность колёс.

        Args:
            left: Доля максимальной скорости левого колеса (-1.0..1.0)
            right: Доля максимальной скорости правого колеса (-1.0..1.0)

        Если моторы уже крутятся, новая мощность применяется сразу.
        """
        ...

    @abstractmethod
    async def brake_and_stop(self) -> None:
        """Активное торможение обоих колёс."""
        ...

    @abstractmethod
    async def run_continuous(self) -> None:
        """Запустить моторы с заданной мощностью до следующей команды."""
        ...

    @abstractmethod
    async def run_for_duration(self, duration_ms: int) -> None:
        """Запустить моторы на duration_ms, после чего они тормозят сами."""
        ...

    @abstractmethod
    async def wait_for_motion_start(self, timeout: float | None = None) -> bool:
        ...

    @abstractmethod
    async def wait_for_motion_stop(self, timeout: float | None = None) -> bool:
        ...

    @abstractmethod
    async def read_distance_cm(self) -> float:
        ...

    @abstractmethod
    async def read_touch(self) -> bool:
        ...

    @abstractmethod
    async def pressed_buttons(self) -> set[str]:
        ...

    async def feedback(self, event: FeedbackEvent) -> None:
        """Звук/свет. По умолчанию ничего не делает."""
        return None

    async def close(self) -> None:
        return None


async def brake_and_wait(hw: DriveHardware, timeout: float | None = None) -> bool:
    """Затормозить и дождаться остановки. Возвращает False при таймауте ожидания."""
    await hw.brake_and_stop()
    logger.debug("Brake commands issued")
    stopped = await hw.wait_for_motion_stop(timeout)
    if not stopped:
        logger.warning("Motors did not report standstill within %ss", timeout)
    return stopped


@asynccontextmanager
async def braking_on_exit(hw: DriveHardware, timeout: float | None = None) -> AsyncIterator[None]:
    """
    Scope guard: brake and wait for standstill however the block exits.

    A failure of the brake itself propagates (chained to the block's own error,
    if any).
    """
    try:
        yield
    finally:
        await brake_and_wait(hw, timeout)
