import asyncio
import logging

from robodrive.config import AvoidanceConfig, config
from robodrive.errors import ActuatorError
from robodrive.nodes.drive import DriveNode

logger = logging.getLogger(__name__)


class ButtonNode:
    """
    Автономный режим без сети: кнопки на роботе.

    Любая кнопка запускает автопилот (и любая же его останавливает),
    кнопка выхода завершает цикл.
    """

    def __init__(self, drive: DriveNode, avoidance_config: AvoidanceConfig | None = None) -> None:
        self.drive = drive
        self.cfg = avoidance_config or config.avoidance
        self.runs = 0

    async def run(self) -> None:
        cfg = self.cfg
        logger.info(
            "Waiting for button push. Press %s to exit or anything else to start auto-driving.",
            cfg.exit_button,
        )
        while True:
            pressed = await self.drive.hw.pressed_buttons()
            if cfg.exit_button in pressed:
                logger.info("%s pressed. Bye!", cfg.exit_button)
                break
            if not pressed:
                await asyncio.sleep(cfg.button_poll_s)
                continue

            logger.info("Buttons pushed: %s", ", ".join(sorted(pressed)))
            self.runs += 1
            run = await self.drive.start_autonomous()
            try:
                await run.wait()
            except ActuatorError as e:
                # Моторы уже заторможены прогоном, ждём следующего нажатия
                logger.error("Driving error: %s", e)
                continue
            # Пауза, чтобы долгое нажатие не запустило автопилот снова
            await asyncio.sleep(cfg.rearm_delay_s)
