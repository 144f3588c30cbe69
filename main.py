import argparse
import asyncio
import logging
import signal
import sys

import uvicorn

from robodrive.config import config
from robodrive.hw import create_drive_hardware
from robodrive.messages import ControlMode
from robodrive.nodes.buttons import ButtonNode
from robodrive.nodes.drive import DriveNode

logger = logging.getLogger("robodrive.main")


def signal_handler(sig, frame):
    # SystemExit отменяет задачи asyncio, и их finally тормозят моторы
    logger.info("[SHUTDOWN] Signal %s, stopping motors...", sig)
    sys.exit(0)


async def run_buttons() -> None:
    drive_node = DriveNode(create_drive_hardware())
    try:
        await ButtonNode(drive_node).run()
    finally:
        await drive_node.shutdown()


def main() -> None:
    parser = argparse.ArgumentParser(description="Differential drive robot: remote control or autonomous wandering")
    parser.add_argument(
        "--mode",
        choices=[m.value for m in ControlMode],
        default=config.drive.default_mode.value,
        help="manual = web remote control, autonomous = brick buttons start/stop wandering",
    )
    args = parser.parse_args()

    # Configure logging for the entire application
    logging.basicConfig(
        level=logging.INFO,
        format="%(levelname)s:     %(name)s - %(message)s",
    )

    # Set log level for our app modules
    logging.getLogger("robodrive").setLevel(logging.INFO)

    if args.mode == ControlMode.AUTONOMOUS.value:
        signal.signal(signal.SIGINT, signal_handler)
        signal.signal(signal.SIGTERM, signal_handler)
        asyncio.run(run_buttons())
        return

    # uvicorn ставит свои обработчики сигналов и вызывает shutdown приложения
    uvicorn.run(
        "robodrive.web.server:app",
        host=config.server.host,
        port=config.server.port,
        reload=config.server.reload,
        log_level="info",
    )


if __name__ == "__main__":
    main()
