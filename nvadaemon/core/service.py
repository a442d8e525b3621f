"""
NVA failover daemon service

Loads the configuration file, sets up logging and runs the probe monitor
under the fixed-interval scheduler until a shutdown signal arrives.
"""
from __future__ import annotations

import argparse
import asyncio
import signal
import sys

from pathlib import Path
from typing import Any

from nvadaemon.config.logging import configure_logging, get_logger
from nvadaemon.config.settings import LoggingSettings, load_config_file
from nvadaemon.core.errors import NvaDaemonError
from nvadaemon.monitor.controller import CloudFactory, ProbeMonitor, azure_cloud_factory
from nvadaemon.monitor.scheduler import MonitorScheduler

logger = get_logger(__name__)


class NvaDaemonService:
    """Runs one probe monitor for the lifetime of the process."""

    def __init__(
        self,
        config_path: Path,
        log_level: str | None = None,
        cloud_factory: CloudFactory = azure_cloud_factory,
    ):
        """
        Initialize the daemon service.

        Args:
            config_path: Path to the YAML configuration file
            log_level: Overrides ``logging.level`` from the file
            cloud_factory: Builds the cloud networking client
        """
        self.config = load_config_file(config_path)
        if log_level:
            self.config["logging.level"] = log_level

        logging_settings = LoggingSettings.from_config(self.config)
        configure_logging(
            log_level=logging_settings.level,
            json_logs=logging_settings.json_logs,
        )

        self.monitor = ProbeMonitor(cloud_factory=cloud_factory)
        self.scheduler = MonitorScheduler(self.monitor, self.config)

        logger.info("NVA daemon service initialized", config_path=str(config_path))

    def _install_signal_handlers(self) -> None:
        loop = asyncio.get_running_loop()
        for signum in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(signum, self._on_signal, signum)
            except NotImplementedError:
                # Windows event loops do not support signal handlers
                signal.signal(signum, lambda s, f: self._on_signal(s))

    def _on_signal(self, signum: int) -> None:
        logger.info("Received shutdown signal", signal=signum)
        self.scheduler.stop()

    async def run(self) -> None:
        """Run the monitor until a shutdown signal arrives."""
        self._install_signal_handlers()
        await self.scheduler.run()

    async def check(self) -> dict[str, Any]:
        """Initialize the monitor once, report its status and release it."""
        await self.monitor.init(self.config)
        try:
            return self.monitor.get_status()
        finally:
            await self.monitor.close()


async def main(argv: list[str] | None = None) -> int:
    """Main entry point for the NVA failover daemon."""
    parser = argparse.ArgumentParser(
        description="Keep a public IP and route pointed at a healthy NVA"
    )
    parser.add_argument(
        "--config", "-c", type=Path, required=True, help="Configuration file path"
    )
    parser.add_argument("--log-level", default=None, help="Logging level")
    parser.add_argument(
        "--check",
        action="store_true",
        help="Validate configuration and cloud state, print the active NVA and exit",
    )

    args = parser.parse_args(argv)

    try:
        service = NvaDaemonService(config_path=args.config, log_level=args.log_level)
        if args.check:
            status = await service.check()
            logger.info("Configuration check passed", **status)
        else:
            await service.run()
    except NvaDaemonError as e:
        logger.error("NVA daemon failed", error=f"{e.__class__.__name__}: {e}")
        return 1

    return 0


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
