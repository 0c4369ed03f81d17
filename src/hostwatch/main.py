import argparse
import asyncio
import dataclasses
import signal
import sys
from pathlib import Path
from typing import List, Optional, Sequence

import yaml

from hostwatch import __version__
from hostwatch.alert_manager.alert_handler import AlertDispatcher
from hostwatch.alert_manager.report_generator import generate_quick_report, generate_text_report
from hostwatch.api.server import APIServer
from hostwatch.baseline_engine.baseline_tracker import Baseline, BaselineTracker
from hostwatch.detection_engine.suspicious_activity import SuspiciousActivityEvaluator
from hostwatch.detection_engine.threshold_evaluator import ThresholdEvaluator
from hostwatch.host_monitor.login_monitor import LoginMonitor
from hostwatch.host_monitor.system_monitor import HostSnapshotProvider
from hostwatch.notification.channels import NotificationChannel
from hostwatch.notification.chat_channel import ChatChannel
from hostwatch.notification.email_channel import EmailChannel
from hostwatch.notification.router import NotificationRouter
from hostwatch.notification.websocket_channel import WebSocketChannel
from hostwatch.scheduler.scheduler import Scheduler
from hostwatch.utils.config_loader import ConfigLoader
from hostwatch.utils.logger import setup_logging

CHANNEL_TYPES = {
    'chat': ChatChannel,
    'email': EmailChannel,
    'websocket': WebSocketChannel,
}


def build_channels(config: ConfigLoader, only: Sequence[str] = ()) -> List[NotificationChannel]:
    """Instantiate the configured channels, optionally restricted to some names"""
    names = list(only) or list(CHANNEL_TYPES)
    return [CHANNEL_TYPES[name](config.channel_config(name)) for name in names]


class HostWatchAgent:
    """Wires collectors, engine, channels and scheduler together"""

    def __init__(self, config_path="config/config.yaml", report_interval: Optional[float] = None,
                 channels: Sequence[str] = ()):
        self.config = ConfigLoader(config_path)
        self.logger = setup_logging(
            self.config.get("global.log_level", "INFO"),
            self.config.get("global.log_file", "logs/hostwatch.log")
        )

        self.settings = self.config.monitoring()
        if report_interval:
            self.settings = dataclasses.replace(self.settings, report_interval_seconds=float(report_interval))

        # Components
        self.login_monitor = LoginMonitor(
            failed_login_window_hours=self.config.get("collectors.failed_login_window_hours", 24)
        )
        self.snapshot_provider = HostSnapshotProvider(
            config=self.config.get("collectors", {}),
            login_monitor=self.login_monitor
        )
        self.baseline = Baseline()
        self.tracker = BaselineTracker(self.baseline)
        self.suspicious = SuspiciousActivityEvaluator()
        self.threshold = ThresholdEvaluator()

        self.router = NotificationRouter(
            build_channels(self.config, channels),
            retry_attempts=self.config.get("notifications.retry_attempts", 3),
            retry_delay=float(self.config.get("notifications.retry_delay_seconds", 2)),
            chunk_delay=float(self.config.get("notifications.chunk_delay_seconds", 1))
        )
        self.dispatcher = AlertDispatcher(self.router, self.settings)

        self.scheduler = Scheduler(
            self.snapshot_provider,
            self.tracker,
            self.suspicious,
            self.threshold,
            self.dispatcher,
            thresholds=self.config.thresholds(),
            settings=self.settings,
            login_source=self.login_monitor,
            top_processes=self.config.get("collectors.top_processes", 5)
        )

        self.api_server = None
        if self.config.get("api.enabled", False):
            self.api_server = APIServer(
                config=self.config.get("api", {}),
                components={
                    "scheduler": self.scheduler,
                    "dispatcher": self.dispatcher,
                    "router": self.router,
                    "snapshot_provider": self.snapshot_provider,
                }
            )

    def _install_signal_handlers(self):
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, self._handle_signal, sig)
            except (NotImplementedError, RuntimeError):
                signal.signal(sig, lambda signum, frame: loop.call_soon_threadsafe(self._handle_signal, signum))

    def _handle_signal(self, signum):
        self.logger.info(f"Received signal {signum}, shutting down...")
        self.scheduler.request_shutdown()

    async def run(self):
        """Run the monitoring daemon until a shutdown signal"""
        self.logger.info("🚀 Starting Host Watch...")
        self._install_signal_handlers()

        channels = [channel.name for channel in self.router.enabled_channels()]
        if not channels:
            self.logger.warning("No notification channels enabled; alerts will only be logged")
        else:
            self.logger.info(f"Enabled channels: {', '.join(channels)}")

        await self.router.start()

        if self.api_server:
            self.api_server.start_in_thread()
            self.logger.info(f"📊 API Server: http://{self.config.get('api.host', '127.0.0.1')}:"
                             f"{self.config.get('api.port', 5001)}")

        await self.scheduler.run()
        self.logger.info("✅ Shutdown complete")

    async def report(self, quick: bool = False, send: bool = True) -> str:
        """Generate one report now, optionally routing it to the channels"""
        snapshot = await self.snapshot_provider.get_snapshot()
        suspicious = self.suspicious.evaluate(snapshot)
        if quick:
            text = generate_quick_report(snapshot, suspicious)
        else:
            text = generate_text_report(snapshot, suspicious, (), self.scheduler.top_processes)

        if send:
            await self.router.start()
            try:
                results = await self.dispatcher.deliver([self.dispatcher.report_message(text)])
            finally:
                await self.router.close()
            for result in results:
                self.logger.info(f"Report {'sent' if result.success else 'NOT sent'} via {result.channel}")
        return text

    async def send_test(self) -> List:
        await self.router.start()
        try:
            return await self.dispatcher.deliver([self.dispatcher.test_message()])
        finally:
            await self.router.close()


# =============================================================================
# CLI
# =============================================================================

def _cmd_start(args) -> int:
    agent = HostWatchAgent(config_path=args.config, report_interval=args.interval)
    asyncio.run(agent.run())
    return 0


def _cmd_report(args) -> int:
    agent = HostWatchAgent(config_path=args.config)
    text = asyncio.run(agent.report(quick=args.quick, send=not args.no_send))
    print(text)
    return 0


def _cmd_status(args) -> int:
    agent = HostWatchAgent(config_path=args.config)
    print(f"Host Watch {__version__}")
    print(f"Config: {args.config}")
    print(f"Report interval: {agent.settings.report_interval_seconds}s")
    enabled = [channel.name for channel in agent.router.enabled_channels()]
    print(f"Channels: {', '.join(enabled) if enabled else 'none enabled'}")
    print()
    print(asyncio.run(agent.report(quick=True, send=False)))
    return 0


def _cmd_test(args) -> int:
    selected = [name for name in CHANNEL_TYPES if getattr(args, name)]
    agent = HostWatchAgent(config_path=args.config, channels=selected)

    enabled = {channel.name for channel in agent.router.enabled_channels()}
    for name in selected or CHANNEL_TYPES:
        if name not in enabled:
            print(f"⚠️ {name}: not enabled or not configured")
    if not enabled:
        return 1

    results = asyncio.run(agent.send_test())
    for result in results:
        mark = "✅" if result.success else "❌"
        print(f"{mark} {result.channel} ({result.attempts} attempt(s))")
    return 0 if results and all(r.success for r in results) else 1


def _cmd_init(args) -> int:
    path = Path(args.config)
    if path.exists() and not args.force:
        print(f"Config already exists: {path} (use --force to overwrite)")
        return 1
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, 'w', encoding='utf-8') as f:
        yaml.safe_dump(ConfigLoader.get_default_config(), f, sort_keys=False)
    print(f"✅ Wrote default configuration to {path}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="hostwatch", description="Host monitoring agent")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--config", default="config/config.yaml", help="Config file")
    subparsers = parser.add_subparsers(dest="command", required=True)

    start = subparsers.add_parser("start", help="Run the monitoring daemon")
    start.add_argument("--interval", type=float, help="Scheduled report interval in seconds")
    start.set_defaults(func=_cmd_start)

    report = subparsers.add_parser("report", help="Generate a report now")
    report.add_argument("--quick", action="store_true", help="Short status instead of the full report")
    report.add_argument("--no-send", action="store_true", help="Print only, do not notify")
    report.set_defaults(func=_cmd_report)

    status = subparsers.add_parser("status", help="Show configuration and current host status")
    status.set_defaults(func=_cmd_status)

    test = subparsers.add_parser("test", help="Send a test notification")
    test.add_argument("--chat", action="store_true", help="Only the chat channel")
    test.add_argument("--email", action="store_true", help="Only the email channel")
    test.add_argument("--websocket", action="store_true", help="Only the WebSocket channel")
    test.set_defaults(func=_cmd_test)

    init = subparsers.add_parser("init", help="Write the default configuration file")
    init.add_argument("--force", action="store_true", help="Overwrite an existing file")
    init.set_defaults(func=_cmd_init)

    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
