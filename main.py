"""Command-line entry point.

Wires together: logging, metrics, backend client, orchestrator, BLE source.
Runs until interrupted, then flushes the live session and waits for
in-flight uploads.

Usage:
    python main.py --address AA:BB:CC:DD:EE:FF
    python main.py --address AA:BB:CC:DD:EE:FF --base-url https://api.example.com/ --json-logs
"""

from __future__ import annotations

import argparse
import asyncio
import signal

import structlog

from monitor.adapters.api_client import SleepApiClient
from monitor.adapters.ble_transport import BleNotificationSource
from monitor.domain.models import FrameRejected, SleepEvent, UploadDelivered
from monitor.orchestrator import SessionOrchestrator
from shared.config import settings
from shared.logging import configure_logging
from shared.metrics import start_metrics_server

logger = structlog.get_logger()


def log_event(event: SleepEvent) -> None:
    if isinstance(event, UploadDelivered):
        result = event.result
        logger.info(
            "sleep_event",
            event=type(event).__name__,
            protocol=event.protocol_id.label,
            status="empty" if result is None else ("ok" if result.ok else result.error.kind),
        )
    elif isinstance(event, FrameRejected):
        logger.info("sleep_event", event="FrameRejected", reason=event.error.reason)
    else:
        logger.info("sleep_event", event=type(event).__name__)


async def run(address: str) -> None:
    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except NotImplementedError:  # Windows
            pass

    api = SleepApiClient.from_settings()
    try:
        async with SessionOrchestrator(api, log_event) as orchestrator:
            async with BleNotificationSource(address, orchestrator):
                logger.info("bridge_running", address=address, backend=settings.api_base_url)
                await stop.wait()
            logger.info("bridge_stopping", session_live=orchestrator.session is not None)
    finally:
        await api.aclose()


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Forward sleep-band BLE notifications to the backend"
    )
    parser.add_argument("--address", required=True, help="BLE address of the band")
    parser.add_argument("--base-url", help="Backend base URL (overrides SM_API_BASE_URL)")
    parser.add_argument("--user-sno", help="User serial number (overrides SM_USER_SNO)")
    parser.add_argument(
        "--json-logs", action="store_true", default=settings.log_json, help="Emit JSON logs"
    )
    parser.add_argument(
        "--metrics-port",
        type=int,
        default=settings.metrics_port,
        help="Serve Prometheus metrics on this port (0 = off)",
    )
    return parser.parse_args()


def main() -> None:
    args = parse_args()
    if args.base_url:
        settings.api_base_url = args.base_url
    if args.user_sno:
        settings.user_sno = args.user_sno

    configure_logging(json_output=args.json_logs, level=settings.log_level)
    if args.metrics_port:
        start_metrics_server(args.metrics_port)

    asyncio.run(run(args.address))


if __name__ == "__main__":
    main()
