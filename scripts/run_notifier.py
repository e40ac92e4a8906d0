"""Run the activity notification poller at a fixed interval."""

from __future__ import annotations

import argparse
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from dotenv import load_dotenv

from scripts import notifier_runtime
from src.adapters.repository_factory import create_repository
from src.config.logging_config import get_logger
from src.config.settings import get_settings
from src.observability.metrics import ensure_metrics_exporter
from src.use_cases.notifier_factories import create_activity_poller
from src.use_cases.sync_organizations import sync_organizations_use_case

logger = get_logger(__name__)


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run the activity notifier")
    parser.add_argument(
        "--interval-seconds",
        type=float,
        default=None,
        help="Interval between ticks (defaults to poller.interval_seconds)",
    )
    parser.add_argument(
        "--json-logs",
        action="store_true",
        help="Emit logs in JSON format",
    )
    parser.add_argument(
        "--run-once",
        action="store_true",
        help="Run a single tick and exit",
    )
    parser.add_argument(
        "--metrics-port",
        type=int,
        default=None,
        help="Expose Prometheus metrics on this port",
    )
    args = parser.parse_args(argv)
    if args.interval_seconds is not None and args.interval_seconds <= 0:
        parser.error("--interval-seconds must be greater than 0")
    return args


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    load_dotenv()

    settings = get_settings()
    notifier_runtime.initialize_logging(settings, json_logs=args.json_logs)

    if args.metrics_port is not None:
        ensure_metrics_exporter(args.metrics_port)

    controller = notifier_runtime.create_shutdown_controller()
    notifier_runtime.install_signal_handlers(controller)

    repository = create_repository(settings)
    try:
        sync_result = sync_organizations_use_case(repository, settings)
        if sync_result.errors:
            logger.warning("organization_sync_incomplete", errors=sync_result.errors)

        poller = create_activity_poller(settings, repository)
        interval_seconds = args.interval_seconds or float(
            settings.poll_interval_seconds
        )

        notifier_runtime.run_scheduler_loop(
            controller=controller,
            interval_seconds=interval_seconds,
            run_once=args.run_once,
            action=poller.run_tick,
        )
    finally:
        repository.close()

    return 0


if __name__ == "__main__":
    raise SystemExit(main())
