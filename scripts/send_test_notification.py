"""Send a sample notification to an organization's Slack webhook."""

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
from src.use_cases.notifier_factories import create_gitlab_client, create_notifier
from src.use_cases.send_test_notification import send_test_notification_use_case
from src.use_cases.sync_organizations import sync_organizations_use_case

logger = get_logger(__name__)


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Send a test notification")
    parser.add_argument("org_id", help="Internal organization identifier")
    parser.add_argument("ticket_id", help="Ticket number to announce")
    parser.add_argument("--subject", default=None, help="Ticket subject override")
    parser.add_argument("--user-name", default=None, help="Display name override")
    parser.add_argument(
        "--json-logs",
        action="store_true",
        help="Emit logs in JSON format",
    )
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    load_dotenv()

    settings = get_settings()
    notifier_runtime.initialize_logging(settings, json_logs=args.json_logs)

    repository = create_repository(settings)
    try:
        sync_organizations_use_case(repository, settings)
        organization = repository.get_organization(args.org_id)
        if organization is None:
            logger.error("organization_not_found", org_id=args.org_id)
            return 1

        result = send_test_notification_use_case(
            organization,
            args.ticket_id,
            create_notifier(settings),
            create_gitlab_client(settings),
            subject=args.subject,
            user_name=args.user_name,
        )
    finally:
        repository.close()

    return 0 if result.sent else 1


if __name__ == "__main__":
    raise SystemExit(main())
