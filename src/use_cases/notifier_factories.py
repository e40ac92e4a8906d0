"""Factories to compose the notification engine from settings."""

from __future__ import annotations

from src.adapters.freshdesk_client import FreshdeskClient
from src.adapters.gitlab_client import GitLabClient
from src.adapters.hubstaff_client import HubstaffClient
from src.adapters.hubstaff_oauth import HubstaffCredentialProvider
from src.adapters.slack_webhook_notifier import SlackWebhookNotifier
from src.config.settings import Settings
from src.domain.protocols import RepositoryProtocol
from src.services.ticket_resolver import TicketResolver
from src.use_cases.poll_organizations import ActivityPoller
from src.use_cases.process_activity import ActivityProcessor


def create_notifier(settings: Settings) -> SlackWebhookNotifier:
    return SlackWebhookNotifier(
        username=settings.notifier_username,
        icon_url=settings.notifier_icon_url,
        timeout_seconds=settings.notifier_timeout_seconds,
    )


def create_gitlab_client(settings: Settings) -> GitLabClient:
    return GitLabClient(timeout_seconds=settings.ticket_request_timeout_seconds)


def create_activity_poller(
    settings: Settings, repository: RepositoryProtocol
) -> ActivityPoller:
    """Wire Hubstaff, ticket backends and Slack around one repository."""

    feed = HubstaffClient(
        base_url=settings.hubstaff_api_base_url,
        timeout_seconds=settings.hubstaff_request_timeout_seconds,
        max_retries=settings.hubstaff_max_retries,
        cache_ttl_seconds=settings.hubstaff_cache_ttl_seconds,
        cache_max_entries=settings.hubstaff_cache_max_entries,
    )
    credentials = HubstaffCredentialProvider(
        repository,
        client_id=(
            settings.hubstaff_client_id.get_secret_value()
            if settings.hubstaff_client_id
            else ""
        ),
        client_secret=(
            settings.hubstaff_client_secret.get_secret_value()
            if settings.hubstaff_client_secret
            else ""
        ),
        token_url=settings.hubstaff_token_url,
        refresh_margin_seconds=settings.hubstaff_token_refresh_margin_seconds,
    )
    resolver = TicketResolver(
        gitlab_client=create_gitlab_client(settings),
        freshdesk_client=FreshdeskClient(
            timeout_seconds=settings.ticket_request_timeout_seconds
        ),
    )
    processor = ActivityProcessor(
        sessions=repository,
        ledger=repository,
        feed=feed,
        resolver=resolver,
        notifier=create_notifier(settings),
    )
    return ActivityPoller(
        organizations=repository,
        credentials=credentials,
        feed=feed,
        processor=processor,
        lookback_minutes=settings.lookback_minutes,
    )


__all__ = ["create_activity_poller", "create_gitlab_client", "create_notifier"]
