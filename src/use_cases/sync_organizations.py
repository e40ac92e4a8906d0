"""Sync organizations use case.

Upserts organizations declared in config into storage and seeds the initial
Hubstaff refresh token for organizations that have none stored yet.
"""

import os
from collections.abc import Mapping
from typing import Protocol

from pydantic import SecretStr, ValidationError

from src.config.logging_config import get_logger
from src.config.settings import Settings
from src.domain.exceptions import RepositoryError
from src.domain.models import OAuthTokens, Organization, OrganizationConfig, SyncResult
from src.domain.protocols import OrganizationDirectoryProtocol, TokenStoreProtocol

logger = get_logger(__name__)


class OrganizationStoreProtocol(
    OrganizationDirectoryProtocol, TokenStoreProtocol, Protocol
):
    """Storage needed to bootstrap organizations."""


def _read_env(environ: Mapping[str, str], name: str) -> str | None:
    if not name:
        return None
    value = environ.get(name, "").strip()
    return value or None


def build_organization(
    config: OrganizationConfig, environ: Mapping[str, str]
) -> Organization:
    """Resolve an organization config into a record with its secrets.

    Raises:
        ValueError: If the Slack webhook variable is unset
    """
    webhook_url = _read_env(environ, config.slack_webhook_url_env)
    if webhook_url is None:
        raise ValueError(
            f"{config.slack_webhook_url_env} is not set for organization {config.org_id}"
        )

    freshdesk_api_key = _read_env(environ, config.freshdesk_api_key_env)
    gitlab_api_key = _read_env(environ, config.gitlab_api_key_env)
    return Organization(
        org_id=config.org_id,
        name=config.name,
        is_active=config.is_active,
        notification_gap_minutes=config.notification_gap_minutes,
        hubstaff_org_id=config.hubstaff_org_id,
        freshdesk_domain=config.freshdesk_domain,
        freshdesk_api_key=SecretStr(freshdesk_api_key) if freshdesk_api_key else None,
        gitlab_domain=config.gitlab_domain,
        gitlab_project_path=config.gitlab_project_path,
        gitlab_api_key=SecretStr(gitlab_api_key) if gitlab_api_key else None,
        slack_webhook_url=SecretStr(webhook_url),
    )


def sync_organizations_use_case(
    store: OrganizationStoreProtocol,
    settings: Settings,
    *,
    environ: Mapping[str, str] | None = None,
) -> SyncResult:
    """Upsert configured organizations.

    Stored OAuth tokens are never overwritten; a refresh token from the
    environment is only used when the organization has none yet.

    Args:
        store: Organization directory with token storage
        settings: Application settings holding ``organizations``
        environ: Environment mapping (defaults to ``os.environ``)

    Returns:
        SyncResult with counts and per-organization errors

    Example:
        >>> result = sync_organizations_use_case(repo, settings)
        >>> result.organizations_saved
        2
    """
    env = os.environ if environ is None else environ
    saved = 0
    seeded = 0
    errors: list[str] = []

    for config in settings.organizations:
        try:
            organization = build_organization(config, env)
            store.save_organization(organization)
            saved += 1

            refresh_token = _read_env(env, config.hubstaff_refresh_token_env)
            if refresh_token and store.get_oauth_tokens(config.org_id) is None:
                store.save_oauth_tokens(
                    config.org_id, OAuthTokens(refresh_token=SecretStr(refresh_token))
                )
                seeded += 1
                logger.info("organization_token_seeded", org_id=config.org_id)
        except (ValueError, ValidationError, RepositoryError) as exc:
            errors.append(f"{config.org_id}: {exc}")
            logger.error(
                "organization_sync_failed", org_id=config.org_id, error=str(exc)
            )

    logger.info(
        "organizations_synced",
        saved=saved,
        tokens_seeded=seeded,
        errors=len(errors),
    )
    return SyncResult(organizations_saved=saved, tokens_seeded=seeded, errors=errors)


__all__ = [
    "OrganizationStoreProtocol",
    "build_organization",
    "sync_organizations_use_case",
]
