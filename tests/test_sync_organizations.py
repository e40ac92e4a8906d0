"""Tests for bootstrapping configured organizations into storage."""

import pytest
from pydantic import SecretStr

from src.domain.models import OAuthTokens, OrganizationConfig
from src.use_cases.sync_organizations import (
    build_organization,
    sync_organizations_use_case,
)
from tests.conftest import WEBHOOK_URL

ENV = {
    "ACME_WEBHOOK": WEBHOOK_URL,
    "ACME_FRESHDESK": "fd-secret",
    "ACME_REFRESH": "seed-refresh",
}


def _config(**overrides) -> OrganizationConfig:
    data = {
        "org_id": "acme",
        "name": "Acme",
        "hubstaff_org_id": "555",
        "freshdesk_domain": "acme.freshdesk.com",
        "freshdesk_api_key_env": "ACME_FRESHDESK",
        "gitlab_api_key_env": "ACME_GITLAB",
        "slack_webhook_url_env": "ACME_WEBHOOK",
        "hubstaff_refresh_token_env": "ACME_REFRESH",
    }
    data.update(overrides)
    return OrganizationConfig(**data)


def _settings(settings, *configs):
    return settings.model_copy(update={"organizations": list(configs)})


def test_build_organization_resolves_secrets() -> None:
    organization = build_organization(_config(), ENV)

    assert organization.slack_webhook_url.get_secret_value() == WEBHOOK_URL
    assert organization.freshdesk_api_key is not None
    assert organization.freshdesk_api_key.get_secret_value() == "fd-secret"
    assert organization.gitlab_api_key is None


def test_build_organization_requires_webhook() -> None:
    with pytest.raises(ValueError, match="ACME_WEBHOOK"):
        build_organization(_config(), {})


def test_sync_saves_organizations_and_seeds_tokens(repo, settings) -> None:
    result = sync_organizations_use_case(
        repo, _settings(settings, _config()), environ=ENV
    )

    assert result.organizations_saved == 1
    assert result.tokens_seeded == 1
    assert result.errors == []
    tokens = repo.get_oauth_tokens("acme")
    assert tokens is not None
    assert tokens.refresh_token.get_secret_value() == "seed-refresh"
    assert tokens.access_token is None


def test_sync_never_overwrites_stored_tokens(repo, settings) -> None:
    configured = _settings(settings, _config())
    sync_organizations_use_case(repo, configured, environ=ENV)
    repo.save_oauth_tokens(
        "acme",
        OAuthTokens(
            access_token=SecretStr("live-access"),
            refresh_token=SecretStr("rotated-refresh"),
        ),
    )

    result = sync_organizations_use_case(repo, configured, environ=ENV)

    assert result.tokens_seeded == 0
    tokens = repo.get_oauth_tokens("acme")
    assert tokens is not None
    assert tokens.refresh_token.get_secret_value() == "rotated-refresh"


def test_sync_isolates_misconfigured_organizations(repo, settings) -> None:
    broken = _config(org_id="broken", slack_webhook_url_env="MISSING_WEBHOOK")

    result = sync_organizations_use_case(
        repo, _settings(settings, broken, _config()), environ=ENV
    )

    assert result.organizations_saved == 1
    assert len(result.errors) == 1
    assert result.errors[0].startswith("broken:")
    assert repo.get_organization("broken") is None
    assert repo.get_organization("acme") is not None
