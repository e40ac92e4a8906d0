"""Tests for configuration loading."""

import shutil
from pathlib import Path

import pytest
import yaml

from src.config.settings import Settings, deep_merge, load_all_configs

REPO_ROOT = Path(__file__).resolve().parents[1]


@pytest.fixture
def config_dir(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Empty working directory with the real JSON schemas."""
    schema_dir = tmp_path / "config" / "schemas"
    schema_dir.mkdir(parents=True)
    for schema in (REPO_ROOT / "config" / "schemas").glob("*.schema.json"):
        shutil.copy(schema, schema_dir / schema.name)
    monkeypatch.chdir(tmp_path)
    for name in ("LOG_LEVEL", "DATABASE_TYPE", "DB_PATH", "POLL_INTERVAL_SECONDS"):
        monkeypatch.delenv(name, raising=False)
    return tmp_path / "config"


def _write(path: Path, data: dict) -> None:
    path.write_text(yaml.safe_dump(data), encoding="utf-8")


def test_deep_merge_nested() -> None:
    base = {"poller": {"interval_seconds": 60, "lookback_minutes": 45}}
    override = {"poller": {"interval_seconds": 30}}

    assert deep_merge(base, override) == {
        "poller": {"interval_seconds": 30, "lookback_minutes": 45}
    }


def test_defaults_without_config_files(config_dir: Path) -> None:
    settings = Settings()

    assert settings.poll_interval_seconds == 60
    assert settings.lookback_minutes == 45
    assert settings.default_notification_gap_minutes == 120
    assert settings.database_type == "sqlite"
    assert settings.organizations == []


def test_yaml_values_are_applied(config_dir: Path) -> None:
    _write(
        config_dir / "main.yaml",
        {
            "poller": {"interval_seconds": 30, "lookback_minutes": 60},
            "notifications": {"default_gap_minutes": 90, "username": "Pulse"},
            "database": {"type": "sqlite", "path": "state/test.db"},
            "logging": {"level": "DEBUG"},
        },
    )

    settings = Settings()

    assert settings.poll_interval_seconds == 30
    assert settings.lookback_minutes == 60
    assert settings.default_notification_gap_minutes == 90
    assert settings.notifier_username == "Pulse"
    assert settings.db_path == "state/test.db"
    assert settings.log_level == "DEBUG"


def test_environment_overrides_yaml(
    config_dir: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    _write(config_dir / "main.yaml", {"logging": {"level": "DEBUG"}})
    monkeypatch.setenv("LOG_LEVEL", "WARNING")

    assert Settings().log_level == "WARNING"


def test_organizations_file_is_merged_and_inherits_gap(config_dir: Path) -> None:
    _write(config_dir / "main.yaml", {"notifications": {"default_gap_minutes": 45}})
    _write(
        config_dir / "organizations.yaml",
        {
            "organizations": [
                {
                    "org_id": "acme",
                    "name": "Acme",
                    "hubstaff_org_id": 123,
                    "slack_webhook_url_env": "ACME_WEBHOOK",
                },
                {
                    "org_id": "globex",
                    "name": "Globex",
                    "notification_gap_minutes": 200,
                    "slack_webhook_url_env": "GLOBEX_WEBHOOK",
                },
            ]
        },
    )

    settings = Settings()

    acme = settings.get_organization_config("acme")
    assert acme is not None
    assert acme.hubstaff_org_id == "123"
    assert acme.notification_gap_minutes == 45
    globex = settings.get_organization_config("globex")
    assert globex is not None
    assert globex.notification_gap_minutes == 200
    assert settings.get_organization_config("initech") is None


def test_organization_with_inline_secret_is_rejected(config_dir: Path) -> None:
    _write(
        config_dir / "organizations.yaml",
        {
            "organizations": [
                {
                    "org_id": "acme",
                    "name": "Acme",
                    "slack_webhook_url": "https://hooks.slack.com/services/x",
                    "slack_webhook_url_env": "ACME_WEBHOOK",
                }
            ]
        },
    )

    with pytest.raises(ValueError, match="organizations"):
        load_all_configs()


def test_repository_config_passes_its_schema(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.chdir(REPO_ROOT)

    config = load_all_configs()

    assert config["poller"]["lookback_minutes"] == 45
