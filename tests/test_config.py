import pytest

from watchtower.config import Config, load_config, load_watchlist, validate_config
from watchtower.sources import (
    CommunitySignalSource,
    GitHubAdvisorySource,
    KEVSource,
    OSVSource,
    build_sources,
)


ENV_VARS = [
    "GITHUB_TOKEN", "GITHUB_ADVISORY_LIMIT", "COMMUNITY_PACKAGE_LIMIT",
    "SOURCE_TIMEOUT_SECONDS", "WATCHLIST_PATH", "SMTP_USER", "SMTP_APP_PASSWORD",
    "NOTIFY_RECIPIENT", "OSV_API_URL",
]


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)


def test_load_config_reads_environment(monkeypatch, tmp_path):
    watchlist = tmp_path / "watchlist.yaml"
    watchlist.write_text(
        "repositories:\n"
        "  - owner: acme\n"
        "    repo: shop\n"
        "    owner_id: 42\n"
        "  - owner: acme\n"
    )
    monkeypatch.setenv("GITHUB_TOKEN", "t0ken")
    monkeypatch.setenv("GITHUB_ADVISORY_LIMIT", "50")
    monkeypatch.setenv("SOURCE_TIMEOUT_SECONDS", "10.5")
    monkeypatch.setenv("WATCHLIST_PATH", str(watchlist))

    config = load_config(env_path=str(tmp_path / ".env"))

    assert config.github_token == "t0ken"
    assert config.github_advisory_limit == 50
    assert config.source_timeout_seconds == 10.5
    assert config.community_package_limit == 10
    assert [(r.full_name, r.owner_id) for r in config.watchlist] == [("acme/shop", "42")]
    assert config.email_enabled is False


def test_load_watchlist_missing_file(tmp_path):
    assert load_watchlist(str(tmp_path / "nope.yaml")) == []


def test_load_watchlist_invalid_yaml(tmp_path):
    path = tmp_path / "watchlist.yaml"
    path.write_text("repositories: [unclosed\n")
    assert load_watchlist(str(path)) == []


def test_validate_config_requires_token():
    assert "GITHUB_TOKEN is required" in validate_config(Config())
    assert validate_config(Config(github_token="t")) == []


def test_validate_config_email_all_or_nothing():
    errors = validate_config(Config(github_token="t", smtp_user="bot@example.com"))
    assert any("must be set together" in e for e in errors)

    config = Config(
        github_token="t",
        smtp_user="bot@example.com",
        smtp_app_password="pw",
        notify_recipient="sec@example.com",
    )
    assert validate_config(config) == []
    assert config.email_enabled is True


def test_validate_config_numeric_ranges():
    errors = validate_config(Config(github_token="t", github_advisory_limit=0, source_timeout_seconds=0))
    assert "GITHUB_ADVISORY_LIMIT must be between 1 and 100" in errors
    assert "SOURCE_TIMEOUT_SECONDS must be positive" in errors


def test_build_sources_is_fixed_tuple():
    config = Config(github_token="t", osv_api_url="https://osv.internal/v1/query", source_timeout_seconds=15)
    sources = build_sources(config)

    assert isinstance(sources, tuple)
    assert [type(s) for s in sources] == [OSVSource, GitHubAdvisorySource, CommunitySignalSource, KEVSource]
    assert sources[0].api_url == "https://osv.internal/v1/query"
    assert all(s.timeout_seconds == 15 for s in sources)
