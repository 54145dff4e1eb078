"""Settings from the environment and the read-only connection file."""
import asyncio
import datetime as dt
import json
from pathlib import Path

import pytest

from bankfeed.config import MOCK_CONNECTION_ID, Settings, expand_paths, load_app_config
from bankfeed.core.errors import ConfigError
from bankfeed.services.aggregator import Aggregator
from bankfeed.services.insights import spending_summary


def test_defaults(monkeypatch):
    for name in ("BANKFEED_TTL_ACCOUNTS", "BANKFEED_RATE_LIMIT_DELAYS", "BANKFEED_MOCK"):
        monkeypatch.delenv(name, raising=False)
    settings = Settings()
    assert settings.cache_ttl.accounts == 3600
    assert settings.cache_ttl.transactions == 900
    assert settings.cache_ttl.balances == 300
    assert settings.rate_limit_delays == (5.0, 15.0, 30.0)
    assert settings.mock is False


def test_environment_overrides(monkeypatch):
    monkeypatch.setenv("BANKFEED_TTL_BALANCES", "60")
    monkeypatch.setenv("BANKFEED_RATE_LIMIT_DELAYS", "1, 2")
    monkeypatch.setenv("BANKFEED_MAX_CONCURRENCY", "8")
    settings = Settings()
    assert settings.cache_ttl.balances == 60
    assert settings.rate_limit_delays == (1.0, 2.0)
    assert settings.max_concurrency == 8


def test_missing_file_means_no_connections(monkeypatch, tmp_path):
    monkeypatch.delenv("BANKFEED_MOCK", raising=False)
    monkeypatch.setenv("BANKFEED_CONFIG", str(tmp_path / "absent.json"))
    assert load_app_config(Settings()).connections == []


def test_mock_mode_serves_one_demo_connection(monkeypatch):
    monkeypatch.setenv("BANKFEED_MOCK", "1")
    app_config = load_app_config(Settings())
    assert [(c.id, c.provider) for c in app_config.connections] == [(MOCK_CONNECTION_ID, "mock")]


def test_connection_file_is_parsed_and_paths_expanded(monkeypatch, tmp_path):
    path = tmp_path / "config.json"
    path.write_text(
        json.dumps(
            {
                "version": 1,
                "connections": [
                    {
                        "id": "eb-nordea",
                        "provider": "enable-banking",
                        "label": "Nordea",
                        "config": {"appId": "a", "privateKeyPath": "~/keys/eb.pem", "sessionId": "s"},
                    }
                ],
                "defaults": {"transactionDays": 30, "currency": "EUR"},
            }
        ),
        encoding="utf-8",
    )
    monkeypatch.delenv("BANKFEED_MOCK", raising=False)
    monkeypatch.setenv("BANKFEED_CONFIG", str(path))
    before = path.read_text(encoding="utf-8")

    app_config = load_app_config(Settings())

    connection = app_config.connections[0]
    assert connection.provider == "enable-banking"
    assert connection.config["privateKeyPath"] == str(Path.home()) + "/keys/eb.pem"
    assert app_config.defaults.transaction_days == 30
    assert path.read_text(encoding="utf-8") == before


def test_broken_file_is_a_config_error(monkeypatch, tmp_path):
    path = tmp_path / "config.json"
    path.write_text("{not json", encoding="utf-8")
    monkeypatch.delenv("BANKFEED_MOCK", raising=False)
    monkeypatch.setenv("BANKFEED_CONFIG", str(path))
    with pytest.raises(ConfigError):
        load_app_config(Settings())


def test_invalid_connection_names_the_field(monkeypatch, tmp_path):
    path = tmp_path / "config.json"
    path.write_text(json.dumps({"connections": [{"provider": "plaid"}]}), encoding="utf-8")
    monkeypatch.delenv("BANKFEED_MOCK", raising=False)
    monkeypatch.setenv("BANKFEED_CONFIG", str(path))
    with pytest.raises(ConfigError) as excinfo:
        load_app_config(Settings())
    assert "connections.0.id" in excinfo.value.message


def test_expand_paths_only_touches_tilde_strings():
    expanded = expand_paths({"path": "~/x.pem", "count": 3, "plain": "abc"})
    assert expanded == {"path": str(Path.home()) + "/x.pem", "count": 3, "plain": "abc"}


def _demo_file(tmp_path, defaults):
    path = tmp_path / "config.json"
    path.write_text(
        json.dumps({"connections": [{"id": "demo", "provider": "mock"}], "defaults": defaults}),
        encoding="utf-8",
    )
    return path


def test_file_defaults_drive_the_window_and_currency(monkeypatch, tmp_path):
    path = _demo_file(tmp_path, {"transactionDays": 30, "currency": "EUR"})
    monkeypatch.delenv("BANKFEED_MOCK", raising=False)
    monkeypatch.setenv("BANKFEED_CONFIG", str(path))
    monkeypatch.setenv("BANKFEED_TRANSACTION_DAYS", "90")

    aggregator = Aggregator.from_settings(Settings())

    window = aggregator.window()
    assert window.date_to - window.date_from == dt.timedelta(days=30)
    assert aggregator.default_currency == "EUR"
    future = window.date_to + dt.timedelta(days=1)
    summary = asyncio.run(spending_summary(aggregator, date_from=future, date_to=future))
    assert summary.currency == "EUR"


def test_missing_file_defaults_fall_back_to_the_environment(monkeypatch, tmp_path):
    path = _demo_file(tmp_path, {"transactionDays": 14})
    monkeypatch.delenv("BANKFEED_MOCK", raising=False)
    monkeypatch.setenv("BANKFEED_CONFIG", str(path))
    monkeypatch.setenv("BANKFEED_DEFAULT_CURRENCY", "SEK")

    aggregator = Aggregator.from_settings(Settings())

    window = aggregator.window()
    assert window.date_to - window.date_from == dt.timedelta(days=14)
    assert aggregator.default_currency == "SEK"
