from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Tuple

from dotenv import load_dotenv
from pydantic import ValidationError

from .core.cache import CacheTTL
from .core.data_models import AppConfig, ConfigDefaults, Connection
from .core.errors import ConfigError

load_dotenv()

logger = logging.getLogger("bankfeed.config")

DEFAULT_CONFIG_PATH = "~/.bankfeed/config.json"
MOCK_CONNECTION_ID = "mock"


def _parse_delays(raw: str) -> Tuple[float, ...]:
    return tuple(float(part) for part in raw.split(",") if part.strip())


def _flag(raw: Optional[str]) -> bool:
    return (raw or "").strip().lower() in ("1", "true", "yes", "on")


class Settings:
    """Runtime settings, read from the environment (and a local .env)."""

    def __init__(self) -> None:
        self.config_path: Path = Path(os.getenv("BANKFEED_CONFIG", DEFAULT_CONFIG_PATH)).expanduser()
        self.mock: bool = _flag(os.getenv("BANKFEED_MOCK", "0"))
        self.ttl_accounts: float = float(os.getenv("BANKFEED_TTL_ACCOUNTS", "3600"))
        self.ttl_transactions: float = float(os.getenv("BANKFEED_TTL_TRANSACTIONS", "900"))
        self.ttl_balances: float = float(os.getenv("BANKFEED_TTL_BALANCES", "300"))
        self.cache_size: int = int(os.getenv("BANKFEED_CACHE_SIZE", "1024"))
        self.max_concurrency: int = int(os.getenv("BANKFEED_MAX_CONCURRENCY", "4"))
        self.request_timeout: float = float(os.getenv("BANKFEED_REQUEST_TIMEOUT", "30"))
        self.aggregate_timeout: float = float(os.getenv("BANKFEED_AGGREGATE_TIMEOUT", "120"))
        self.rate_limit_delays: Tuple[float, ...] = _parse_delays(os.getenv("BANKFEED_RATE_LIMIT_DELAYS", "5,15,30"))
        self.transaction_days: int = int(os.getenv("BANKFEED_TRANSACTION_DAYS", "90"))
        self.default_currency: str = os.getenv("BANKFEED_DEFAULT_CURRENCY", "PLN")

    @property
    def cache_ttl(self) -> CacheTTL:
        return CacheTTL(
            accounts=self.ttl_accounts,
            transactions=self.ttl_transactions,
            balances=self.ttl_balances,
        )


settings = Settings()


def expand_paths(config: Mapping[str, Any]) -> Dict[str, Any]:
    """Expand a leading ``~`` in string values to the home directory."""
    home = str(Path.home())
    return {
        key: home + value[1:] if isinstance(value, str) and value.startswith("~") else value
        for key, value in config.items()
    }


def mock_config(current: Optional[Settings] = None) -> AppConfig:
    current = current or settings
    return AppConfig(
        version=1,
        connections=[Connection(id=MOCK_CONNECTION_ID, provider="mock", label="Mock Bank (Demo)", config={})],
        defaults=ConfigDefaults(transaction_days=current.transaction_days, currency=current.default_currency),
    )


def load_app_config(current: Optional[Settings] = None) -> AppConfig:
    """Read the connection file. It is never written from here."""
    current = current or settings
    if current.mock:
        logger.info("Mock mode: serving the synthetic mock connection")
        return mock_config(current)

    path = current.config_path
    if not path.exists():
        logger.info("No connection file at %s, starting with zero connections", path)
        return AppConfig(
            defaults=ConfigDefaults(transaction_days=current.transaction_days, currency=current.default_currency)
        )

    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as exc:
        raise ConfigError("connection file", [f"{path}: {exc}"]) from exc

    try:
        app_config = AppConfig.model_validate(raw)
    except ValidationError as exc:
        problems = [
            ".".join(str(part) for part in error["loc"]) + f": {error['msg']}" for error in exc.errors()
        ]
        raise ConfigError("connection file", problems) from exc

    for connection in app_config.connections:
        connection.config = expand_paths(connection.config)
    logger.info("Loaded %d connections from %s", len(app_config.connections), path)
    return app_config
