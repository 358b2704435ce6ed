"""
CMMS - PM Engine Settings
=========================

Configuração do motor de manutenção preventiva.

Valores lidos de variáveis de ambiente (e de um ficheiro .env local, se existir).
Valores inválidos geram um warning e mantêm o default.

Configuração via variáveis de ambiente:
    CMMS_DATABASE_URL=sqlite:///cmms.db
    CMMS_LOOKAHEAD_DAYS=0
    CMMS_GRACE_PERIOD_DAYS=1
    CMMS_COMPLIANCE_WINDOW_DAYS=90
    CMMS_RUN_TIMEOUT_SECONDS=300
    CMMS_COMPLIANCE_TARGET_PERCENT=95
    CMMS_LOG_LEVEL=INFO
"""

from __future__ import annotations

import logging
import os
from dataclasses import asdict, dataclass
from typing import Any, Dict, Optional

from dotenv import load_dotenv

logger = logging.getLogger(__name__)

ENV_PREFIX = "CMMS_"


# ═══════════════════════════════════════════════════════════════════════════════
# SETTINGS
# ═══════════════════════════════════════════════════════════════════════════════

@dataclass
class PMEngineSettings:
    """
    Settings for the preventive maintenance engine.

    Defaults are the conservative values used when nothing is configured.
    """
    database_url: str = "sqlite:///cmms.db"

    # Schedule resolution
    lookahead_days: int = 0           # 0 = due only when the due date is today

    # Compliance
    grace_period_days: int = 1        # Late completions within this many days still count as on time
    compliance_window_days: int = 90
    compliance_target_percent: float = 95.0

    # Automation
    run_timeout_seconds: float = 300.0

    log_level: str = "INFO"

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _non_negative_int(value: str) -> int:
    parsed = int(value)
    if parsed < 0:
        raise ValueError(f"expected a non-negative integer, got {value}")
    return parsed


def _positive_float(value: str) -> float:
    parsed = float(value)
    if parsed <= 0:
        raise ValueError(f"expected a positive number, got {value}")
    return parsed


def _percent(value: str) -> float:
    parsed = float(value)
    if not 0.0 <= parsed <= 100.0:
        raise ValueError(f"expected a percentage between 0 and 100, got {value}")
    return parsed


def _log_level(value: str) -> str:
    level = value.upper()
    if level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
        raise ValueError(f"unknown log level {value}")
    return level


_ENV_MAPPING: Dict[str, tuple] = {
    "DATABASE_URL": ("database_url", str),
    "LOOKAHEAD_DAYS": ("lookahead_days", _non_negative_int),
    "GRACE_PERIOD_DAYS": ("grace_period_days", _non_negative_int),
    "COMPLIANCE_WINDOW_DAYS": ("compliance_window_days", _non_negative_int),
    "COMPLIANCE_TARGET_PERCENT": ("compliance_target_percent", _percent),
    "RUN_TIMEOUT_SECONDS": ("run_timeout_seconds", _positive_float),
    "LOG_LEVEL": ("log_level", _log_level),
}


def load_settings(environ: Optional[Dict[str, str]] = None) -> PMEngineSettings:
    """
    Build settings from environment variables.

    Args:
        environ: Mapping to read from. Defaults to ``os.environ`` after
            loading a local ``.env`` file.
    """
    if environ is None:
        load_dotenv()
        environ = dict(os.environ)

    settings = PMEngineSettings()

    for suffix, (attr_name, parser) in _ENV_MAPPING.items():
        env_var = f"{ENV_PREFIX}{suffix}"
        value = environ.get(env_var)
        if not value:
            continue
        try:
            setattr(settings, attr_name, parser(value))
            logger.debug(f"Setting {attr_name} = {value}")
        except ValueError:
            logger.warning(f"Invalid value for {env_var}: {value}")

    return settings


_settings: Optional[PMEngineSettings] = None


def get_settings() -> PMEngineSettings:
    """Get or load the settings singleton."""
    global _settings
    if _settings is None:
        _settings = load_settings()
    return _settings


def reset_settings() -> None:
    """Drop the cached settings so the next call reloads them."""
    global _settings
    _settings = None


def configure_logging(settings: Optional[PMEngineSettings] = None) -> None:
    """Configure root logging for the server process."""
    settings = settings or get_settings()
    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
