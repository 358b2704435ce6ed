"""
Testes para a configuração do motor PM (K1-K2)
"""
import logging

import pytest

from cmms.settings import PMEngineSettings, get_settings, load_settings, reset_settings


class TestK1_Defaults:
    """K1: Valores por omissão."""

    def test_defaults(self):
        """K1.1: Sem variáveis usa os defaults."""
        settings = load_settings({})

        assert settings == PMEngineSettings()
        assert settings.lookahead_days == 0
        assert settings.grace_period_days == 1
        assert settings.compliance_window_days == 90
        assert settings.run_timeout_seconds == 300.0
        assert settings.compliance_target_percent == 95.0

    def test_singleton_reset(self, monkeypatch):
        """K1.2: reset_settings força nova leitura."""
        monkeypatch.setenv("CMMS_LOOKAHEAD_DAYS", "3")
        reset_settings()
        try:
            assert get_settings().lookahead_days == 3
            assert get_settings() is get_settings()
        finally:
            reset_settings()


class TestK2_Environment:
    """K2: Variáveis de ambiente."""

    def test_reads_prefixed_variables(self):
        """K2.1: Lê variáveis CMMS_*."""
        settings = load_settings({
            "CMMS_DATABASE_URL": "postgresql://cmms@db/cmms",
            "CMMS_GRACE_PERIOD_DAYS": "0",
            "CMMS_RUN_TIMEOUT_SECONDS": "12.5",
            "CMMS_COMPLIANCE_TARGET_PERCENT": "90",
            "CMMS_LOG_LEVEL": "debug",
        })

        assert settings.database_url == "postgresql://cmms@db/cmms"
        assert settings.grace_period_days == 0
        assert settings.run_timeout_seconds == 12.5
        assert settings.compliance_target_percent == 90.0
        assert settings.log_level == "DEBUG"

    @pytest.mark.parametrize("name,value", [
        ("CMMS_LOOKAHEAD_DAYS", "-2"),
        ("CMMS_RUN_TIMEOUT_SECONDS", "0"),
        ("CMMS_COMPLIANCE_TARGET_PERCENT", "120"),
        ("CMMS_GRACE_PERIOD_DAYS", "abc"),
        ("CMMS_LOG_LEVEL", "loud"),
    ])
    def test_invalid_values_keep_default(self, name, value, caplog):
        """K2.2: Valor inválido gera warning e mantém o default."""
        with caplog.at_level(logging.WARNING, logger="cmms.settings"):
            settings = load_settings({name: value})

        assert settings == PMEngineSettings()
        assert name in caplog.text
