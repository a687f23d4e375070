"""Tests for application settings."""

import warnings

import pytest
from pydantic import ValidationError

from app.config import Settings

CONFIGURED = {
    "api_key": "secret",
    "database_url": "postgresql+asyncpg://wellfit:pw@db:5432/wellfit",
}


def test_unconfigured_credentials_warn():
    with pytest.warns(UserWarning, match="API_KEY not configured"):
        Settings(_env_file=None, api_key="CHANGE_ME", database_url=CONFIGURED["database_url"])


def test_unconfigured_database_warns():
    with pytest.warns(UserWarning, match="DATABASE_URL not configured"):
        Settings(_env_file=None, api_key="secret", database_url="postgresql+asyncpg://u:CHANGE_ME@h/db")


def test_configured_settings_do_not_warn():
    with warnings.catch_warnings():
        warnings.simplefilter("error")
        settings = Settings(_env_file=None, hl7_mllp_enabled=False, **CONFIGURED)
    assert settings.mpi_match_threshold == 75.0
    assert settings.mpi_auto_merge_threshold == 98.0


def test_mllp_without_default_tenant_warns():
    with pytest.warns(UserWarning, match="HL7_DEFAULT_TENANT_ID"):
        Settings(_env_file=None, hl7_mllp_enabled=True, hl7_default_tenant_id="", **CONFIGURED)


def test_environment_overrides(monkeypatch):
    monkeypatch.setenv("HL7_MLLP_PORT", "6661")
    monkeypatch.setenv("MPI_MATCH_THRESHOLD", "80")
    settings = Settings(_env_file=None, **CONFIGURED)
    assert settings.hl7_mllp_port == 6661
    assert settings.mpi_match_threshold == 80.0


def test_llm_deidentification_cannot_drop_below_strict():
    assert Settings(_env_file=None, **CONFIGURED).phi_deidentification_level == "strict"
    with pytest.raises(ValidationError):
        Settings(_env_file=None, phi_deidentification_level="standard", **CONFIGURED)
