"""Tests for PHI de-identification."""

import re

import pytest

from app.models.audit import AuditLog
from app.services.phi_deidentifier import (
    DeidentificationLevel,
    DeidentificationOptions,
    deidentify,
    hashed_replacement,
    paranoid_deidentify,
    quick_deidentify,
    strict_deidentify,
    validate_deidentification,
)

from tests.conftest import added


class TestPatternPass:
    def test_ssn_removed(self):
        result = deidentify("SSN: 123-45-6789")
        assert "123-45-6789" not in result.text
        assert "[REDACTED]" in result.text
        assert result.redaction_types["ssn.standard"] == 1

    def test_email_with_typed_placeholder(self):
        result = deidentify(
            "Reply to jdoe@example.com today",
            DeidentificationOptions(preserve_structure=True),
        )
        assert result.text == "Reply to [EMAIL] today"
        assert result.redacted_count == 1

    def test_phone_number(self):
        text = quick_deidentify("Call 555-123-4567 after noon")
        assert "555-123-4567" not in text

    def test_url_and_ip(self):
        result = deidentify(
            "See https://portal.example.org/chart from 10.0.0.12",
            DeidentificationOptions(preserve_structure=True),
        )
        assert "[URL]" in result.text
        assert "[IP]" in result.text

    def test_titled_name(self):
        result = deidentify("Seen by Dr. Gregory House", DeidentificationOptions(preserve_structure=True))
        assert "House" not in result.text
        assert "[NAME]" in result.text

    def test_iso_and_hl7_dates(self):
        result = deidentify(
            "Admitted 2024-03-05T10:00:00Z, discharged 2024-03-09, MSH stamp 20240309083000, PID-7 value 19800115",
            DeidentificationOptions(preserve_structure=True),
        )
        assert result.text == "Admitted [DATE], discharged [DATE], MSH stamp [DATE], PID-7 value [DATE]"
        assert result.redaction_types["dates.iso_date"] == 2
        assert result.redaction_types["dates.hl7_date"] == 2

    def test_label_before_lowercase_word_is_not_a_name(self):
        result = deidentify(
            "Predict risk for a patient discharged home; nurse: Alice Walker",
            DeidentificationOptions(preserve_structure=True),
        )
        assert result.text == "Predict risk for a patient discharged home; [NAME]"

    def test_repeated_value_counted_once(self):
        result = deidentify("555-123-4567 and again 555-123-4567")
        assert result.redaction_types["phone.standard"] == 1
        assert "555" not in result.text

    def test_empty_text(self):
        result = deidentify("")
        assert result.text == ""
        assert result.redacted_count == 0
        assert result.confidence == 0.85


class TestHashing:
    def test_equal_values_share_token(self):
        result = deidentify(
            "Call 555-123-4567 or 555-123-4567",
            DeidentificationOptions(hash_identifiers=True),
        )
        tokens = re.findall(r"\[PHONE_[0-9A-Z]+\]", result.text)
        assert len(tokens) == 2
        assert tokens[0] == tokens[1]

    def test_hash_is_stable_and_case_insensitive_in_cache(self):
        cache: dict[str, str] = {}
        first = hashed_replacement("Value", "mrn", cache)
        assert hashed_replacement("value", "mrn", cache) == first
        assert hashed_replacement("Value", "mrn", {}) == first
        assert re.fullmatch(r"\[MRN_[0-9A-Z]{1,6}\]", first)


class TestLevels:
    def test_standard_keeps_dictionary_names(self):
        assert "Mary" in deidentify("Seen with Mary today").text

    def test_strict_removes_dictionary_names(self):
        result = strict_deidentify("Seen with Mary today")
        assert result.text == "Seen with [NAME] today"
        assert result.redaction_types["names.dictionary"] == 1

    def test_paranoid_generalizes_ages_over_89(self):
        result = paranoid_deidentify("Resident, 92 years old, fell at home")
        assert "[AGE_90+]" in result.text
        assert "92" not in result.text

    def test_paranoid_keeps_younger_ages(self):
        result = paranoid_deidentify("Resident, 75 years old, fell at home")
        assert "75 years old" in result.text

    def test_paranoid_affiliation_warning(self):
        result = deidentify(
            "She works at Acme Plastics",
            DeidentificationOptions(level=DeidentificationLevel.PARANOID, preserve_structure=True),
        )
        assert "Acme" not in result.text
        assert any("affiliation" in w for w in result.warnings)

    def test_confidence_increases_with_level(self):
        text = "stable overnight"
        assert (
            deidentify(text).confidence
            < strict_deidentify(text).confidence
            < paranoid_deidentify(text).confidence
        )


class TestOptions:
    def test_allowed_terms_skip_redaction(self):
        without = deidentify("Patient Jones reports pain")
        assert "Jones" not in without.text
        allowed = deidentify("Patient Jones reports pain", DeidentificationOptions(allowed_terms=("Jones",)))
        assert "Jones" in allowed.text

    def test_custom_patterns(self):
        result = deidentify(
            "Ref ZX-42 noted",
            DeidentificationOptions(custom_patterns=(re.compile(r"ZX-\d+"),)),
        )
        assert result.text == "Ref [CUSTOM_REDACTED] noted"
        assert result.redaction_types["custom.pattern0"] == 1

    def test_missed_phi_warning(self):
        result = deidentify("call me at the front desk")
        assert "Contact information reference detected" in result.warnings


class TestValidation:
    def test_clean_text_is_valid(self):
        report = validate_deidentification("Patient stable, vitals normal")
        assert report.is_valid
        assert report.risk_score == 0
        assert report.issues == []

    def test_residual_identifiers_are_scored(self):
        report = validate_deidentification("Call 555-123-4567, SSN 123-45-6789")
        assert not report.is_valid
        assert "Possible SSN detected" in report.issues
        assert "Possible phone number detected" in report.issues
        assert report.risk_score == 45

    def test_risk_is_capped(self):
        text = " ".join(["John Smith"] * 30) + " 123-45-6789 a@b.com"
        assert validate_deidentification(text).risk_score == 100


class TestRoutes:
    @pytest.mark.asyncio
    async def test_deidentify(self, client, auth_headers, mock_db):
        response = await client.post(
            "/api/phi/deidentify",
            json={"text": "Email jdoe@example.com", "preserve_structure": True, "level": "strict"},
            headers=auth_headers,
        )
        assert response.status_code == 200
        data = response.json()
        assert "[EMAIL]" in data["text"]
        assert data["redacted_count"] >= 1

        audit = added(mock_db, AuditLog)[0]
        assert audit.action == "phi.deidentified"
        assert "jdoe" not in str(audit.details)

    @pytest.mark.asyncio
    async def test_invalid_custom_pattern(self, client, auth_headers):
        response = await client.post(
            "/api/phi/deidentify",
            json={"text": "x", "custom_patterns": ["("]},
            headers=auth_headers,
        )
        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_validate(self, client, auth_headers):
        response = await client.post(
            "/api/phi/validate", json={"text": "SSN 123-45-6789"}, headers=auth_headers
        )
        assert response.status_code == 200
        assert response.json()["is_valid"] is False
