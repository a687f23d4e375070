"""Pydantic schemas for the PHI de-identification API."""

import re

from pydantic import BaseModel, Field, field_validator

from app.services.phi_deidentifier import DeidentificationLevel, DeidentificationOptions


class DeidentifyRequest(BaseModel):
    text: str = Field(..., max_length=100_000)
    level: DeidentificationLevel = DeidentificationLevel.STANDARD
    preserve_structure: bool = False
    hash_identifiers: bool = False
    custom_patterns: list[str] = Field(default_factory=list, max_length=20)
    allowed_terms: list[str] = Field(default_factory=list, max_length=100)

    @field_validator("custom_patterns")
    @classmethod
    def _compilable(cls, v: list[str]) -> list[str]:
        for pattern in v:
            if len(pattern) > 200:
                raise ValueError("custom pattern longer than 200 characters")
            try:
                re.compile(pattern)
            except re.error as e:
                raise ValueError(f"invalid custom pattern {pattern!r}: {e}")
        return v

    def to_options(self) -> DeidentificationOptions:
        return DeidentificationOptions(
            level=self.level,
            preserve_structure=self.preserve_structure,
            hash_identifiers=self.hash_identifiers,
            custom_patterns=tuple(re.compile(p) for p in self.custom_patterns),
            allowed_terms=tuple(self.allowed_terms),
        )


class ValidateRequest(BaseModel):
    text: str = Field(..., max_length=100_000)
