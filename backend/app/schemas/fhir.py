"""Pydantic schemas for the FHIR API."""

from pydantic import BaseModel


class BundleLoadResponse(BaseModel):
    """Response from loading a FHIR bundle."""

    message: str
    resources_loaded: int
