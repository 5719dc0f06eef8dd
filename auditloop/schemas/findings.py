"""Pydantic schemas for auditor findings: strict validation before anything is persisted."""

import json

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator

from auditloop.schemas.enums import SEVERITY_VALUES, SeverityLevel


def _normalize_path(value: str) -> str:
    """Project-relative, forward-slash path without a leading './'."""
    path = value.strip().replace("\\", "/")
    while path.startswith("./"):
        path = path[2:]
    return path


class Finding(BaseModel):
    """
    One issue reported by the auditor.

    Unknown or missing fields are rejected rather than defaulted.
    """

    model_config = ConfigDict(extra="forbid")

    description: str = Field(..., min_length=1, description="What is wrong.")
    rule: str = Field(..., min_length=1, description="Name of the violated policy rule.")
    severity: SeverityLevel = Field(..., description="high, medium or low.")
    suggestion: str = Field(..., description="How to fix it.")
    policy: str = Field(..., min_length=1, description="Policy the rule belongs to.")
    files: list[str] = Field(
        ...,
        min_length=1,
        description="Project-relative paths of the files the issue touches.",
    )

    @field_validator("severity", mode="before")
    @classmethod
    def validate_severity(cls, v: object) -> object:
        if isinstance(v, str) and v.strip().lower() in SEVERITY_VALUES:
            return v.strip().lower()
        return v

    @field_validator("files")
    @classmethod
    def validate_files(cls, v: list[str]) -> list[str]:
        paths = [_normalize_path(p) for p in v]
        if any(not p for p in paths):
            raise ValueError("files must not contain empty paths")
        # Keep first occurrence order, drop duplicates.
        return list(dict.fromkeys(paths))


_FINDINGS_ADAPTER = TypeAdapter(list[Finding])


def parse_findings(payload: str | bytes | list | dict) -> list[Finding]:
    """
    Validate an auditor payload into findings.

    Accepts a JSON array, an object with a 'findings' array, or already-decoded data.
    Raises ValueError (including pydantic ValidationError) on malformed input.
    """
    data = json.loads(payload) if isinstance(payload, (str, bytes)) else payload
    if isinstance(data, dict):
        if set(data) != {"findings"}:
            raise ValueError("auditor output object must have exactly one key: 'findings'")
        data = data["findings"]
    if not isinstance(data, list):
        raise ValueError("auditor output must be a JSON array of findings")
    return _FINDINGS_ADAPTER.validate_python(data)
