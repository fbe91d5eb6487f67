"""Pydantic models describing inference request schemas and candidate payloads."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


def _strip(value: object) -> object:
    if isinstance(value, str):
        return value.strip()
    return value


def _blank_to_none(value: object) -> object:
    if isinstance(value, str):
        stripped = value.strip()
        return stripped or None
    return value


class InferenceBaseModel(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class SourceTestPayload(InferenceBaseModel):
    file_path: str = Field(alias="filePath", min_length=1)
    test_name: str = Field(alias="testName", min_length=1)
    line: int | None = None


class EvidenceRefPayload(InferenceBaseModel):
    file_path: str = Field(alias="filePath", min_length=1)
    symbol: str | None = None

    _normalize_symbol = field_validator("symbol", mode="before")(_blank_to_none)


class AtomCandidate(InferenceBaseModel):
    description: str = Field(min_length=1)
    category: str = Field(min_length=1)
    source_test: SourceTestPayload = Field(alias="sourceTest")
    observable_outcomes: list[str] = Field(alias="observableOutcomes", min_length=1)
    confidence: float = Field(ge=0.0, le=1.0)
    reasoning: str = ""
    source_evidence: list[EvidenceRefPayload] = Field(alias="sourceEvidence", min_length=1)
    ambiguity_reasons: list[str] = Field(default_factory=list, alias="ambiguityReasons")

    _normalize_text = field_validator("description", "category", mode="before")(_strip)

    @field_validator("observable_outcomes")
    @classmethod
    def _drop_blank_outcomes(cls, value: list[str]) -> list[str]:
        outcomes = [item.strip() for item in value if item.strip()]
        if not outcomes:
            raise ValueError("at least one non-blank observable outcome is required")
        return outcomes


class AtomCandidates(InferenceBaseModel):
    atoms: list[AtomCandidate]


class MoleculeCandidate(InferenceBaseModel):
    temp_id: str | None = Field(default=None, alias="tempId")
    name: str = Field(min_length=1)
    description: str = ""
    atom_temp_ids: list[str] = Field(alias="atomTempIds", min_length=1)
    confidence: float = Field(ge=0.0, le=1.0)
    reasoning: str = ""
    lens_type: str = Field(default="feature", alias="lensType")
    parent_temp_id: str | None = Field(default=None, alias="parentTempId")

    _normalize_ids = field_validator("temp_id", "parent_temp_id", mode="before")(_blank_to_none)


class MoleculeCandidates(InferenceBaseModel):
    molecules: list[MoleculeCandidate]


class InferenceEnvelope(InferenceBaseModel):
    """Service response body; ``result`` holds the structured output."""

    result: dict[str, Any] | None = None
    refusal: str | None = None
    error: str | None = None


ATOM_SCHEMA: dict[str, Any] = AtomCandidates.model_json_schema(by_alias=True)
MOLECULE_SCHEMA: dict[str, Any] = MoleculeCandidates.model_json_schema(by_alias=True)
