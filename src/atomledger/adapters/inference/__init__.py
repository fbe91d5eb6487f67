"""Inference adapters: HTTP client, prompts, candidate validation."""

from __future__ import annotations

from .adapter import InferenceAdapter, check_grounding
from .client import HttpInferenceService
from .schema import ATOM_SCHEMA, MOLECULE_SCHEMA, AtomCandidate, MoleculeCandidate

__all__ = [
    "ATOM_SCHEMA",
    "MOLECULE_SCHEMA",
    "AtomCandidate",
    "HttpInferenceService",
    "InferenceAdapter",
    "check_grounding",
    "MoleculeCandidate",
]
