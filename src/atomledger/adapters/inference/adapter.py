"""Atom inference on top of an ``InferenceService``.

Orphan tests are sent in batches. Every returned candidate is validated on its
own and checked against the manifest before it becomes an ``InferredAtom``;
invalid or ungrounded candidates are dropped and reported as rejections.
"""

from __future__ import annotations

import asyncio
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from itertools import batched
from logging import getLogger
from typing import TYPE_CHECKING, Any

from pydantic import ValidationError as PydanticValidationError

from atomledger.domain.errors import (
    EvidenceGroundingError,
    InferenceFailedError,
    TransientInferenceError,
)
from atomledger.domain.model import EvidenceRef, InferredAtom, InferredMolecule, SourceTestRef
from atomledger.domain.ports import (
    AtomInferenceResult,
    CandidateRejection,
    InferenceFailure,
    InferenceFailureKind,
    InferenceSuccess,
)

from .prompts import build_atom_prompt, build_molecule_prompt
from .schema import ATOM_SCHEMA, MOLECULE_SCHEMA, AtomCandidate, MoleculeCandidate

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence

    from atomledger.domain.model import EvidenceInventory, TestEvidence
    from atomledger.domain.ports import InferenceService

log = getLogger(__name__)


def _candidates(payload: Mapping[str, Any], key: str) -> list[Any]:
    items = payload.get(key)
    if not isinstance(items, list):
        raise InferenceFailedError(
            f"Inference response has no '{key}' list",
            kind=InferenceFailureKind.MALFORMED_RESPONSE,
        )
    return items


def _describe(exc: PydanticValidationError) -> str:
    first = exc.errors()[0]
    location = ".".join(str(part) for part in first["loc"]) or "candidate"
    return f"invalid candidate ({exc.error_count()} error(s)); {location}: {first['msg']}"


def check_grounding(
    temp_id: str,
    candidate: AtomCandidate,
    *,
    sent: set[tuple[str, str]],
    evidence: EvidenceInventory,
) -> None:
    """Raise ``EvidenceGroundingError`` unless every reference resolves in the manifest."""

    source = (candidate.source_test.file_path, candidate.source_test.test_name)
    if source not in sent:
        raise EvidenceGroundingError(
            temp_id, f"source test {source[0]}::{source[1]} was not among the tests sent"
        )
    known = evidence.known_files()
    for ref in candidate.source_evidence:
        if ref.file_path not in known:
            raise EvidenceGroundingError(temp_id, f"unknown file {ref.file_path}")
        if ref.symbol is not None and ref.symbol not in evidence.symbols_in(ref.file_path):
            raise EvidenceGroundingError(
                temp_id, f"unknown symbol {ref.symbol} in {ref.file_path}"
            )


def _to_atom(temp_id: str, candidate: AtomCandidate) -> InferredAtom:
    return InferredAtom(
        temp_id=temp_id,
        description=candidate.description,
        category=candidate.category,
        source_test=SourceTestRef(
            file_path=candidate.source_test.file_path,
            test_name=candidate.source_test.test_name,
            line=candidate.source_test.line,
        ),
        observable_outcomes=tuple(candidate.observable_outcomes),
        confidence=candidate.confidence,
        reasoning=candidate.reasoning,
        source_evidence=tuple(
            EvidenceRef(file_path=ref.file_path, symbol=ref.symbol)
            for ref in candidate.source_evidence
        ),
        ambiguity_reasons=tuple(candidate.ambiguity_reasons),
    )


@dataclass(slots=True)
class InferenceAdapter:
    service: InferenceService
    attempts: int = 3
    backoff_factor: float = 0.5
    max_backoff: float = 8.0
    jitter: float = 0.25
    batch_size: int = 10
    sleep: Callable[[float], Awaitable[None]] = field(default=asyncio.sleep)
    rng: Callable[[], float] = field(default=random.random)

    def backoff_delay(self, attempt: int) -> float:
        return min(self.max_backoff, self.backoff_factor * 2**attempt) + self.rng() * self.jitter

    async def infer_atoms(
        self,
        orphans: Sequence[TestEvidence],
        *,
        evidence: EvidenceInventory,
    ) -> AtomInferenceResult:
        atoms: list[InferredAtom] = []
        rejected: list[CandidateRejection] = []

        for batch in batched(orphans, self.batch_size):
            payload = await self._call(build_atom_prompt(batch, evidence), ATOM_SCHEMA)
            sent = {test.key for test in batch}
            for item in _candidates(payload, "atoms"):
                temp_id = f"atom-{len(atoms) + len(rejected) + 1}"
                try:
                    candidate = AtomCandidate.model_validate(item)
                    check_grounding(temp_id, candidate, sent=sent, evidence=evidence)
                except PydanticValidationError as exc:
                    log.info("Rejected %s: %s", temp_id, _describe(exc))
                    rejected.append(CandidateRejection(temp_id, _describe(exc)))
                    continue
                except EvidenceGroundingError as exc:
                    log.warning("%s", exc)
                    rejected.append(CandidateRejection(temp_id, exc.reason))
                    continue
                atoms.append(_to_atom(temp_id, candidate))

        log.info(
            "Inferred %s atom(s) from %s orphan test(s); %s rejected",
            len(atoms),
            len(orphans),
            len(rejected),
        )
        return AtomInferenceResult(atoms=tuple(atoms), rejected=tuple(rejected))

    async def synthesize_molecules(
        self,
        atoms: Sequence[InferredAtom],
    ) -> tuple[InferredMolecule, ...]:
        if not atoms:
            return ()
        payload = await self._call(build_molecule_prompt(atoms), MOLECULE_SCHEMA)
        known = {atom.temp_id for atom in atoms}

        candidates: list[tuple[str, MoleculeCandidate, tuple[str, ...]]] = []
        taken: set[str] = set()
        for index, item in enumerate(_candidates(payload, "molecules"), start=1):
            try:
                candidate = MoleculeCandidate.model_validate(item)
            except PydanticValidationError as exc:
                log.info("Dropped molecule candidate %s: %s", index, _describe(exc))
                continue
            members = tuple(dict.fromkeys(t for t in candidate.atom_temp_ids if t in known))
            if not members:
                log.info("Dropped molecule %r: it references no known atoms", candidate.name)
                continue
            if len(members) != len(candidate.atom_temp_ids):
                log.info("Molecule %r lost references to unknown atoms", candidate.name)
            temp_id = candidate.temp_id
            if temp_id is None or temp_id in taken:
                temp_id = f"molecule-{index}"
            taken.add(temp_id)
            candidates.append((temp_id, candidate, members))

        return tuple(
            InferredMolecule(
                temp_id=temp_id,
                name=candidate.name,
                description=candidate.description,
                atom_temp_ids=members,
                confidence=candidate.confidence,
                reasoning=candidate.reasoning,
                lens_type=candidate.lens_type,
                parent_temp_id=(
                    candidate.parent_temp_id
                    if candidate.parent_temp_id in taken and candidate.parent_temp_id != temp_id
                    else None
                ),
            )
            for temp_id, candidate, members in candidates
        )

    async def _call(self, prompt: str, schema: Mapping[str, Any]) -> Mapping[str, Any]:
        last: InferenceFailure | None = None
        for attempt in range(self.attempts):
            match await self.service.infer(prompt, schema):
                case InferenceSuccess(payload=payload):
                    return payload
                case InferenceFailure(retryable=False) as failure:
                    raise InferenceFailedError(
                        failure.message or f"Inference failed: {failure.kind}",
                        kind=failure.kind,
                    )
                case InferenceFailure() as failure:
                    last = failure
                    if attempt + 1 < self.attempts:
                        delay = self.backoff_delay(attempt)
                        log.warning(
                            "Inference attempt %s/%s failed (%s); retrying in %.2fs",
                            attempt + 1,
                            self.attempts,
                            failure.kind,
                            delay,
                        )
                        await self.sleep(delay)
                case other:
                    raise TypeError(f"Unexpected inference outcome: {other!r}")

        kind = last.kind if last is not None else "unknown"
        raise TransientInferenceError(
            f"Inference still failing after {self.attempts} attempt(s): {kind}",
            attempts=self.attempts,
        )
