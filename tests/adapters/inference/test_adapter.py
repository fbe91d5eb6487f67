from __future__ import annotations

import asyncio

import pytest

from atomledger.adapters.inference import InferenceAdapter
from atomledger.domain.errors import InferenceFailedError, TransientInferenceError
from atomledger.domain.ports import InferenceFailureKind
from tests.helpers.atoms import make_inferred_atom
from tests.helpers.evidence import make_inventory, make_test, orphan_tests
from tests.helpers.inference import (
    ScriptedInferenceService,
    atom_payload,
    failure,
    molecule_payload,
    no_sleep,
    success,
)


def test_retryable_failures_are_retried_with_backoff() -> None:
    orphans = orphan_tests(1)
    service = ScriptedInferenceService(
        atom_outcomes=[failure(), failure(), success(atoms=[atom_payload(orphans[0])])]
    )
    delays: list[float] = []

    async def record(delay: float) -> None:
        delays.append(delay)

    adapter = InferenceAdapter(service, sleep=record, rng=lambda: 0.0)

    result = asyncio.run(adapter.infer_atoms(orphans, evidence=make_inventory(orphans)))

    assert [atom.temp_id for atom in result.atoms] == ["atom-1"]
    assert service.count("atoms") == 3
    assert delays == [0.5, 1.0]


def test_exhausted_retries_raise_transient_error() -> None:
    orphans = orphan_tests(1)
    service = ScriptedInferenceService(atom_outcomes=[failure(InferenceFailureKind.TIMEOUT)])
    adapter = InferenceAdapter(service, sleep=no_sleep)

    with pytest.raises(TransientInferenceError) as excinfo:
        asyncio.run(adapter.infer_atoms(orphans, evidence=make_inventory(orphans)))

    assert excinfo.value.attempts == 3
    assert "timeout" in str(excinfo.value)
    assert service.count("atoms") == 3


def test_non_retryable_failure_is_not_retried() -> None:
    orphans = orphan_tests(1)
    service = ScriptedInferenceService(
        atom_outcomes=[failure(InferenceFailureKind.INVALID_REQUEST, retryable=False)]
    )
    adapter = InferenceAdapter(service, sleep=no_sleep)

    with pytest.raises(InferenceFailedError) as excinfo:
        asyncio.run(adapter.infer_atoms(orphans, evidence=make_inventory(orphans)))

    assert excinfo.value.kind == InferenceFailureKind.INVALID_REQUEST
    assert service.count("atoms") == 1


def test_response_without_candidate_list_is_malformed() -> None:
    orphans = orphan_tests(1)
    service = ScriptedInferenceService(atom_outcomes=[success(result="nothing to see")])
    adapter = InferenceAdapter(service, sleep=no_sleep)

    with pytest.raises(InferenceFailedError) as excinfo:
        asyncio.run(adapter.infer_atoms(orphans, evidence=make_inventory(orphans)))

    assert excinfo.value.kind == InferenceFailureKind.MALFORMED_RESPONSE


def test_ungrounded_and_invalid_candidates_are_rejected() -> None:
    orphans = orphan_tests(2)
    evidence = make_inventory(orphans)
    never_sent = make_test("test_elsewhere", file_path="tests/test_refunds.py")
    service = ScriptedInferenceService(
        atom_outcomes=[
            success(
                atoms=[
                    atom_payload(orphans[0]),
                    atom_payload(never_sent),
                    atom_payload(orphans[1], evidence_file="src/missing.py"),
                    atom_payload(orphans[1], symbol="test_not_there"),
                    atom_payload(orphans[1], confidence=1.5),
                    atom_payload(orphans[1], outcomes=["   "]),
                ]
            )
        ]
    )
    adapter = InferenceAdapter(service, sleep=no_sleep)

    result = asyncio.run(adapter.infer_atoms(orphans, evidence=evidence))

    assert [atom.temp_id for atom in result.atoms] == ["atom-1"]
    reasons = {rejection.temp_id: rejection.reason for rejection in result.rejected}
    assert "was not among the tests sent" in reasons["atom-2"]
    assert "unknown file src/missing.py" in reasons["atom-3"]
    assert "unknown symbol test_not_there" in reasons["atom-4"]
    assert "confidence" in reasons["atom-5"]
    assert "observable" in reasons["atom-6"]


def test_grounded_candidate_keeps_its_evidence() -> None:
    (orphan,) = orphan_tests(1)
    payload = atom_payload(orphan, evidence_file="src/checkout.py", ambiguity=["Unclear rounding"])
    payload["sourceEvidence"][0]["symbol"] = "  "
    service = ScriptedInferenceService(atom_outcomes=[success(atoms=[payload])])
    adapter = InferenceAdapter(service, sleep=no_sleep)

    result = asyncio.run(adapter.infer_atoms([orphan], evidence=make_inventory([orphan])))

    (atom,) = result.atoms
    assert atom.source_test.test_name == orphan.test_name
    assert atom.source_evidence[0].file_path == "src/checkout.py"
    assert atom.source_evidence[0].symbol is None
    assert atom.ambiguity_reasons == ("Unclear rounding",)


def test_orphans_are_sent_in_batches() -> None:
    orphans = orphan_tests(5)
    service = ScriptedInferenceService()
    adapter = InferenceAdapter(service, batch_size=2, sleep=no_sleep)

    result = asyncio.run(adapter.infer_atoms(orphans, evidence=make_inventory(orphans)))

    assert result.atoms == ()
    assert service.count("atoms") == 3


def test_molecule_candidates_are_cleaned_up() -> None:
    atoms = [make_inferred_atom("atom-1"), make_inferred_atom("atom-2")]
    service = ScriptedInferenceService(
        molecule_outcomes=[
            success(
                molecules=[
                    molecule_payload(["atom-1", "atom-9"], temp_id="mol-a"),
                    {"name": "", "atomTempIds": ["atom-1"], "confidence": 0.5},
                    molecule_payload(["atom-9"], temp_id="mol-b"),
                    molecule_payload(["atom-2", "atom-2"], temp_id="mol-a", parent="mol-a"),
                    molecule_payload(["atom-2"], temp_id="mol-c", parent="mol-c"),
                ]
            )
        ]
    )
    adapter = InferenceAdapter(service, sleep=no_sleep)

    molecules = asyncio.run(adapter.synthesize_molecules(atoms))

    assert [molecule.temp_id for molecule in molecules] == ["mol-a", "molecule-4", "mol-c"]
    assert molecules[0].atom_temp_ids == ("atom-1",)
    assert molecules[1].atom_temp_ids == ("atom-2",)
    assert molecules[1].parent_temp_id == "mol-a"
    assert molecules[2].parent_temp_id is None


def test_no_atoms_means_no_molecule_call() -> None:
    service = ScriptedInferenceService()
    adapter = InferenceAdapter(service, sleep=no_sleep)

    assert asyncio.run(adapter.synthesize_molecules([])) == ()
    assert service.calls == []


def test_backoff_delay_is_capped_and_jittered() -> None:
    adapter = InferenceAdapter(ScriptedInferenceService(), rng=lambda: 0.0)

    assert adapter.backoff_delay(0) == 0.5
    assert adapter.backoff_delay(1) == 1.0
    assert adapter.backoff_delay(10) == 8.0

    jittered = InferenceAdapter(ScriptedInferenceService(), rng=lambda: 1.0)
    assert jittered.backoff_delay(0) == 0.75
