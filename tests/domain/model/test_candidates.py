from __future__ import annotations

import dataclasses

import pytest

from atomledger.domain.model import DEGRADED_MOLECULE_NAME, InferredAtom, InferredMolecule
from tests.helpers.atoms import make_inferred_atom, make_inferred_molecule


def test_inferred_atom_is_frozen() -> None:
    atom = make_inferred_atom()
    with pytest.raises(dataclasses.FrozenInstanceError):
        atom.confidence = 0.1  # type: ignore[misc]


@pytest.mark.parametrize(
    ("changes", "message"),
    [
        ({"confidence": 1.5}, "confidence"),
        ({"observable_outcomes": ()}, "observable outcomes"),
        ({"source_evidence": ()}, "source evidence"),
    ],
)
def test_inferred_atom_validates_on_creation(changes: dict[str, object], message: str) -> None:
    with pytest.raises(ValueError, match=message):
        dataclasses.replace(make_inferred_atom(), **changes)


def test_inferred_atom_payload_keeps_evidence() -> None:
    atom = make_inferred_atom(ambiguity=("currency unclear",))

    restored = InferredAtom.from_payload(atom.to_payload())

    assert restored == atom


def test_molecule_needs_members() -> None:
    with pytest.raises(ValueError, match="references no atoms"):
        make_inferred_molecule(())


def test_degraded_molecule_keeps_membership() -> None:
    molecule = make_inferred_molecule(("atom-1", "atom-2"), name="Misc group")

    degraded = molecule.degraded(["Molecule name is too generic"])

    assert degraded.name == DEGRADED_MOLECULE_NAME
    assert degraded.confidence == 0.0
    assert degraded.is_degraded
    assert degraded.atom_temp_ids == molecule.atom_temp_ids
    assert degraded.temp_id == molecule.temp_id
    assert "Misc group" in degraded.description
    assert degraded.reasoning.startswith("[Degraded]")
    assert InferredMolecule.from_payload(degraded.to_payload()) == degraded
