"""Prompt text for atom inference and molecule synthesis."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Sequence

    from atomledger.domain.model import EvidenceInventory, InferredAtom, TestEvidence

_MAX_BODY_CHARS = 4000
_MAX_RELATED_SYMBOLS = 20

ATOM_INSTRUCTIONS = """\
You infer Intent Atoms from automated tests. An Intent Atom is one testable
statement of behaviour the product is meant to have.

Rules:
- Describe WHAT the system does, never HOW it is implemented.
- Every observable outcome must be something a user or caller can observe.
- sourceTest must name one of the tests listed below, exactly as given.
- Every sourceEvidence entry must reference a file (and optionally a symbol)
  listed below. Do not invent files or symbols.
- List anything you are unsure about in ambiguityReasons.
- Confidence is a number between 0 and 1.

Respond with JSON matching the supplied schema only.
"""

MOLECULE_INSTRUCTIONS = """\
You group Intent Atoms into Molecules: named lenses such as a user story or
product feature. Names are 2-5 words describing a product capability, not a
code module. Every atomTempIds entry must be one of the atom ids listed below.
Use parentTempId only to nest a molecule under another molecule you return.

Respond with JSON matching the supplied schema only.
"""


def _format_test(test: TestEvidence) -> str:
    lines = [f"### {test.file_path} :: {test.test_name}"]
    if test.line is not None:
        lines.append(f"line: {test.line}")
    if test.body:
        lines.extend(["```", test.body[:_MAX_BODY_CHARS], "```"])
    return "\n".join(lines)


def build_atom_prompt(tests: Sequence[TestEvidence], evidence: EvidenceInventory) -> str:
    files = sorted({test.file_path for test in tests})
    related: list[str] = []
    for path in files:
        symbols = sorted(evidence.symbols_in(path))[:_MAX_RELATED_SYMBOLS]
        related.append(f"- {path}: {', '.join(symbols) if symbols else '(no symbols)'}")
    sources = sorted(evidence.source_files)

    sections = [
        ATOM_INSTRUCTIONS,
        "## Tests",
        *(_format_test(test) for test in tests),
        "## Known files and symbols",
        *related,
        *(f"- {path}" for path in sources if path not in files),
    ]
    return "\n\n".join(section for section in sections if section)


def build_molecule_prompt(atoms: Sequence[InferredAtom]) -> str:
    listed = [
        f"- {atom.temp_id} [{atom.category}] {atom.description}" for atom in atoms
    ]
    return "\n\n".join([MOLECULE_INSTRUCTIONS, "## Atoms", "\n".join(listed)])
