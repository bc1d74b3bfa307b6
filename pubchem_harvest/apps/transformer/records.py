"""
Record builders - turn a walked section tree into store records.

Each profile decides when a compound is relevant; irrelevant compounds yield
None and are skipped silently.

Usage:
    from pubchem_harvest.apps.transformer.records import extract

    record = extract(CompoundDocument.model_validate_json(raw))
    if record is not None:
        sink.add(record)
"""

from dataclasses import dataclass
from typing import Callable, Optional

from pydantic import BaseModel

from pubchem_harvest.apps.transformer.sections import (
    SLOT_ABSORPTION,
    SLOT_CAS,
    SLOT_INCHI,
    SLOT_INCHI_KEY,
    SLOT_ISOMERIC_SMILES,
    SLOT_MOLECULAR_WEIGHT,
    SLOT_SMILES,
    SLOT_SOLUBILITY,
    walk_sections,
)
from pubchem_harvest.utils.db import (
    COLLECTION_FILTER_ABSORPTION,
    COLLECTION_FILTER_SOLUBILITY,
    COLLECTION_MOLECULAR,
)
from pubchem_harvest.utils.schemas import (
    AbsorptionRecord,
    CompoundDocument,
    MolecularRecord,
    SolubilityRecord,
)


def extract(document: CompoundDocument) -> Optional[MolecularRecord]:
    """Full molecular record, emitted only when experimental properties exist."""
    out = walk_sections(document.record.sections)
    if not out.properties:
        return None

    return MolecularRecord(
        cid=document.record.record_number,
        smiles=out.get(SLOT_SMILES),
        isomeric_smiles=out.get(SLOT_ISOMERIC_SMILES),
        inchi=out.get(SLOT_INCHI),
        inchi_key=out.get(SLOT_INCHI_KEY),
        cas=out.get(SLOT_CAS),
        molecular_weight=out.get(SLOT_MOLECULAR_WEIGHT),
        properties=out.properties,
    )


def extract_solubility(document: CompoundDocument) -> Optional[SolubilityRecord]:
    out = walk_sections(document.record.sections)
    solubility = out.lists.get(SLOT_SOLUBILITY)
    if not solubility:
        return None

    return SolubilityRecord(
        cid=document.record.record_number,
        smiles=out.get(SLOT_SMILES),
        molecular_weight=out.get(SLOT_MOLECULAR_WEIGHT),
        solubility=solubility,
    )


def extract_absorption(document: CompoundDocument) -> Optional[AbsorptionRecord]:
    out = walk_sections(document.record.sections)
    absorption = out.get(SLOT_ABSORPTION)
    if not absorption:
        return None

    return AbsorptionRecord(
        cid=document.record.record_number,
        smiles=out.get(SLOT_SMILES),
        inchi=out.get(SLOT_INCHI),
        absorption=absorption,
    )


@dataclass(frozen=True)
class Profile:
    """A fixed extraction target: builder, destination collection, optional byte prefilter."""

    name: str
    build: Callable[[CompoundDocument], Optional[BaseModel]]
    collection: str
    prefilter: Optional[bytes] = None

    def wants(self, raw: bytes) -> bool:
        return self.prefilter is None or self.prefilter in raw


PROFILES: dict[str, Profile] = {
    "molecular": Profile("molecular", extract, COLLECTION_MOLECULAR),
    "solubility": Profile("solubility", extract_solubility, COLLECTION_FILTER_SOLUBILITY),
    "absorption": Profile(
        "absorption",
        extract_absorption,
        COLLECTION_FILTER_ABSORPTION,
        prefilter=b"Oral bioavailability",
    ),
}


def get_profile(name: str) -> Profile:
    """
    Raises:
        ValueError: If no profile has that name
    """
    try:
        return PROFILES[name]
    except KeyError:
        raise ValueError(
            f"Unknown filter profile {name!r}; expected one of {', '.join(sorted(PROFILES))}"
        ) from None
