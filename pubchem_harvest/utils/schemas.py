"""
Pydantic Schemas - Data Validation Models

Defines the schemas used throughout the pipeline:
- PUG-View compound documents (the downloaded artifacts)
- Flattened records written to the document store
- Negative cache entries

The wire models keep PubChem's field names as aliases and expose pythonic
attribute names. Only the parts of the document the extraction engine reads
are modelled; everything else is ignored.

Usage:
    from pubchem_harvest.utils.schemas import CompoundDocument

    document = CompoundDocument.model_validate_json(raw_bytes)
    for section in document.record.sections:
        print(section.heading)
"""

from datetime import datetime, timezone
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

SOURCE = "PubChem"


class Annotation(BaseModel):
    """Markup span attached to a measurement string."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore", frozen=True)

    start: int = Field(default=0, alias="Start")
    length: int = Field(default=0, alias="Length")
    url: Optional[str] = Field(default=None, alias="URL")
    type: Optional[str] = Field(default=None, alias="Type")
    extra: Optional[str] = Field(default=None, alias="Extra")


class Measurement(BaseModel):
    """One value string of an Information entry, with the entry's unit."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore", frozen=True)

    text: str
    unit: Optional[str] = None
    annotations: list[Annotation] = Field(default_factory=list)


class InfoField(BaseModel):
    """A PUG-View ``Information`` entry.

    ``Value.StringWithMarkup`` is lifted into ``measurements``; each entry
    inherits ``Value.Unit``. The list is empty when the value is numeric-only,
    binary or external.
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    reference_id: int = Field(default=0, alias="ReferenceNumber")
    name: Optional[str] = Field(default=None, alias="Name")
    measurements: list[Measurement] = Field(default_factory=list)

    @model_validator(mode="before")
    @classmethod
    def lift_value(cls, data: Any) -> Any:
        if not isinstance(data, dict) or "Value" not in data:
            return data

        value = data.get("Value") or {}
        if not isinstance(value, dict):
            raise ValueError(f"Value must be an object, got {type(value).__name__}")
        unit = value.get("Unit")
        measurements = [
            {"text": item.get("String", ""), "unit": unit, "annotations": item.get("Markup") or []}
            for item in value.get("StringWithMarkup") or []
            if isinstance(item, dict)
        ]
        return {**{k: v for k, v in data.items() if k != "Value"}, "measurements": measurements}

    def first_measurement(self) -> Optional[Measurement]:
        return self.measurements[0] if self.measurements else None


class Section(BaseModel):
    """Heading-tagged node of the section tree. Headings may repeat among siblings."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    heading: str = Field(default="", alias="TOCHeading")
    description: Optional[str] = Field(default=None, alias="Description")
    children: list["Section"] = Field(default_factory=list, alias="Section")
    fields: list[InfoField] = Field(default_factory=list, alias="Information")


class CompoundRecord(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    record_type: str = Field(default="CID", alias="RecordType")
    record_number: int = Field(..., alias="RecordNumber")
    record_title: str = Field(default="", alias="RecordTitle")
    sections: list[Section] = Field(default_factory=list, alias="Section")


class CompoundDocument(BaseModel):
    """Top-level PUG-View document: ``{"Record": {...}}``."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    record: CompoundRecord = Field(..., alias="Record")


class Property(BaseModel):
    """One experimental property group of a compound."""

    model_config = ConfigDict(frozen=True)

    kind: str
    description: str = ""
    values: list[Measurement] = Field(default_factory=list)


class MolecularRecord(BaseModel):
    """Flattened compound record, the main output of the extraction engine."""

    model_config = ConfigDict(frozen=True)

    cid: int
    smiles: str = ""
    isomeric_smiles: str = ""
    inchi: str = ""
    inchi_key: str = ""
    cas: str = ""
    molecular_weight: str = ""
    properties: list[Property] = Field(default_factory=list)
    source: str = SOURCE


class SolubilityRecord(BaseModel):
    """Compounds with at least one experimental solubility statement."""

    model_config = ConfigDict(frozen=True)

    cid: int
    smiles: str = ""
    molecular_weight: str = ""
    solubility: list[str] = Field(default_factory=list)
    source: str = SOURCE


class AbsorptionRecord(BaseModel):
    """Compounds with an absorption statement in their pharmacology section."""

    model_config = ConfigDict(frozen=True)

    cid: int
    smiles: str = ""
    inchi: str = ""
    absorption: str = ""
    source: str = SOURCE


class NegativeCacheEntry(BaseModel):
    """Marker that a CID returned 404 upstream.

    The store assigns its own timestamps; these are kept on the document too
    so an exported entry carries them on its own.
    """

    cid: str = Field(..., min_length=1)
    create_time: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    update_time: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


Section.model_rebuild()
