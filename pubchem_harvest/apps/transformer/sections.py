"""
Section-tree walker.

PUG-View documents nest their data in ``Section`` nodes tagged by
``TOCHeading``. Extraction is driven by a static taxonomy: at each depth a
heading maps to an action, and any heading the taxonomy does not name is
ignored. Repeated sibling headings are visited in document order; scalar
slots keep the first value found.

Every list in the tree (child sections, Information entries, value strings)
may be empty. Actions only ever read the first element of a list after
checking it exists, so a missing branch yields an absent slot, never an
exception.
"""

from dataclasses import dataclass, field
from typing import Iterable, Mapping, Optional

from pubchem_harvest.utils.schemas import InfoField, Measurement, Property, Section


@dataclass
class Extraction:
    """Slots filled while walking one compound's section tree."""

    scalars: dict[str, str] = field(default_factory=dict)
    lists: dict[str, list[str]] = field(default_factory=dict)
    properties: list[Property] = field(default_factory=list)

    def set_first(self, slot: str, value: str) -> None:
        if value and slot not in self.scalars:
            self.scalars[slot] = value

    def append(self, slot: str, value: str) -> None:
        self.lists.setdefault(slot, []).append(value)

    def get(self, slot: str) -> str:
        return self.scalars.get(slot, "")


class Action:
    def apply(self, section: Section, out: Extraction) -> None:
        raise NotImplementedError


class Ignore(Action):
    def apply(self, section: Section, out: Extraction) -> None:
        return None


IGNORE = Ignore()


class Descend(Action):
    """Recurse into child sections, dispatching on their headings."""

    def __init__(self, children: Mapping[str, Action], default: Action = IGNORE) -> None:
        self.children = dict(children)
        self.default = default

    def apply(self, section: Section, out: Extraction) -> None:
        walk(section.children, self.children, out, self.default)


def _first_measurement(fields: list[InfoField]) -> Optional[Measurement]:
    if not fields:
        return None
    return fields[0].first_measurement()


class CollectFirst(Action):
    """Text of the first measurement of the first field."""

    def __init__(self, slot: str) -> None:
        self.slot = slot

    def apply(self, section: Section, out: Extraction) -> None:
        measurement = _first_measurement(section.fields)
        if measurement is not None:
            out.set_first(self.slot, measurement.text)


class CollectFirstWithUnit(CollectFirst):
    """Like CollectFirst, rendered as ``"{text} {unit}"`` when a unit is given."""

    def apply(self, section: Section, out: Extraction) -> None:
        measurement = _first_measurement(section.fields)
        if measurement is None:
            return
        if measurement.unit:
            out.set_first(self.slot, f"{measurement.text} {measurement.unit}")
        else:
            out.set_first(self.slot, measurement.text)


class CollectFirstPerField(Action):
    """First measurement text of every field, appended to a list slot."""

    def __init__(self, slot: str) -> None:
        self.slot = slot

    def apply(self, section: Section, out: Extraction) -> None:
        for info in section.fields:
            measurement = info.first_measurement()
            if measurement is not None:
                out.append(self.slot, measurement.text)


class CollectNamedField(Action):
    """First measurement of the first field whose ``Name`` matches."""

    def __init__(self, name: str, slot: str) -> None:
        self.name = name
        self.slot = slot

    def apply(self, section: Section, out: Extraction) -> None:
        for info in section.fields:
            if info.name == self.name:
                measurement = info.first_measurement()
                if measurement is not None:
                    out.set_first(self.slot, measurement.text)
                    return


class CollectProperty(Action):
    """Turn the whole section into a Property carrying every measurement.

    Sections without any measurement are dropped.
    """

    def apply(self, section: Section, out: Extraction) -> None:
        values = [m for info in section.fields for m in info.measurements]
        if not values:
            return
        out.properties.append(
            Property(kind=section.heading, description=section.description or "", values=values)
        )


class Chain(Action):
    def __init__(self, *actions: Action) -> None:
        self.actions = actions

    def apply(self, section: Section, out: Extraction) -> None:
        for action in self.actions:
            action.apply(section, out)


def walk(
    sections: Iterable[Section],
    taxonomy: Mapping[str, Action],
    out: Extraction,
    default: Action = IGNORE,
) -> Extraction:
    for section in sections:
        taxonomy.get(section.heading, default).apply(section, out)
    return out


SLOT_SMILES = "smiles"
SLOT_ISOMERIC_SMILES = "isomeric_smiles"
SLOT_INCHI = "inchi"
SLOT_INCHI_KEY = "inchi_key"
SLOT_CAS = "cas"
SLOT_MOLECULAR_WEIGHT = "molecular_weight"
SLOT_SOLUBILITY = "solubility"
SLOT_ABSORPTION = "absorption"

_INCHI_KEY = CollectFirst(SLOT_INCHI_KEY)

TAXONOMY: dict[str, Action] = {
    "Names and Identifiers": Descend({
        "Computed Descriptors": Descend({
            "Canonical SMILES": CollectFirst(SLOT_SMILES),
            "Isomeric SMILES": CollectFirst(SLOT_ISOMERIC_SMILES),
            "InChI": CollectFirst(SLOT_INCHI),
            "InChI Key": _INCHI_KEY,
            "InChIKey": _INCHI_KEY,
        }),
        "Other Identifiers": Descend({
            "CAS": CollectFirst(SLOT_CAS),
        }),
    }),
    "Chemical and Physical Properties": Descend({
        "Experimental Properties": Descend(
            {"Solubility": Chain(CollectProperty(), CollectFirstPerField(SLOT_SOLUBILITY))},
            default=CollectProperty(),
        ),
        "Computed Properties": Descend({
            "Molecular Weight": CollectFirstWithUnit(SLOT_MOLECULAR_WEIGHT),
        }),
    }),
    "Pharmacology and Biochemistry": Descend({
        "Absorption, Distribution and Excretion": CollectNamedField("Absorption", SLOT_ABSORPTION),
    }),
}


def walk_sections(sections: Iterable[Section], taxonomy: Mapping[str, Action] = TAXONOMY) -> Extraction:
    """Walk top-level sections against ``taxonomy`` into a fresh Extraction."""
    return walk(sections, taxonomy, Extraction())
