import pytest

from pubchem_harvest.apps.downloader.paths import path_for
from pubchem_harvest.apps.transformer.records import get_profile
from pubchem_harvest.apps.transformer.runner import (
    EXTRACTED,
    PARSE_ERROR,
    PREFILTERED,
    SKIPPED,
    TransformerRunner,
    resume_start,
)
from pubchem_harvest.utils.db import (
    COLLECTION_FILTER_ABSORPTION,
    COLLECTION_FILTER_SOLUBILITY,
    COLLECTION_MOLECULAR,
)
from tests.factories import aspirin, compound, identifiers, info, padded, physical, section


def put(data_dir, cid, raw: bytes):
    path = data_dir / path_for(cid)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(raw)
    return path


def absorbed(cid):
    return compound(cid, [
        identifiers(),
        section("Pharmacology and Biochemistry", [
            section("Absorption, Distribution and Excretion", fields=[
                info("Oral bioavailability is about 68%", name="Absorption"),
            ]),
        ]),
    ])


@pytest.mark.parametrize(
    "stored, step, expected",
    [(0, 1000, 1), (1000, 1000, 1), (1001, 1000, 1), (2500, 1000, 1000), (10_000, 1000, 9000)],
)
def test_resume_start(stored, step, expected):
    assert resume_start(stored, step) == expected


def test_molecular_pass(make_settings, store, data_dir):
    put(data_dir, 2244, padded(aspirin(2244)))
    put(data_dir, 1_000_001, padded(aspirin(1_000_001)))
    put(data_dir, 3, padded(compound(3, [identifiers(), physical()])))
    put(data_dir, 4, b"{" + b" " * 2000 + b"not json")
    runner = TransformerRunner(make_settings(JOBS=2, BATCH_SIZE=1), store, get_profile("molecular"))

    stats = runner.run()

    assert stats == {EXTRACTED: 2, SKIPPED: 1, PARSE_ERROR: 1}
    docs = {d["cid"]: d for d in store.stream(COLLECTION_MOLECULAR)}
    assert set(docs) == {2244, 1_000_001}
    assert docs[2244]["molecular_weight"] == "180.16 g/mol"
    assert docs[2244]["properties"][0]["kind"] == "Melting Point"
    assert docs[2244]["source"] == "PubChem"


def test_schema_mismatch_is_a_parse_error(make_settings, store, data_dir):
    put(data_dir, 9, padded({"Record": {"RecordTitle": "no number"}}))
    runner = TransformerRunner(make_settings(), store, get_profile("molecular"))

    assert runner.run() == {PARSE_ERROR: 1}


def test_rerun_upserts_instead_of_duplicating(make_settings, store, data_dir):
    put(data_dir, 2244, padded(aspirin(2244)))
    runner = TransformerRunner(make_settings(), store, get_profile("molecular"))

    runner.run()
    runner.run()

    assert store.count(COLLECTION_MOLECULAR) == 1


def test_resume_skips_stored_prefix(make_settings, store, data_dir):
    store.insert_many(
        COLLECTION_MOLECULAR,
        [{"cid": cid, "source": "PubChem"} for cid in range(1, 26)],
        key_field="cid",
    )
    for cid in (5, 10, 20, 30):
        put(data_dir, cid, padded(aspirin(cid)))
    runner = TransformerRunner(make_settings(SAVE_STEP=10), store, get_profile("molecular"))

    assert runner.start_cid(resume=True) == 10
    assert [p.name for p in runner.artifacts(10)] == ["10.json", "20.json", "30.json"]
    assert runner.run(resume=True) == {EXTRACTED: 3}


def test_misplaced_artifact_is_skipped(make_settings, store, data_dir):
    misplaced = data_dir / "1000000" / "2000" / "42.json"
    misplaced.parent.mkdir(parents=True)
    misplaced.write_bytes(padded(aspirin(42)))
    runner = TransformerRunner(make_settings(), store, get_profile("molecular"))

    assert list(runner.artifacts()) == []


def test_solubility_profile(make_settings, store, data_dir):
    put(data_dir, 2244, padded(aspirin(2244)))
    put(data_dir, 7, padded(compound(7, [identifiers(), physical([
        section("Boiling Point", fields=[info("100 °C")]),
    ])])))
    runner = TransformerRunner(make_settings(), store, get_profile("solubility"))

    assert runner.run() == {EXTRACTED: 1, SKIPPED: 1}
    [doc] = store.stream(COLLECTION_FILTER_SOLUBILITY)
    assert doc["solubility"] == ["1 g dissolves in 300 mL water", "4.6 mg/mL at 25 °C"]


def test_absorption_profile_prefilters_raw_bytes(make_settings, store, data_dir):
    put(data_dir, 2244, padded(aspirin(2244)))
    put(data_dir, 11, padded(absorbed(11)))
    runner = TransformerRunner(make_settings(), store, get_profile("absorption"))

    assert runner.run() == {EXTRACTED: 1, PREFILTERED: 1}
    [doc] = store.stream(COLLECTION_FILTER_ABSORPTION)
    assert doc["cid"] == 11
    assert doc["absorption"] == "Oral bioavailability is about 68%"


def test_shutdown_stops_enumeration(make_settings, store, data_dir):
    put(data_dir, 2244, padded(aspirin(2244)))
    runner = TransformerRunner(make_settings(), store, get_profile("molecular"))
    runner.shutdown_event.set()

    assert runner.run() == {}
    assert store.count(COLLECTION_MOLECULAR) == 0


def test_malformed_value_is_a_parse_error(make_settings, store, data_dir):
    broken = section("Boiling Point", fields=[{"ReferenceNumber": 1, "Value": ["oops"]}])
    path = put(data_dir, 12, padded(compound(12, [physical([broken])])))
    runner = TransformerRunner(make_settings(), store, get_profile("molecular"))

    assert runner.process(path, sink=None) == PARSE_ERROR
    assert runner.run() == {PARSE_ERROR: 1}
