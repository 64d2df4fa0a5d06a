"""
Tests for the command line entry point.
"""
import csv
import json

import pytest

from cinerecon.cli import EntityIn, load_records, main
from cinerecon.core.database import reset_engine

RECORDS = [
    {
        "id": "m1",
        "title": "Vikram",
        "year": 2006,
        "external_ids": {"tmdb": 81012},
        "source": "tmdb",
    },
    {
        "id": "m2",
        "title": "Vikramarkudu",
        "year": "2006",
        "alt_title": "విక్రమార్కుడు",
        "external_ids": ["tmdb:81012", "imdb:tt0471571"],
        "attributes": {"director": "S. S. Rajamouli"},
        "source": "tmdb",
    },
    {"id": "m3", "title": "Devadasu", "year": 1974},
    {"id": "m4", "title": "Devadasu", "year": 2014},
    {"title": "No id at all", "year": 2001},
]


@pytest.fixture
def records_file(tmp_path):
    path = tmp_path / "records.json"
    path.write_text(json.dumps(RECORDS), encoding="utf-8")
    return path


class TestEntityIn:
    """Loose parsing of input records."""

    @pytest.mark.unit
    def test_unparsable_year_is_missing(self):
        assert EntityIn.model_validate({"id": "m1", "title": "X", "year": "TBA"}).year is None

    @pytest.mark.unit
    @pytest.mark.parametrize("raw, expected", [(2005.0, 2005), ("2005.0", 2005), (" 2005 ", 2005), (2005.5, None)])
    def test_whole_number_years(self, raw, expected):
        """Whole-number floats keep their anchor; fractional years are dropped."""
        assert EntityIn.model_validate({"id": "m1", "title": "X", "year": raw}).year == expected

    @pytest.mark.unit
    def test_null_title_is_blank(self):
        assert EntityIn.model_validate({"id": "m1", "title": None}).to_entity().title == ""

    @pytest.mark.unit
    def test_identifier_dict_flattened(self):
        entity = EntityIn.model_validate(
            {"id": 7, "title": "X", "external_ids": {"tmdb": 1, "imdb": None}}
        ).to_entity()
        assert entity.id == "7"
        assert entity.external_ids == {"tmdb:1"}


class TestLoadRecords:

    @pytest.mark.unit
    def test_skips_records_without_id(self, records_file):
        entities = load_records(records_file)
        assert [e.id for e in entities] == ["m1", "m2", "m3", "m4"]
        assert entities[1].year == 2006

    @pytest.mark.unit
    def test_records_key(self, tmp_path):
        path = tmp_path / "wrapped.json"
        path.write_text(json.dumps({"records": RECORDS[:2]}))
        assert len(load_records(path)) == 2


class TestScanCommand:

    @pytest.mark.integration
    def test_scan_writes_outputs(self, clean_env, records_file, tmp_path, capsys):
        report_path = tmp_path / "report.json"
        review_path = tmp_path / "review.csv"

        code = main([
            "scan",
            "--input", str(records_file),
            "--window", "40",
            "--report-out", str(report_path),
            "--review-csv", str(review_path),
        ])

        assert code == 0
        summary = json.loads(capsys.readouterr().out)
        assert summary["auto_apply"] == 1
        report = json.loads(report_path.read_text(encoding="utf-8"))
        assert report["auto_apply"][0]["proposed_winner_id"] == "m2"
        with open(review_path, newline="", encoding="utf-8") as f:
            rows = list(csv.DictReader(f))
        assert [(r["entity_a_id"], r["entity_b_id"]) for r in rows] == [("m3", "m4")]

    @pytest.mark.unit
    def test_bad_input_exit_code(self, clean_env, tmp_path):
        path = tmp_path / "broken.json"
        path.write_text("{oops")
        assert main(["scan", "--input", str(path)]) == 2


class TestApplyCommand:

    @pytest.mark.integration
    def test_apply_auto_and_reviewed(self, clean_env, records_file, tmp_path):
        decisions = tmp_path / "decisions.json"
        decisions.write_text(json.dumps([
            {"entity_a_id": "m3", "entity_b_id": "m4", "decision": "approve", "winner_id": "m4"},
        ]))
        output = tmp_path / "merged.json"
        merge_log = tmp_path / "merges.json"

        code = main([
            "apply",
            "--input", str(records_file),
            "--window", "40",
            "--decisions", str(decisions),
            "--output", str(output),
            "--merge-log", str(merge_log),
        ])

        assert code == 0
        records = {r["id"]: r for r in json.loads(output.read_text(encoding="utf-8"))}
        assert records["m1"]["active"] is False
        assert records["m1"]["canonical_id"] == "m2"
        assert records["m3"]["canonical_id"] == "m4"
        assert "Vikram" in records["m2"]["aliases"]
        statuses = [o["status"] for o in json.loads(merge_log.read_text(encoding="utf-8"))]
        assert statuses == ["merged", "merged"]

    @pytest.mark.integration
    def test_dry_run(self, clean_env, records_file, tmp_path):
        output = tmp_path / "merged.json"

        code = main(["apply", "--input", str(records_file), "--dry-run", "--output", str(output)])

        assert code == 0
        records = json.loads(output.read_text(encoding="utf-8"))
        assert all(r["active"] for r in records)

    @pytest.mark.unit
    def test_malformed_decisions_exit_code(self, clean_env, records_file, tmp_path):
        decisions = tmp_path / "decisions.json"
        decisions.write_text(json.dumps([1, 2]))
        assert main(["apply", "--input", str(records_file), "--decisions", str(decisions)]) == 2

    @pytest.mark.integration
    def test_no_auto(self, clean_env, records_file, tmp_path):
        merge_log = tmp_path / "merges.json"
        main(["apply", "--input", str(records_file), "--no-auto", "--merge-log", str(merge_log)])
        assert json.loads(merge_log.read_text(encoding="utf-8")) == []


@pytest.fixture
def fresh_engine():
    reset_engine()
    yield
    reset_engine()


class TestDatabaseStore:
    """--database-url keeps records and merges between runs."""

    @pytest.mark.integration
    def test_merges_persist_between_runs(self, clean_env, fresh_engine, records_file, tmp_path):
        url = f"sqlite:///{tmp_path / 'recon.db'}"
        output = tmp_path / "merged.json"

        assert main(["apply", "--input", str(records_file), "--window", "40", "--database-url", url]) == 0
        assert main(["apply", "--database-url", url, "--output", str(output)]) == 0

        records = {r["id"]: r for r in json.loads(output.read_text(encoding="utf-8"))}
        assert set(records) == {"m1", "m2", "m3", "m4"}
        assert records["m1"]["active"] is False
        assert records["m1"]["canonical_id"] == "m2"

    @pytest.mark.integration
    def test_reloading_input_keeps_retired_records(self, clean_env, fresh_engine, records_file, tmp_path):
        """Stored records win over the same ids in a re-loaded input file."""
        url = f"sqlite:///{tmp_path / 'recon.db'}"
        output = tmp_path / "merged.json"

        main(["apply", "--input", str(records_file), "--window", "40", "--database-url", url])
        main(["scan", "--input", str(records_file), "--database-url", url])
        main(["apply", "--database-url", url, "--no-auto", "--output", str(output)])

        records = {r["id"]: r for r in json.loads(output.read_text(encoding="utf-8"))}
        assert records["m1"]["active"] is False

    @pytest.mark.unit
    def test_input_or_database_required(self, clean_env):
        with pytest.raises(SystemExit):
            main(["scan"])
