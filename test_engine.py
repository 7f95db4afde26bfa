"""Tests for the comparison engine, runner and command line."""

import gc
import io
import json
import zipfile

import pytest

import diffmig
from diffmig import (
    CompareConfig,
    DiffMigRunner,
    GateResponse,
    MigrationDiffEngine,
    PairResult,
    compare,
    lockstep,
    read_array,
)
from diffmig.archive import find_clinical_data, open_export
from diffmig.cli import main
from diffmig.exceptions import (
    ArchiveLayoutError,
    MissingFieldError,
    SequenceLengthError,
    SkipMismatchError,
)
from diffmig.prompt import ConsolePrompt


def export_text(rows, indent=4):
    lines = ["["]
    for index, row in enumerate(rows):
        element = [" " * indent + line for line in json.dumps(row, indent=indent).split("\n")]
        if index < len(rows) - 1:
            element[-1] += ","
        lines.extend(element)
    lines.append("]")
    return "\n".join(lines) + "\n"


def export_bytes(rows):
    return io.BytesIO(export_text(rows).encode("utf-8"))


def row(pk, patient, value="Lung", collection="cdes", form_name="Diagnosis"):
    forms = [{
        "name": form_name,
        "sections": [{
            "code": "SEC1",
            "allow_multiple": False,
            "cdes": [{"code": "CDE1", "value": value}],
        }],
    }]
    data = {"record": {"forms": forms}} if collection == "history" else {"forms": forms}
    return {
        "model": "rdrf.clinicaldata",
        "pk": pk,
        "fields": {"django_id": patient, "collection": collection, "data": data},
    }


class RecordingGate:
    """Confirmation gate answering from a list and remembering its calls."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.calls = []

    def __call__(self, result):
        self.calls.append(result.position)
        return self.responses.pop(0)


class TestLockstep:
    """Test positional pairing."""

    def test_pairs(self):
        assert list(lockstep("ab", "xy")) == [(0, "a", "x"), (1, "b", "y")]

    def test_new_shorter(self):
        with pytest.raises(SequenceLengthError) as exc_info:
            list(lockstep([1, 2, 3], [1, 2]))
        assert exc_info.value.exhausted == "new"
        assert exc_info.value.position == 2

    def test_old_shorter(self):
        with pytest.raises(SequenceLengthError) as exc_info:
            list(lockstep([], [1]))
        assert exc_info.value.exhausted == "old"
        assert str(exc_info.value) == "Old ran out of entries after 0 pairs"

    def test_pairs_before_error_are_produced(self):
        pairs = lockstep([1, 2], [1])
        assert next(pairs) == (0, 1, 1)
        with pytest.raises(SequenceLengthError):
            next(pairs)


class TestMigrationDiffEngine:
    """Test comparing whole exports."""

    def setup_method(self):
        self.engine = MigrationDiffEngine(CompareConfig())

    def test_identical_exports(self):
        """Same data under other record ids has no differences."""
        report = self.engine.run(export_bytes([row(1, 7)]), export_bytes([row(100, 7)]))

        assert report.pairs_compared == 1
        assert report.pairs_differing == 0
        assert report.total_differences == 0
        assert not report.aborted

    def test_value_difference(self):
        seen = []
        report = self.engine.run(
            export_bytes([row(1, 7), row(2, 8)]),
            export_bytes([row(1, 7), row(2, 8, value="Liver")]),
            on_difference=seen.append,
        )

        assert report.total_differences == 1
        assert report.pairs_differing == 1
        assert [r.position for r in seen] == [1]
        assert seen[0].difference_count == 1

    def test_total_counts_top_level_differences(self):
        """Totals count the differences of each slice, leaf counts are kept apart."""
        old = [row(1, 7), row(2, 7, form_name="Followup")]
        new = [row(1, 7, value="Liver"), row(2, 7, value="Bone", form_name="Followup")]

        report = self.engine.run(export_bytes(old), export_bytes(new))

        assert report.pairs_compared == 1
        assert report.total_differences == 1
        assert report.leaf_differences == 2

    def test_missing_forms_is_fatal(self):
        broken = row(1, 7)
        del broken["fields"]["data"]["forms"]

        with pytest.raises(MissingFieldError) as exc_info:
            self.engine.run(export_bytes([row(1, 7)]), export_bytes([broken]))
        assert str(exc_info.value) == "Missing forms in data"

    def test_length_mismatch(self):
        with pytest.raises(SequenceLengthError) as exc_info:
            self.engine.run(export_bytes([row(1, 7), row(2, 8)]), export_bytes([row(1, 7)]))
        assert exc_info.value.exhausted == "new"

    def test_identical_pairs_skip_gate(self):
        gate = RecordingGate()
        self.engine.run(export_bytes([row(1, 7)]), export_bytes([row(1, 7)]), gate=gate)
        assert gate.calls == []

    def test_gate_abort(self):
        """Aborting stops the run after the current pair."""
        gate = RecordingGate(GateResponse.ABORT)
        report = self.engine.run(
            export_bytes([row(1, 7), row(2, 8)]),
            export_bytes([row(1, 7, value="x"), row(2, 8, value="y")]),
            gate=gate,
        )

        assert gate.calls == [0]
        assert report.aborted
        assert report.pairs_compared == 1
        assert report.total_differences == 1

    def test_gate_proceed_all(self):
        """Proceeding for all stops consulting the gate."""
        gate = RecordingGate(GateResponse.PROCEED_ALL)
        report = self.engine.run(
            export_bytes([row(1, 7), row(2, 8), row(3, 9)]),
            export_bytes([row(1, 7, value="x"), row(2, 8, value="y"), row(3, 9, value="z")]),
            gate=gate,
        )

        assert gate.calls == [0]
        assert not report.aborted
        assert report.total_differences == 3

    def test_gate_proceed(self):
        gate = RecordingGate(GateResponse.PROCEED, GateResponse.PROCEED)
        self.engine.run(
            export_bytes([row(1, 7), row(2, 8)]),
            export_bytes([row(1, 7, value="x"), row(2, 8, value="y")]),
            gate=gate,
        )
        assert gate.calls == [0, 1]

    def test_skipped_rows_both_sides(self):
        progress = {"pk": 5, "fields": {"django_id": 7, "collection": "progress"}}
        report = self.engine.run(
            export_bytes([progress, row(1, 7)]),
            export_bytes([progress, row(1, 7)]),
            by_row=True,
        )

        assert report.pairs_compared == 1
        assert report.total_differences == 0

    def test_skip_mismatch(self):
        """A row skipped on one side only is fatal in row mode."""
        progress = {"pk": 5, "fields": {"django_id": 7, "collection": "progress"}}

        with pytest.raises(SkipMismatchError) as exc_info:
            list(self.engine.row_pairs(export_bytes([progress]), export_bytes([row(1, 7)])))

        assert exc_info.value.position == 0
        assert exc_info.value.skipped == "old"

    def test_cdes_only(self):
        """History differences are ignored when only current data is compared."""
        engine = MigrationDiffEngine(CompareConfig(cdes_only=True))
        old = [row(1, 7), row(2, 7, collection="history")]
        new = [row(1, 7), row(2, 7, value="changed", collection="history")]

        assert engine.run(export_bytes(old), export_bytes(new)).total_differences == 0
        assert compare(export_bytes(old), export_bytes(new)).total_differences == 1

    def test_tolerance_from_config(self):
        engine = MigrationDiffEngine(CompareConfig(tolerance=1.0))
        report = engine.run(export_bytes([row(1, 7, value=1.0)]), export_bytes([row(1, 7, value=1.5)]))
        assert report.total_differences == 0

    def test_report_to_dict(self):
        report = compare(export_bytes([row(1, 7)]), export_bytes([row(1, 7, value=3)]))
        assert report.to_dict() == {
            "pairs_compared": 1,
            "pairs_differing": 1,
            "total_differences": 1,
            "leaf_differences": 1,
            "aborted": False,
        }


class TestCompareConfig:
    """Test loading comparison configuration."""

    def test_defaults(self):
        config = CompareConfig()
        assert config.indent == 4
        assert config.tolerance == 0.01
        assert config.forms_paths == {"cdes": "$.forms", "history": "$.record.forms"}

    def test_from_file(self, tmp_path):
        path = tmp_path / "diffmig.yaml"
        path.write_text("tolerance: 0.5\ncdes_only: true\nforms_paths:\n  cdes: $.payload.forms\n")

        config = CompareConfig.from_file(str(path))

        assert config.tolerance == 0.5
        assert config.cdes_only
        assert config.prompt
        assert config.forms_paths == {"cdes": "$.payload.forms", "history": "$.record.forms"}

    def test_unknown_collection(self):
        with pytest.raises(ValueError):
            CompareConfig.from_dict({"forms_paths": {"progress": "$.forms"}})

    def test_not_a_mapping(self, tmp_path):
        path = tmp_path / "diffmig.yaml"
        path.write_text("- a\n- b\n")

        with pytest.raises(ValueError):
            CompareConfig.from_file(str(path))

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            CompareConfig.from_file(str(tmp_path / "missing.yaml"))


class TestConsolePrompt:
    """Test the console confirmation gate."""

    def answers(self, *lines):
        lines = list(lines)

        def read(prompt):
            if not lines:
                raise EOFError
            return lines.pop(0)
        return read

    def ask(self, *lines):
        return ConsolePrompt(self.answers(*lines))(PairResult(0, None, None))

    def test_default_is_proceed(self):
        assert self.ask("") == GateResponse.PROCEED
        assert self.ask("Yes") == GateResponse.PROCEED

    def test_abort(self):
        assert self.ask("n") == GateResponse.ABORT

    def test_all(self):
        assert self.ask("  a ") == GateResponse.PROCEED_ALL

    def test_asks_again_on_unknown_answer(self):
        assert self.ask("maybe", "later", "all") == GateResponse.PROCEED_ALL

    def test_end_of_input_aborts(self):
        assert self.ask() == GateResponse.ABORT


def write_zip(path, root, rows):
    with zipfile.ZipFile(path, "w") as archive:
        archive.writestr(f"{root}/registry.yaml", "code: DM1\n")
        archive.writestr(f"{root}/registry_data/clinical_data/rdrf_clinicaldata.json", export_text(rows))
    return path


class TestArchives:
    """Test reading exports out of registry archives."""

    def test_find_clinical_data(self, tmp_path):
        path = write_zip(tmp_path / "export.zip", "DM1", [row(1, 7)])

        with zipfile.ZipFile(path) as archive:
            assert find_clinical_data(archive) == "DM1/registry_data/clinical_data/rdrf_clinicaldata.json"

    def test_missing_clinical_data(self, tmp_path):
        path = tmp_path / "export.zip"
        with zipfile.ZipFile(path, "w") as archive:
            archive.writestr("DM1/rdrf_clinicaldata.json", "[]\n")

        with pytest.raises(ArchiveLayoutError):
            with open_export(path):
                pass

    def test_open_zip_export(self, tmp_path):
        path = write_zip(tmp_path / "export.zip", "DM1", [row(1, 7)])

        with open_export(path) as (name, stream):
            assert name.startswith("DM1/")
            assert [v["pk"] for v in read_array(stream)] == [1]

    def test_open_plain_export(self, tmp_path):
        path = tmp_path / "export.json"
        path.write_text(export_text([row(1, 7)]))

        with open_export(path) as (name, stream):
            assert name is None
            assert len(list(read_array(stream))) == 1

    def test_missing_export(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            with open_export(tmp_path / "missing.zip"):
                pass


class TestRunnerAndCli:
    """Test running comparisons on files."""

    def test_runner_zips(self, tmp_path):
        old = write_zip(tmp_path / "old.zip", "DM1", [row(1, 7), row(2, 8)])
        new = write_zip(tmp_path / "new.zip", "DM1", [row(10, 7), row(20, 8, value="Liver")])

        report = DiffMigRunner(str(old), str(new)).run()

        assert report.pairs_compared == 2
        assert report.total_differences == 1

    def test_runner_mismatched_roots(self, tmp_path):
        old = write_zip(tmp_path / "old.zip", "DM1", [row(1, 7)])
        new = write_zip(tmp_path / "new.zip", "DM2", [row(1, 7)])

        with pytest.raises(ArchiveLayoutError):
            DiffMigRunner(str(old), str(new)).run()

    def test_runner_with_schema(self, tmp_path, caplog):
        schema = tmp_path / "registry.yaml"
        schema.write_text("forms:\n  - fields: {name: Diagnosis, sections: SEC1}\n"
                          "sections:\n  - fields: {code: SEC1, elements: CDE1}\n")
        old = tmp_path / "old.json"
        new = tmp_path / "new.json"
        old.write_text(export_text([row(1, 7)]))
        new.write_text(export_text([row(1, 7)]))

        runner = DiffMigRunner(str(old), str(new), schema_path=str(schema))
        report = runner.run()

        assert runner.schema.forms["Diagnosis"].sections == frozenset({"SEC1"})
        assert report.total_differences == 0
        assert "doesn't match definition" not in caplog.text

    def test_cli_no_differences(self, tmp_path, capsys):
        old = write_zip(tmp_path / "old.zip", "DM1", [row(1, 7)])
        new = write_zip(tmp_path / "new.zip", "DM1", [row(1, 7)])

        assert main([str(old), str(new), "--no-prompt"]) == 0
        assert capsys.readouterr().out.strip() == "Found 0 differences"

    def test_cli_prints_differences(self, tmp_path, capsys):
        old = tmp_path / "old.json"
        new = tmp_path / "new.json"
        old.write_text(export_text([row(1, 7)]))
        new.write_text(export_text([row(1, 7, value="Liver")]))

        assert main([str(old), str(new), "--no-prompt"]) == 0

        captured = capsys.readouterr()
        assert captured.out.strip() == "Found 1 differences"
        assert "cde CDE1: equality" in captured.err

    def test_cli_prompt_abort(self, tmp_path, capsys, monkeypatch):
        old = tmp_path / "old.json"
        new = tmp_path / "new.json"
        old.write_text(export_text([row(1, 7), row(2, 8)]))
        new.write_text(export_text([row(1, 7, value="x"), row(2, 8, value="y")]))
        monkeypatch.setattr("builtins.input", lambda prompt: "n")

        assert main([str(old), str(new)]) == 0
        assert capsys.readouterr().out.strip() == "Found 1 differences"

    def test_cli_error(self, tmp_path, capsys):
        assert main([str(tmp_path / "old.zip"), str(tmp_path / "new.zip")]) == 1
        assert "Error:" in capsys.readouterr().err

    @pytest.mark.filterwarnings("error::pytest.PytestUnraisableExceptionWarning")
    def test_cli_fatal_error_reported_once(self, tmp_path, capsys):
        """A fatal record error is printed once and the readers close cleanly."""
        broken = row(1, 7)
        del broken["fields"]["data"]["forms"]
        old = tmp_path / "old.json"
        new = tmp_path / "new.json"
        old.write_text(export_text([row(1, 7), row(2, 8)]))
        new.write_text(export_text([broken, row(2, 8)]))

        assert main([str(old), str(new), "--no-prompt"]) == 1
        gc.collect()

        err = capsys.readouterr().err
        assert err.count("Missing forms in data") == 1
        assert "Exception ignored" not in err
        assert "Traceback" not in err


class TestPackage:
    """Test package metadata."""

    def test_single_version(self, request):
        """The package version is declared once and matches the project metadata."""
        pyproject = (request.config.rootpath / "pyproject.toml").read_text()

        assert f'version = "{diffmig.__version__}"' in pyproject
        assert "VERSION" not in vars(MigrationDiffEngine)
