from __future__ import annotations

import json
import subprocess
import sys
import tempfile
import unittest
from pathlib import Path

from sheet_resolver.cli import EXPLAIN_RULES, build_parser, main, resolve_config
from sheet_resolver.errors import ISSUE_DEFINITIONS

ROOT = Path(__file__).resolve().parents[1]
CLI = [sys.executable, "-m", "sheet_resolver.cli"]
SAMPLE = "sample-data/leaders_export.csv"


def run_cli(*args: str) -> subprocess.CompletedProcess[str]:
    return subprocess.run(
        [*CLI, *args],
        cwd=ROOT,
        capture_output=True,
        text=True,
    )


class SheetResolverCliTests(unittest.TestCase):
    def test_ingest_sample_returns_exit_3_with_human_summary(self):
        proc = run_cli("ingest", SAMPLE, "--verbose")
        self.assertEqual(proc.returncode, 3, proc.stderr)
        self.assertEqual(proc.stdout, "")
        self.assertIn("Accepted records: 5", proc.stderr)
        self.assertIn("Title: Cebu Matunog Agency", proc.stderr)
        self.assertIn("Unresolved fields: prem_ytd, comm_ytd", proc.stderr)
        self.assertIn("- vol_mtd: heuristic col=4", proc.stderr)

    def test_ingest_json_writes_only_json_to_stdout(self):
        proc = run_cli("ingest", SAMPLE, "--json")
        self.assertEqual(proc.returncode, 3, proc.stderr)
        report = json.loads(proc.stdout)
        self.assertEqual(report["contract"]["name"], "sheet_resolver.ingest")
        self.assertEqual(report["run_summary"]["generated_at"], "1970-01-01T00:00:00Z")
        self.assertEqual(report["summary"]["accepted"], 5)
        self.assertEqual(report["summary"]["totals"]["vol_mtd"], 510150.0)

    def test_ingest_writes_report_records_and_workbook(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            out = Path(tmpdir) / "report.json"
            records = Path(tmpdir) / "records.csv"
            workbook = Path(tmpdir) / "leaders.xlsx"
            proc = run_cli(
                "ingest",
                SAMPLE,
                "--output",
                str(out),
                "--records-csv",
                str(records),
                "--workbook",
                str(workbook),
                "--quiet",
            )
            self.assertEqual(proc.returncode, 3, proc.stderr)
            self.assertEqual(proc.stderr, "")
            self.assertEqual(json.loads(out.read_text(encoding="utf-8"))["run_summary"]["output_file"], str(out))
            lines = records.read_text(encoding="utf-8").splitlines()
            self.assertEqual(len(lines), 6)
            self.assertTrue(lines[0].startswith("source_row,identity,unit"))
            self.assertTrue(workbook.exists())

            again = run_cli("ingest", SAMPLE, "--output", str(out))
            self.assertEqual(again.returncode, 1)
            self.assertIn("Refusing to overwrite", again.stderr)

    def test_clean_sheet_returns_exit_0(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "clean.csv"
            path.write_text(
                "NAME,UNIT,VOL_MTD,VOL_YTD,PREM_MTD,COMM_MTD,CASES_MTD,RECRUITS_MTD,PREM_YTD,COMM_YTD\n"
                "Ana,North,5000,20000,2000,500,1,0,8000,2000\n",
                encoding="utf-8",
            )
            proc = run_cli("ingest", str(path), "--json")
            self.assertEqual(proc.returncode, 0, proc.stderr)
            self.assertEqual(json.loads(proc.stdout)["run_summary"]["status"], "ok")

    def test_semicolon_delimiter_option(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "semi.csv"
            path.write_text("NAME;VOL_MTD;COMM_MTD\nAna;5000;500\n", encoding="utf-8")
            proc = run_cli("ingest", str(path), "--delimiter", ";", "--json")
            report = json.loads(proc.stdout)
            self.assertEqual(report["summary"]["totals"]["vol_mtd"], 5000.0)
            self.assertEqual(report["diagnostics"]["delimiter"], ";")

    def test_agents_profile_ingest(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "agents.csv"
            path.write_text(
                "AGENT,UM_NAME,UNIT,ANP_MTD,FYP MTD SP at 10%,CASECNT_MTD\n"
                "Ana Reyes,Maria Santos,Unit Alpha,12000,5000,2\n"
                "Ben Cruz,,,0,0,0\n",
                encoding="utf-8",
            )
            proc = run_cli("ingest", str(path), "--profile", "agents", "--json")
            self.assertEqual(proc.returncode, 0, proc.stderr)
            report = json.loads(proc.stdout)
            self.assertEqual(report["summary"]["accepted"], 2)
            self.assertEqual(report["records"][1]["attributes"], {"um_name": "Unknown", "unit": "Unknown Unit"})

            config_path = Path(tmpdir) / "agents.json"
            proc = run_cli("config", "init", "--path", str(config_path), "--profile", "agents")
            self.assertEqual(proc.returncode, 0, proc.stderr)
            payload = json.loads(config_path.read_text(encoding="utf-8"))
            self.assertEqual(payload["fields"][1]["name"], "um_name")

    def test_missing_input_returns_exit_1(self):
        proc = run_cli("ingest", "sample-data/nope.csv")
        self.assertEqual(proc.returncode, 1)
        self.assertIn("File not found", proc.stderr)

    def test_blank_input_returns_exit_2(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "blank.csv"
            path.write_text(" , ,\n\n   \n", encoding="utf-8")
            proc = run_cli("ingest", str(path))
            self.assertEqual(proc.returncode, 2)

    def test_sheet_option_rejected_for_text_inputs(self):
        proc = run_cli("ingest", SAMPLE, "--sheet", "October")
        self.assertEqual(proc.returncode, 1)
        self.assertIn("--sheet", proc.stderr)

    def test_yaml_config_is_rejected_with_exit_1(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            config = Path(tmpdir) / "resolver.yaml"
            config.write_text("epsilon: 2\n", encoding="utf-8")
            proc = run_cli("ingest", SAMPLE, "--config", str(config))
            self.assertEqual(proc.returncode, 1)
            self.assertIn("YAML configs are not supported yet", proc.stderr)

    def test_config_init_writes_default_and_refuses_overwrite(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "sheet-resolver.json"
            proc = run_cli("config", "init", "--path", str(path))
            self.assertEqual(proc.returncode, 0, proc.stderr)
            payload = json.loads(path.read_text(encoding="utf-8"))
            self.assertEqual(payload["epsilon"], 1.0)
            self.assertEqual(payload["fields"][0]["name"], "name")

            again = run_cli("config", "init", "--path", str(path))
            self.assertEqual(again.returncode, 1)
            self.assertIn("Refusing to overwrite", again.stderr)

            proc = run_cli("ingest", SAMPLE, "--config", str(path), "--json")
            self.assertEqual(proc.returncode, 3, proc.stderr)
            self.assertEqual(json.loads(proc.stdout)["summary"]["accepted"], 5)

    def test_explain_known_and_unknown_issue(self):
        proc = run_cli("explain", "conflict_detected", "--json")
        self.assertEqual(proc.returncode, 0, proc.stderr)
        payload = json.loads(proc.stdout)
        self.assertEqual(payload["label"], "ConflictDetectedWarning")
        self.assertTrue(payload["recovered"])

        proc = run_cli("explain", "not_a_rule")
        self.assertEqual(proc.returncode, 1)
        self.assertIn("Unknown issue id", proc.stderr)

    def test_version_and_bad_arguments(self):
        proc = run_cli("version")
        self.assertEqual(proc.returncode, 0)
        self.assertEqual(proc.stdout.strip(), "0.1.0")
        self.assertEqual(main(["ingest"]), 1)
        self.assertEqual(main(["ingest", SAMPLE, "--delimiter", "colon"]), 1)


class ResolveConfigTests(unittest.TestCase):
    def test_explicit_comma_overrides_auto_detect_in_config(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "auto.json"
            path.write_text(json.dumps({"delimiter": None}), encoding="utf-8")
            parser = build_parser()

            args = parser.parse_args(["ingest", SAMPLE, "--config", str(path)])
            self.assertIsNone(resolve_config(args).delimiter)

            args = parser.parse_args(["ingest", SAMPLE, "--config", str(path), "--delimiter", ","])
            self.assertEqual(resolve_config(args).delimiter, ",")

            args = parser.parse_args(["ingest", SAMPLE, "--delimiter", "auto"])
            self.assertIsNone(resolve_config(args).delimiter)

    def test_profile_is_the_base_for_a_config_file(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "agents.json"
            path.write_text(json.dumps({"epsilon": 2}), encoding="utf-8")
            args = build_parser().parse_args(["ingest", SAMPLE, "--profile", "agents", "--config", str(path)])
            config = resolve_config(args)
        self.assertEqual(config.epsilon, 2)
        self.assertIn("um_name", [spec.name for spec in config.fields])


class ExplainCoverageTests(unittest.TestCase):
    def test_every_issue_id_has_an_explanation(self):
        self.assertEqual(set(EXPLAIN_RULES), set(ISSUE_DEFINITIONS))

    def test_parser_defaults(self):
        args = build_parser().parse_args(["ingest", SAMPLE])
        self.assertIsNone(args.delimiter)
        self.assertIsNone(args.profile)
        self.assertIsNone(args.deadline)
        self.assertEqual(args.timeout, 30.0)


if __name__ == "__main__":
    unittest.main()
