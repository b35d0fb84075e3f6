"""
Export every synthetic monitor to output/monitor.csv and the script of each
scripted monitor to output/scripts/<name>.js.

Env vars (a .env file is read too):
  NR_API_KEY        -> User API key (NRAK-...), required
  NEW_RELIC_REGION  -> "US" (default) or "EU"

Usage:
  export-synthetics [--output-dir output] [--workers 8] [--no-scripts] [--excel]
"""
import argparse
import csv
import os
import sys
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Tuple

import pandas as pd
from dotenv import load_dotenv
from openpyxl import load_workbook
from tqdm import tqdm

from fetch_synthetic_monitors import MANIFEST_FIELDS, MonitorShapeError, fetch_monitors, to_record
from fetch_synthetic_scripts import ScriptFetchError, ScriptTask, fetch_and_save, sanitize_name
from nerdgraph import DEFAULT_TIMEOUT, NerdGraphClient, NerdGraphError

MANIFEST_FILE_NAME = "monitor.csv"
SCRIPT_DIR_NAME    = "scripts"
DEFAULT_OUTPUT_DIR = "output"
DEFAULT_WORKERS    = 8


# Run states, in order
QUERYING           = "querying"
MANIFEST_WRITTEN   = "manifest-written"
COMPLETED          = "completed"


@dataclass(frozen=True)
class ScriptFailure:
    task: ScriptTask
    error: Exception

    def __str__(self):
        return f"{self.task.name or self.task.file_name} ({self.task.guid}): {self.error}"


@dataclass(frozen=True)
class ExportSummary:
    manifest_path: Path
    monitor_count: int
    scripts_written: Tuple[Path, ...] = ()
    failures: Tuple[ScriptFailure, ...] = ()


class ExportError(Exception):

    def __init__(self, message, failures=(), summary: Optional[ExportSummary] = None):
        super().__init__(message)
        self.failures = tuple(failures)
        self.summary = summary


class SyntheticsExport:
    """
    One export run: query -> manifest -> concurrent script fetches.

    The manifest is closed before any script is fetched, so it is complete
    whatever happens to the scripts. Failed script tasks are collected and
    raised together once every task has finished.
    """

    def __init__(self, client, output_dir=DEFAULT_OUTPUT_DIR, workers=DEFAULT_WORKERS,
                 fetch_scripts=True, progress=True):
        self.client = client
        self.output_dir = Path(output_dir)
        self.workers = max(1, int(workers))
        self.fetch_scripts = fetch_scripts
        self.progress = progress
        self.state = None

    @property
    def manifest_path(self):
        return self.output_dir / MANIFEST_FILE_NAME

    @property
    def script_dir(self):
        return self.output_dir / SCRIPT_DIR_NAME

    def run(self) -> ExportSummary:
        self.state = QUERYING
        try:
            monitors = fetch_monitors(self.client)
        except (NerdGraphError, MonitorShapeError) as e:
            raise ExportError(f"Failed to retrieve synthetic monitors: {e}") from e

        tasks = self.write_manifest(monitors)
        self.state = MANIFEST_WRITTEN

        written, failures = [], []
        if self.fetch_scripts and tasks:
            written, failures = self.run_script_tasks(tasks)
        self.state = COMPLETED

        summary = ExportSummary(self.manifest_path, len(monitors), tuple(written), tuple(failures))
        if failures:
            raise ExportError(
                f"{len(failures)} of {len(tasks)} script(s) failed, first: {failures[0]}",
                failures=failures,
                summary=summary,
            )
        return summary

    def write_manifest(self, monitors):
        """Write one row per monitor, in order, and return the script tasks to run."""
        tasks = []
        try:
            with open(self.manifest_path, "w", newline="", encoding="utf-8") as csvfile:
                writer = csv.DictWriter(csvfile, fieldnames=MANIFEST_FIELDS)
                writer.writeheader()
                for monitor in monitors:
                    writer.writerow(to_record(monitor).as_row())
                    if monitor.is_scripted:
                        tasks.append(ScriptTask(monitor.account_id, monitor.guid,
                                                sanitize_name(monitor.name), monitor.name))
        except OSError as e:
            raise ExportError(f"Cannot write manifest {self.manifest_path}: {e}") from e
        return tasks

    def run_script_tasks(self, tasks):
        written, failures = [], []
        with ThreadPoolExecutor(max_workers=self.workers) as executor:
            future_to_task = {
                executor.submit(fetch_and_save, self.client, self.script_dir, task): task
                for task in tasks
            }
            for future in tqdm(as_completed(future_to_task), total=len(tasks), unit="script",
                               disable=not self.progress):
                task = future_to_task[future]
                try:
                    written.append(future.result())
                # ValueError: unencodable script text or a name the OS rejects
                except (NerdGraphError, ScriptFetchError, OSError, ValueError) as e:
                    failures.append(ScriptFailure(task, e))
        return written, failures


def write_excel(manifest_path):
    """Copy the manifest into an .xlsx next to it, with filters and a frozen header."""
    manifest_path = Path(manifest_path)
    excel_file = manifest_path.with_suffix(".xlsx")
    df = pd.read_csv(manifest_path)
    df.to_excel(excel_file, index=False, engine="openpyxl")

    workbook = load_workbook(excel_file)
    sheet = workbook.active
    sheet.auto_filter.ref = sheet.dimensions
    sheet.freeze_panes = "A2"
    workbook.save(excel_file)
    return excel_file


def resolve_api_key():
    return os.getenv("NR_API_KEY") or os.getenv("NEW_RELIC_API_KEY") or os.getenv("NEWRELIC_API_KEY")


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Export New Relic synthetic monitors and their scripts.")
    parser.add_argument("--output-dir", default=DEFAULT_OUTPUT_DIR,
                        help="Existing directory for monitor.csv and scripts/ (default: output)")
    parser.add_argument("--workers", type=int, default=DEFAULT_WORKERS,
                        help="Concurrent script fetches (default: 8)")
    parser.add_argument("--no-scripts", action="store_true", help="Only write the monitor manifest")
    parser.add_argument("--excel", action="store_true", help="Also write monitor.xlsx from the manifest")
    parser.add_argument("--region", default=None, help='"US" or "EU" (overrides NEW_RELIC_REGION)')
    parser.add_argument("--timeout", type=float, default=DEFAULT_TIMEOUT,
                        help="Per-request timeout in seconds (default: 60)")
    return parser.parse_args(argv)


def main(argv=None):
    load_dotenv()
    args = parse_args(argv)

    api_key = resolve_api_key()
    if not api_key:
        sys.stderr.write("[ERROR] Missing API key. Set NR_API_KEY in the environment or .env file.\n")
        return 1

    region = args.region or os.getenv("NEW_RELIC_REGION", "US")
    try:
        client = NerdGraphClient(api_key, region=region, timeout=args.timeout)
    except ValueError as e:
        sys.stderr.write(f"[ERROR] {e}\n")
        return 1

    exporter = SyntheticsExport(client, args.output_dir, workers=args.workers,
                                fetch_scripts=not args.no_scripts)
    print(f"Region: {region.upper()}")
    print("Fetching synthetic monitors via NerdGraph...")

    with client:
        try:
            summary = exporter.run()
        except ExportError as e:
            for failure in e.failures:
                sys.stderr.write(f"[WARN] Failed to export script for {failure}\n")
            sys.stderr.write(f"[ERROR] {e}\n")
            if e.summary is not None:
                print(f"\n\tManifest written to {e.summary.manifest_path} "
                      f"({e.summary.monitor_count} monitors, {len(e.summary.scripts_written)} scripts)\n")
                if args.excel:
                    _write_excel_or_warn(e.summary.manifest_path)
            return 1

    print(f"\n\tPlease see the output file named \"{summary.manifest_path}\"\n")
    print(f" {summary.monitor_count:>6} synthetic monitors")
    print(f" {len(summary.scripts_written):>6} scripts in {exporter.script_dir}")
    if args.excel and _write_excel_or_warn(summary.manifest_path) is None:
        return 1
    return 0


def _write_excel_or_warn(manifest_path):
    try:
        excel_file = write_excel(manifest_path)
    except (OSError, ValueError) as e:
        sys.stderr.write(f"[WARN] Could not write Excel copy of {manifest_path}: {e}\n")
        return None
    print(f"\t{excel_file}\n")
    return excel_file


if __name__ == "__main__":
    sys.exit(main())
