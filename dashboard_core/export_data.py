#!/usr/bin/env python3
"""
dashboard_core.export_data — Dashboard data file materializer.

Turns a converted dataset into the static JSON files embedded in a
generated dashboard bundle:

    value.json                  — rebuild_tree(value records)
    volume.json                 — rebuild_tree(volume records), only if any
    segmentation_analysis.json  — rebuild_structure(geographies, dimensions)

Usage:
    python -m dashboard_core.export_data --input dataset.json --out public/data
    python -m dashboard_core.export_data --input dataset.json --out public/data --force --json

Protocol:
    1. Build every file in memory.
    2. Write to .tmp_{name}_{uuid}/ next to the output directory.
    3. Atomic os.replace() of the temp directory onto the output path.
    4. Remove the temp directory on any failure.

Exit codes:
    0: Files written.
    1: Input missing or not a usable dataset.
    2: Output directory exists and --force was not given.
    3: Writing the output failed.

Environment variables:
    ENV                   — "dev" enables DEBUG logging (default: "prod")
    LOG_LEVEL             — log level outside dev (default: "INFO")
    DASHBOARD_EXPORT_DIR  — default --out directory (default: "public/data")
"""

from __future__ import annotations

import argparse
import json
import logging
import os
import shutil
import sys
import uuid
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from dashboard_core.constants import (
    SEGMENTATION_FILE,
    VALUE_FILE,
    VOLUME_FILE,
)
from dashboard_core.diagnostics import Diagnostics
from dashboard_core.models import DashboardDataError, Dataset
from dashboard_core.tree import rebuild_structure, rebuild_tree

logger = logging.getLogger("dashboard.export")

# ---------------------------------------------------------------------------
# Environment
# ---------------------------------------------------------------------------

ENV = os.getenv("ENV", "prod").lower().strip()
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper().strip()
DEFAULT_EXPORT_DIR = os.getenv("DASHBOARD_EXPORT_DIR", "public/data").strip() or "public/data"

# ---------------------------------------------------------------------------
# Exit codes
# ---------------------------------------------------------------------------

EXIT_OK: int = 0
EXIT_INPUT_ERROR: int = 1
EXIT_OUTPUT_EXISTS: int = 2
EXIT_WRITE_FAILED: int = 3


class OutputExistsError(FileExistsError):
    """Raised when the output directory exists and overwriting was not requested."""


# ---------------------------------------------------------------------------
# Serialization
# ---------------------------------------------------------------------------

def to_json_text(data: Any) -> str:
    """Pretty JSON: 2-space indent, UTF-8 characters kept, trailing newline."""
    return json.dumps(data, indent=2, ensure_ascii=False) + "\n"


def build_data_files(
    dataset: Dataset,
    diagnostics: Diagnostics | None = None,
) -> dict[str, str]:
    """Build {file name: JSON text} for every data file of the bundle."""
    diag = diagnostics if diagnostics is not None else Diagnostics()

    files: dict[str, str] = {
        VALUE_FILE: to_json_text(rebuild_tree(dataset.value, diag)),
    }
    if dataset.volume:
        files[VOLUME_FILE] = to_json_text(rebuild_tree(dataset.volume, diag))
    files[SEGMENTATION_FILE] = to_json_text(
        rebuild_structure(dataset.all_geographies, dataset.segment_dimensions, diag)
    )
    return files


# ---------------------------------------------------------------------------
# I/O
# ---------------------------------------------------------------------------

def load_dataset(path: Path, diagnostics: Diagnostics | None = None) -> Dataset:
    """Read a converter payload from disk.

    Raises:
        DashboardDataError: If the file is missing or unreadable, is not
            UTF-8 JSON, or is not a dataset object.
    """
    if not path.is_file():
        raise DashboardDataError(f"Dataset file not found: {path}")
    try:
        with open(path, encoding="utf-8") as fh:
            payload = json.load(fh)
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise DashboardDataError(f"Dataset file is not valid UTF-8 JSON: {path} ({exc})") from exc
    except OSError as exc:
        raise DashboardDataError(f"Dataset file could not be read: {path} ({exc})") from exc
    return Dataset.from_payload(payload, diagnostics)


def write_data_files(
    dataset: Dataset,
    out_dir: Path,
    force: bool = False,
    diagnostics: Diagnostics | None = None,
) -> Path:
    """Materialize the data files into ``out_dir`` atomically.

    Raises:
        OutputExistsError: If ``out_dir`` exists and ``force`` is False.
    """
    out_dir = Path(out_dir)
    if out_dir.exists() and not force:
        raise OutputExistsError(f"Output directory already exists: {out_dir}")

    files = build_data_files(dataset, diagnostics)

    out_dir.parent.mkdir(parents=True, exist_ok=True)
    temp_dir = out_dir.parent / f".tmp_{out_dir.name}_{uuid.uuid4().hex[:8]}"
    temp_dir.mkdir()
    try:
        for name, content in files.items():
            with open(temp_dir / name, "w", encoding="utf-8") as fh:
                fh.write(content)

        if out_dir.exists():
            shutil.rmtree(out_dir)
        os.replace(temp_dir, out_dir)
    except Exception:
        if temp_dir.exists():
            shutil.rmtree(temp_dir, ignore_errors=True)
        raise

    logger.info(json.dumps({
        "event": "data_files_written",
        "out_dir": str(out_dir),
        "files": sorted(files),
    }))
    return out_dir


# ---------------------------------------------------------------------------
# CLI
# ---------------------------------------------------------------------------

def configure_logging() -> None:
    """Structured JSON lines to stdout. DEBUG in dev."""
    level = logging.DEBUG if ENV == "dev" else getattr(logging, LOG_LEVEL, logging.INFO)
    logging.basicConfig(
        level=level,
        format="%(message)s",
        stream=sys.stdout,
    )


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="export_data",
        description="Write value.json, volume.json and segmentation_analysis.json for a dashboard.",
    )
    parser.add_argument(
        "--input",
        required=True,
        help="Converted dataset JSON file.",
    )
    parser.add_argument(
        "--out",
        default=DEFAULT_EXPORT_DIR,
        help=f"Output directory (default: {DEFAULT_EXPORT_DIR}).",
    )
    parser.add_argument(
        "--force",
        action="store_true",
        help="Replace the output directory if it exists.",
    )
    parser.add_argument(
        "--json",
        action="store_true",
        dest="json_output",
        help="Print a structured JSON report.",
    )
    parser.add_argument(
        "--quiet",
        action="store_true",
        help="Suppress all output. Exit code only.",
    )
    return parser


def main(argv: list[str] | None = None) -> int:
    """Run the export. Returns exit code."""
    args = _build_parser().parse_args(argv)
    if not args.quiet:
        configure_logging()

    diag = Diagnostics()
    out_dir = Path(args.out)
    report: dict[str, Any] = {"input": args.input, "out_dir": str(out_dir)}

    try:
        dataset = load_dataset(Path(args.input), diag)
        write_data_files(dataset, out_dir, force=args.force, diagnostics=diag)
        exit_code = EXIT_OK
    except (DashboardDataError, ValidationError) as exc:
        report["error"] = str(exc)
        exit_code = EXIT_INPUT_ERROR
    except OutputExistsError as exc:
        report["error"] = str(exc)
        exit_code = EXIT_OUTPUT_EXISTS
    except OSError as exc:
        report["error"] = f"{type(exc).__name__}: {exc}"
        exit_code = EXIT_WRITE_FAILED

    report["exit_code"] = exit_code
    report["diagnostics"] = diag.to_dict()

    if args.quiet:
        return exit_code

    if args.json_output:
        print(json.dumps(report, indent=2, ensure_ascii=False))
        return exit_code

    status = "OK" if exit_code == EXIT_OK else "FAILED"
    print(f"Input:    {args.input}")
    print(f"Output:   {out_dir}")
    print(f"Status:   {status}")
    if "error" in report:
        print(f"Error:    {report['error']}")
    if len(diag):
        print(f"\nDiagnostics ({len(diag)}):")
        for event in diag.events:
            print(f"  • [{event['event']}] {event['detail']}")
    print(f"\nExit code: {exit_code}")
    return exit_code


if __name__ == "__main__":
    sys.exit(main())
