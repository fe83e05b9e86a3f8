"""
Archive loader: unpacks the downloaded attachment and parses its tabular file.
"""

import csv
import os
import zipfile
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import structlog
from openpyxl import load_workbook

from admission_intake.ingestion.records import is_blank_row, normalize_row
from admission_intake.results import StageResult

CSV_SUFFIX = '.csv'
SPREADSHEET_SUFFIXES = ('.xlsx', '.xlsm')

Rows = List[Dict[str, Any]]


class ArchiveLoader:
    """Extracts an archive and loads the first tabular file it contains."""

    def __init__(self, logger=None):
        self.logger = logger or structlog.get_logger(__name__)

    def extract_and_load(self, archive_path, extract_dir) -> StageResult[Rows]:
        archive_path = Path(archive_path)
        extract_dir = Path(extract_dir)

        try:
            extract_dir.mkdir(parents=True, exist_ok=True)
            with zipfile.ZipFile(archive_path) as archive:
                archive.extractall(extract_dir)
                self.logger.info(
                    "Extracted archive",
                    archive=archive_path.name,
                    entries=len(archive.namelist()),
                    directory=str(extract_dir)
                )
        except Exception as e:
            # Damaged members surface as zlib.error, bad CRCs or unsupported compression
            self.logger.error("Failed to extract archive", archive=str(archive_path), error=str(e))
            return StageResult.failed(f"Archive extraction failed: {e}")

        found = self.find_tabular_file(extract_dir)
        if found is None:
            self.logger.warning("No CSV or spreadsheet file found in archive", directory=str(extract_dir))
            return StageResult.absent("no tabular file")

        data_file, kind = found
        try:
            if kind == 'csv':
                rows = self.read_csv(data_file)
            else:
                rows = self.read_spreadsheet(data_file)
        except Exception as e:
            self.logger.error("Failed to parse data file", file=data_file.name, error=str(e))
            return StageResult.failed(f"Could not parse {data_file.name}: {e}")

        if not rows:
            self.logger.warning("Data file has no rows", file=data_file.name)
            return StageResult.absent("no data rows")

        self.logger.info("Loaded data file", file=data_file.name, format=kind, rows=len(rows))
        return StageResult.ok(rows)

    def find_tabular_file(self, directory: Path) -> Optional[Tuple[Path, str]]:
        """First CSV in listing order, else the first spreadsheet."""
        # Listing order is whatever the filesystem returns
        entries = [name for name in os.listdir(directory) if (directory / name).is_file()]

        for name in entries:
            if name.lower().endswith(CSV_SUFFIX):
                return directory / name, 'csv'

        for name in entries:
            if name.lower().endswith(SPREADSHEET_SUFFIXES):
                return directory / name, 'spreadsheet'

        return None

    def read_csv(self, path: Path) -> Rows:
        with open(path, 'r', encoding='utf-8-sig', newline='') as f:
            reader = csv.DictReader(f)
            if not reader.fieldnames:
                raise ValueError("CSV has no headers")

            rows = []
            for row in reader:
                # Short rows get None for missing trailing cells; extras land under None
                row.pop(None, None)
                normalized = normalize_row(row)
                if not is_blank_row(normalized):
                    rows.append(normalized)
            return rows

    def read_spreadsheet(self, path: Path) -> Rows:
        workbook = load_workbook(path, read_only=True, data_only=True)
        try:
            sheet = workbook.active
            values = sheet.iter_rows(values_only=True)

            try:
                headers = next(values)
            except StopIteration:
                raise ValueError("Spreadsheet has no header row")

            rows = []
            for raw in values:
                row = {header: cell for header, cell in zip(headers, raw) if header is not None}
                normalized = normalize_row(row)
                if normalized and not is_blank_row(normalized):
                    rows.append(normalized)
            return rows
        finally:
            workbook.close()
