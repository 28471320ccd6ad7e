from __future__ import annotations

from pathlib import Path
from typing import Any, Iterator, Tuple, Union
from zipfile import BadZipFile

from openpyxl import Workbook, load_workbook
from openpyxl.styles import Font
from openpyxl.utils.exceptions import InvalidFileException

from ..models import AggregateReport, ReportDefinition
from ..util.errors import SinkError

HEADER = ("NameSpace", "ClusterCount", "Status", "CreationTime")

_COLUMN_TITLES = {"name": "ClusterName", "status": "Status", "create_time": "CreationTime"}

Row = Tuple[Any, ...]


def sheet_header(definition: ReportDefinition) -> Tuple[str, ...]:
    """
    Column titles for a report. The detail columns follow the report's detail
    fields; count-only reports keep the status layout with those cells empty.
    """
    if definition.count_only:
        return HEADER
    return HEADER[:2] + tuple(_COLUMN_TITLES[f] for f in definition.detail_fields)


def report_rows(report: AggregateReport) -> Iterator[Row]:
    """
    One row per detail record, repeating namespace and count. A namespace
    without detail records (count-only reports) gets a single summary row
    with empty Status/CreationTime. Namespaces are ordered by name.
    """
    fields = report.definition.detail_fields
    for result in report.sorted_results():
        if not result.records:
            yield (result.namespace, result.count, "", "")
            continue
        for rec in result.records:
            yield (result.namespace, result.count) + tuple(getattr(rec, f) for f in fields)


def write_report_sheet(report: AggregateReport, path: Path, sheet_name: str | None = None) -> int:
    """
    Add the report as a new sheet of the workbook at path, creating the
    workbook when it does not exist. An existing sheet with the same name is
    an error; sheets are never overwritten. Returns the number of data rows.
    """
    sheet = sheet_name or report.definition.sheet
    if path.exists():
        try:
            wb = load_workbook(path)
        except (InvalidFileException, BadZipFile, KeyError, OSError) as e:
            raise SinkError(f"Failed to open workbook {path}: {e}") from e
        if sheet in wb.sheetnames:
            raise SinkError(f"Sheet '{sheet}' already exists in {path}")
        ws = wb.create_sheet(title=sheet)
    else:
        path.parent.mkdir(parents=True, exist_ok=True)
        wb = Workbook()
        ws = wb.active
        ws.title = sheet

    ws.append(sheet_header(report.definition))
    for cell in ws[1]:
        cell.font = Font(bold=True)

    written = 0
    for row in report_rows(report):
        ws.append(row)
        written += 1

    try:
        wb.save(path)
    except OSError as e:
        raise SinkError(f"Failed to save workbook {path}: {e}") from e
    return written


class XlsxSink:
    name = "xlsx"

    def __init__(self, path: Union[str, Path]) -> None:
        self.path = Path(path)

    def emit(self, report: AggregateReport) -> None:
        write_report_sheet(report, self.path)
