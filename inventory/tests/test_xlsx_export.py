from __future__ import annotations

import pytest
from openpyxl import load_workbook

from tenant_report.export.xlsx import HEADER, XlsxSink, report_rows, write_report_sheet
from tenant_report.models import AggregateReport, DetailRecord, FilterKind, NamespaceResult, ReportDefinition
from tenant_report.util.errors import SinkError


def _report(kind: FilterKind, results: list[NamespaceResult], sheet: str | None = None) -> AggregateReport:
    definition = ReportDefinition.for_filter(kind, sheet=sheet)
    return AggregateReport(definition=definition, results={r.namespace: r for r in results})


def _sheet_rows(path, sheet: str) -> list[tuple]:
    wb = load_workbook(path)
    return [tuple(row) for row in wb[sheet].iter_rows(values_only=True)]


def test_round_trip_rows_match_records(tmp_path) -> None:
    path = tmp_path / "cluster.xlsx"
    records = (
        DetailRecord(name="a", status="Success", create_time="2024-01-01T00:00:00Z"),
        DetailRecord(name="b", status="Failed", create_time="2024-01-02T00:00:00Z"),
        DetailRecord(name="c", status="Success", create_time="2024-01-03T00:00:00Z"),
    )
    report = _report(FilterKind.TELEPORT_ATTACHED, [NamespaceResult("tenant-a", 3, records)])

    written = write_report_sheet(report, path)

    assert written == 3
    rows = _sheet_rows(path, "pvtIP")
    assert rows[0] == HEADER
    assert sorted(rows[1:]) == sorted(
        ("tenant-a", 3, rec.status, rec.create_time) for rec in records
    )


def test_second_sheet_is_added_to_existing_file_with_header(tmp_path) -> None:
    path = tmp_path / "cluster.xlsx"
    attached = _report(
        FilterKind.TELEPORT_ATTACHED,
        [NamespaceResult("tenant-a", 1, (DetailRecord(status="Success", create_time="t1"),))],
    )
    detached = _report(
        FilterKind.TELEPORT_DETACHED,
        [NamespaceResult("tenant-a", 1, (DetailRecord(status="Pending", create_time="t0"),))],
    )

    write_report_sheet(attached, path)
    write_report_sheet(detached, path)

    wb = load_workbook(path)
    assert wb.sheetnames == ["pvtIP", "Non-pvtIP"]
    assert _sheet_rows(path, "Non-pvtIP") == [HEADER, ("tenant-a", 1, "Pending", "t0")]
    assert _sheet_rows(path, "pvtIP") == [HEADER, ("tenant-a", 1, "Success", "t1")]


def test_existing_sheet_is_never_overwritten(tmp_path) -> None:
    path = tmp_path / "cluster.xlsx"
    report = _report(FilterKind.TELEPORT_ATTACHED, [NamespaceResult("tenant-a", 1, (DetailRecord(),))])
    write_report_sheet(report, path)

    with pytest.raises(SinkError, match="already exists"):
        write_report_sheet(report, path)

    assert len(_sheet_rows(path, "pvtIP")) == 2


def test_count_only_result_writes_summary_row(tmp_path) -> None:
    path = tmp_path / "cluster.xlsx"
    report = _report(FilterKind.ALL_MINUS_TEST, [NamespaceResult("tenant-a", 4)])

    write_report_sheet(report, path)

    namespace, count, status, created = _sheet_rows(path, "AllClusters")[1]
    assert (namespace, count) == ("tenant-a", 4)
    assert status in (None, "")
    assert created in (None, "")


def test_rows_are_ordered_by_namespace() -> None:
    report = _report(
        FilterKind.ALL_MINUS_TEST,
        [NamespaceResult("tenant-b", 1), NamespaceResult("tenant-a", 2)],
    )
    assert [row[0] for row in report_rows(report)] == ["tenant-a", "tenant-b"]


def test_empty_report_writes_header_only(tmp_path) -> None:
    path = tmp_path / "out" / "cluster.xlsx"
    XlsxSink(path).emit(_report(FilterKind.TELEPORT_ATTACHED, []))

    assert _sheet_rows(path, "pvtIP") == [HEADER]


def test_unreadable_workbook_raises_sink_error(tmp_path) -> None:
    path = tmp_path / "cluster.xlsx"
    path.write_text("not a workbook", encoding="utf-8")

    with pytest.raises(SinkError):
        write_report_sheet(_report(FilterKind.ALL, []), path)


def test_name_variants_write_cluster_name_column(tmp_path) -> None:
    path = tmp_path / "cluster.xlsx"
    records = (DetailRecord(name="prod", status="Success", create_time="t1"),)
    report = _report(FilterKind.STATUS_SUCCESS, [NamespaceResult("tenant-a", 1, records)])

    write_report_sheet(report, path)

    assert _sheet_rows(path, "Success") == [
        ("NameSpace", "ClusterCount", "ClusterName", "CreationTime"),
        ("tenant-a", 1, "prod", "t1"),
    ]
