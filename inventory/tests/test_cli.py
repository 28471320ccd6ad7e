from __future__ import annotations

import dataclasses
import logging
import sys

import pytest
from openpyxl import load_workbook

from conftest import FakeCoreV1, FakeMongoFactory, cluster_doc, scoped_secret
from tenant_report import cli
from tenant_report.k8s.auth import ClusterContext
from tenant_report.store import connect
from tenant_report.util.errors import ClusterAuthError, ExitCode


@pytest.fixture
def fake_cluster(monkeypatch):
    core = FakeCoreV1(
        ["tenant-a", "tenant-b", "tenant-c"],
        {"tenant-a": scoped_secret(), "tenant-c": scoped_secret()},
    )
    factory = FakeMongoFactory(
        {
            "tenant-a": [cluster_doc("a1"), cluster_doc("a2", teleport=False)],
            "tenant-c": [cluster_doc("c1", teleport=False)],
        }
    )
    monkeypatch.setattr(cli, "_resolve_cluster", lambda cfg: ClusterContext(method="kubeconfig", api_client=None))
    monkeypatch.setattr(cli, "core_v1", lambda ctx: core)
    monkeypatch.setattr(connect, "MongoClient", factory)
    return core, factory


def test_cmd_run_writes_one_sheet_per_report(run_config, fake_cluster) -> None:
    _core, factory = fake_cluster
    cfg = dataclasses.replace(run_config, progress=False)

    assert cli.cmd_run(cfg) == ExitCode.OK

    wb = load_workbook(cfg.output)
    assert wb.sheetnames == ["pvtIP", "Non-pvtIP"]
    assert [row[0] for row in wb["pvtIP"].iter_rows(min_row=2, values_only=True)] == ["tenant-a"]
    assert [row[0] for row in wb["Non-pvtIP"].iter_rows(min_row=2, values_only=True)] == ["tenant-a", "tenant-c"]
    assert all(client.close_calls == 1 for client in factory.clients.values())


def test_cmd_run_returns_runtime_error_when_a_sink_fails(run_config, fake_cluster) -> None:
    run_config.output.write_text("not a workbook", encoding="utf-8")
    cfg = dataclasses.replace(run_config, progress=False)

    assert cli.cmd_run(cfg) == ExitCode.RUNTIME_ERROR


def test_cmd_list_namespaces_prints_names(run_config, fake_cluster, capsys) -> None:
    assert cli.cmd_list_namespaces(run_config) == 0
    assert capsys.readouterr().out.splitlines() == ["tenant-a", "tenant-b", "tenant-c"]


def test_main_maps_auth_failure_to_exit_code(monkeypatch) -> None:
    def _fail(cfg):
        raise ClusterAuthError("no kubeconfig")

    monkeypatch.setattr(sys, "argv", ["tenant-report", "list-namespaces"])
    monkeypatch.setattr(cli, "setup_logging", lambda config=None: None)
    monkeypatch.setattr(cli, "_resolve_cluster", _fail)

    with pytest.raises(SystemExit) as excinfo:
        cli.main()
    assert excinfo.value.code == ExitCode.AUTH_ERROR


def test_main_maps_bad_arguments_to_config_error(monkeypatch) -> None:
    monkeypatch.setattr(sys, "argv", ["tenant-report", "run", "--workers", "0"])
    monkeypatch.setattr(cli, "setup_logging", lambda config=None: None)

    with pytest.raises(SystemExit) as excinfo:
        cli.main()
    assert excinfo.value.code == ExitCode.CONFIG_ERROR


def _total_lines(caplog) -> list[str]:
    return [r.getMessage() for r in caplog.records if r.getMessage().startswith("Total ")]


def test_cmd_run_logs_totals_without_log_sink(run_config, fake_cluster, caplog) -> None:
    cfg = dataclasses.replace(run_config, progress=False, sinks=("xlsx",))

    with caplog.at_level(logging.INFO):
        assert cli.cmd_run(cfg) == ExitCode.OK

    assert _total_lines(caplog) == [
        "Total 1 customers have added clusters after Private IP release",
        "Total 2 customers have added clusters before Private IP release",
    ]


def test_cmd_run_logs_each_total_once_with_log_sink(run_config, fake_cluster, caplog) -> None:
    cfg = dataclasses.replace(run_config, progress=False, sinks=("log", "xlsx"))

    with caplog.at_level(logging.INFO):
        assert cli.cmd_run(cfg) == ExitCode.OK

    assert len(_total_lines(caplog)) == 2
