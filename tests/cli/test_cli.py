"""Tests for the batch-spine CLI."""

from __future__ import annotations

import json
import random
from datetime import datetime

import pytest
import structlog
import typer
from typer.testing import CliRunner

from batchspine.cli.app import app
from batchspine.cli.utils import parse_params
from batchspine.core.logging import bind_context, clear_context
from batchspine.examples.orders import ERROR_CUSTOMER, Order, build_registry, insert_order, seed_orders
from batchspine.execution.models import BatchStatus
from batchspine.execution.parameters import ParameterType
from batchspine.repository.sqlite import SqliteJobRepository

runner = CliRunner()


@pytest.fixture()
def db(tmp_path):
    return str(tmp_path / "cli.db")


def invoke(*args):
    return runner.invoke(app, list(args))


def invoke_json(*args):
    result = invoke(*args, "--json")
    return result, json.loads(result.stdout)


class TestParseParams:
    def test_types(self):
        params = parse_params(["name=Kim", "count(long)=3", "ratio(double)=0.5", "day(date)=2025-01-02"])
        assert params.get_parameter("name").type == ParameterType.STRING
        assert params.get_long("count") == 3
        assert params.get_double("ratio") == 0.5
        assert params.get_date("day").isoformat() == "2025-01-02"

    def test_non_identifying(self):
        params = parse_params(["-batch(long)=9", "date=2025-01-01"])
        assert params.get_parameter("batch").identifying is False
        assert list(params.identifying()) == ["date"]

    @pytest.mark.parametrize("bad", ["novalue", "count(long)=abc", "x(weird)=1"])
    def test_bad_input(self, bad):
        with pytest.raises(typer.BadParameter):
            parse_params([bad])


class TestBasics:
    def test_version(self):
        result = invoke("--version")
        assert result.exit_code == 0
        assert "batch-spine" in result.stdout

    def test_db_init_and_tables(self, db):
        result = invoke("db", "init", "--database", db)
        assert result.exit_code == 0

        result, rows = invoke_json("db", "tables", "--database", db)
        assert result.exit_code == 0
        assert {row["table"] for row in rows} >= {"batch_job_instances", "batch_job_executions"}
        assert all(row["rows"] == 0 for row in rows)

    def test_jobs_list(self, db):
        result, rows = invoke_json("jobs", "list", "--database", db)
        assert result.exit_code == 0
        assert [row["name"] for row in rows] == ["csvToDbJob", "faultTolerantJob", "orderProcessJob", "parameterJob"]

    def test_bad_jobs_spec(self, db):
        result = invoke("jobs", "list", "--database", db, "--jobs", "no_such_module:registry")
        assert result.exit_code == 1

    def test_each_command_starts_with_fresh_log_context(self, db):
        bind_context(job="leftover", execution_id=99)
        try:
            result = invoke("jobs", "list", "--database", db)
            assert result.exit_code == 0
            assert structlog.contextvars.get_contextvars() == {"command": "jobs"}
        finally:
            clear_context()


class TestRun:
    def test_run_and_duplicate(self, db):
        result, report = invoke_json("run", "csvToDbJob", "--database", db)
        assert result.exit_code == 0
        assert report["outcome"] == "CLEAN"
        assert report["write_count"] == 12

        result, report = invoke_json("run", "csvToDbJob", "--database", db)
        assert result.exit_code == 2
        assert report["outcome"] == "REJECTED_DUPLICATE"

    def test_unique_runs(self, db):
        first = invoke_json("run", "orderProcessJob", "--database", db, "--unique")[1]
        second = invoke_json("run", "orderProcessJob", "--database", db, "--unique")[1]
        assert first["outcome"] == second["outcome"] == "CLEAN"
        assert first["instance_id"] != second["instance_id"]

    def test_next_instance(self, db):
        first = invoke_json("run", "orderProcessJob", "--database", db, "--next")[1]
        second = invoke_json("run", "orderProcessJob", "--database", db, "--next")[1]
        assert first["parameters"]["run.id"] == "1"
        assert second["parameters"]["run.id"] == "2"

    def test_invalid_parameters(self, db):
        result, report = invoke_json("run", "parameterJob", "--database", db, "-p", "startDate=2025-01-01")
        assert result.exit_code == 2
        assert report["outcome"] == "REJECTED_INVALID"

    def test_unknown_job(self, db):
        result = invoke("run", "nopeJob", "--database", db)
        assert result.exit_code == 1
        assert "nopeJob" in result.stderr

    def test_bad_param_syntax(self, db):
        result = invoke("run", "csvToDbJob", "--database", db, "-p", "oops")
        assert result.exit_code == 2

    def test_failed_run(self, db, tmp_path):
        broken = tmp_path / "broken.csv"
        broken.write_text("id,name,email,age,city\n1,Kim,kim@example.com,old,Seoul\n", encoding="utf-8")
        result, report = invoke_json("run", "csvToDbJob", "--database", db, "-p", f"inputFile={broken}")
        assert result.exit_code == 1
        assert report["outcome"] == "FAILED"

    def test_human_output(self, db):
        result = invoke("run", "csvToDbJob", "--database", db)
        assert result.exit_code == 0
        assert "CLEAN" in result.stdout
        assert "csvToDbJob" in result.stdout


class TestInspection:
    @pytest.fixture()
    def fault_run(self, db):
        repository = SqliteJobRepository.connect(db)
        build_registry(repository)
        with repository.lock:
            seed_orders(repository.connection, 4, rng=random.Random(5))
            insert_order(
                repository.connection,
                Order(
                    id=None,
                    order_number="ORDBAD",
                    customer_name=ERROR_CUSTOMER,
                    amount=1000,
                    order_date=datetime(2020, 1, 1, 12, 0),
                ),
            )
            repository.connection.commit()
        repository.close()
        return invoke_json("run", "faultTolerantJob", "--database", db, "--unique")[1]

    def test_executions_list_and_show(self, db, fault_run):
        assert fault_run["outcome"] == "COMPLETED_WITH_SKIPS"

        result, rows = invoke_json("executions", "list", "--database", db)
        assert result.exit_code == 0
        assert rows[0]["id"] == fault_run["execution_id"]
        assert rows[0]["skipped"] == 1

        result, rows = invoke_json("executions", "list", "--database", db, "--status", "failed")
        assert rows == []

        result, execution = invoke_json("executions", "show", str(fault_run["execution_id"]), "--database", db)
        assert execution["status"] == "COMPLETED"
        assert execution["steps"][0]["step_name"] == "faultTolerantStep"

    def test_skips(self, db, fault_run):
        repository = SqliteJobRepository.connect(db)
        step_id = repository.get_execution(fault_run["execution_id"]).step_executions[0].id
        repository.close()

        result, skips = invoke_json("skips", str(step_id), "--database", db)
        assert result.exit_code == 0
        assert len(skips) == 1
        assert skips[0]["error_type"] == "RuntimeError"
        assert "ORDBAD" in skips[0]["item"]

    def test_show_missing(self, db):
        result = invoke("executions", "show", "999", "--database", db)
        assert result.exit_code == 1

    def test_unknown_status_filter(self, db):
        result = invoke("executions", "list", "--database", db, "--status", "sleepy")
        assert result.exit_code == 1


class TestAbandon:
    def test_abandon_stuck_execution(self, db):
        repository = SqliteJobRepository.connect(db)
        execution = repository.create_execution("orderProcessJob", parse_params(["date=2025-01-01"]))
        execution.transition_to(BatchStatus.STARTED)
        repository.update_execution(execution)
        repository.close()

        result = invoke("abandon", str(execution.id), "--database", db)
        assert result.exit_code == 0
        assert "Abandoned" in result.stdout

        repository = SqliteJobRepository.connect(db)
        assert repository.get_execution(execution.id).status == BatchStatus.ABANDONED
        repository.close()

        result = invoke("abandon", str(execution.id), "--database", db)
        assert result.exit_code == 1

    def test_abandon_missing(self, db):
        result = invoke("abandon", "424242", "--database", db)
        assert result.exit_code == 1
