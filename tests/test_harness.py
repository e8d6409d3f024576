"""Tests for the end-to-end self-test."""

import httpx
import pytest

from conftest import BASE_URL, OTHER_CSV
from sql_console.harness import FIXTURE_FILENAME, StepRunner
from sql_console.models import HarnessStatus, StepStatus
from sql_console.query import QueryExecutor
from sql_console.state import DatasetStateStore
from sql_console.transport import TransportClient
from sql_console.upload import UploadCoordinator


def make_runner(client, table_name="tablename", **listeners):
    store = DatasetStateStore()
    uploader = UploadCoordinator(client, store)
    return StepRunner(uploader, store, QueryExecutor(client, store), table_name=table_name, **listeners)


@pytest.mark.asyncio
async def test_run_against_empty_service_uploads_fixture(client, service):
    verified = []
    runner = make_runner(client, on_result=lambda sql, result: verified.append((sql, result)))

    report = await runner.run()

    assert report.status is HarnessStatus.PASSED
    assert report.status.value == "all passed"
    assert [s.status for s in report.steps] == [StepStatus.PASS] * 4
    assert report.steps[0].detail == "Uploaded fixture: 3 rows, 3 columns"
    assert report.steps[1].detail == "3 columns, 3 rows"
    assert report.steps[2].detail == "COUNT(*) = 3"
    assert report.steps[3].detail == "3 rows, 3 columns"
    assert service.uploads[0][0] == FIXTURE_FILENAME
    assert verified[0][0] == "SELECT * FROM tablename LIMIT 5"
    assert runner.store.loaded


@pytest.mark.asyncio
async def test_run_uses_loaded_dataset_without_uploading(client, service):
    runner = make_runner(client)
    await runner.uploader.upload(OTHER_CSV.encode(), "cities.csv")

    report = await runner.run()

    assert report.passed
    assert report.steps[0].detail == "Already loaded: 2 rows, 2 columns"
    assert report.steps[2].detail == "COUNT(*) = 2"
    assert len(service.uploads) == 1


@pytest.mark.asyncio
async def test_step_updates_are_published_in_order(client):
    seen = []
    runner = make_runner(client, on_steps=lambda steps: seen.append(tuple(s.status for s in steps)))

    await runner.run()

    assert seen[0] == (StepStatus.PENDING,) * 4
    assert seen[1] == (StepStatus.RUNNING,) + (StepStatus.PENDING,) * 3
    assert seen[-1] == (StepStatus.PASS,) * 4
    for steps in seen:
        assert list(steps).count(StepStatus.RUNNING) <= 1


def _failing_service(service, step):
    def handler(request: httpx.Request) -> httpx.Response:
        body = request.content.decode(errors="ignore")
        if step == 1 and request.url.path == "/api/upload":
            return httpx.Response(400, json={"error": "failed to load CSV"})
        if step == 2 and request.url.path == "/api/stats":
            return httpx.Response(200, json={"rowCount": 3, "columnCount": 0, "columns": []})
        if step == 3 and "COUNT(*)" in body:
            return httpx.Response(200, json={"columns": [], "rows": [], "error": "Binder Error"})
        if step == 4 and "LIMIT 5" in body:
            return httpx.Response(200, json={"columns": [], "rows": []})
        return service.handler(request)
    return handler


@pytest.mark.asyncio
@pytest.mark.parametrize("failing_step", [1, 2, 3, 4])
async def test_first_failure_stops_the_run(service, failing_step):
    client = TransportClient(base_url=BASE_URL, transport=httpx.MockTransport(_failing_service(service, failing_step)))
    verified = []
    runner = make_runner(client, on_result=lambda sql, result: verified.append(sql))

    report = await runner.run()

    statuses = [s.status for s in report.steps]
    index = failing_step - 1
    assert report.status is HarnessStatus.FAILED
    assert statuses[:index] == [StepStatus.PASS] * index
    assert statuses[index] is StepStatus.FAIL
    assert statuses[failing_step:] == [StepStatus.PENDING] * (4 - failing_step)
    assert report.failed_step.detail
    assert verified == []


@pytest.mark.asyncio
async def test_failed_run_can_be_run_again(service):
    broken = {"on": True}

    def handler(request: httpx.Request) -> httpx.Response:
        if broken["on"] and request.url.path == "/api/stats":
            return httpx.Response(500, json={"error": "stats unavailable"})
        return service.handler(request)

    runner = make_runner(TransportClient(base_url=BASE_URL, transport=httpx.MockTransport(handler)))

    first = await runner.run()
    broken["on"] = False
    second = await runner.run()

    assert first.failed_step.detail == "stats unavailable"
    assert second.passed
    assert [s.status for s in second.steps] == [StepStatus.PASS] * 4


@pytest.mark.asyncio
async def test_missing_table_fails_aggregate_step(client):
    report = await make_runner(client, table_name="missing").run()

    assert report.failed_step.name == "Run aggregate query"
    assert "no such table" in report.failed_step.detail
