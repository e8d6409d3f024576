"""End-to-end self-test that drives upload, stats and queries in a fixed order."""

import logging
from typing import Awaitable, Callable, List, Optional, Tuple

from sql_console.models import HarnessReport, HarnessStatus, QueryResult, StepStatus, TestStep
from sql_console.query import QueryExecutor
from sql_console.state import DatasetStateStore, fresh_steps, set_step
from sql_console.upload import UploadCoordinator


logger = logging.getLogger(__name__)

FIXTURE_CSV = "id,name,score\n1,alice,85.5\n2,bob,92.0\n3,charlie,78.3\n"
FIXTURE_FILENAME = "e2e_fixture.csv"
ROW_QUERY_LIMIT = 5

StepBody = Callable[[], Awaitable[str]]
StepsListener = Callable[[Tuple[TestStep, ...]], None]
ResultListener = Callable[[str, QueryResult], None]


class StepFailed(Exception):
    """Raised by a step body to fail its step with a message."""


class StepRunner:
    """Sequential, fail-fast self-test against whatever table is loaded.

    Steps run strictly one after another. The first step to fail stops the
    run; the steps after it stay ``pending``. Each run starts from fresh
    steps, so a failed run is simply run again from the top.
    """

    def __init__(
        self,
        uploader: UploadCoordinator,
        store: DatasetStateStore,
        executor: QueryExecutor,
        table_name: str = "tablename",
        fixture: str = FIXTURE_CSV,
        on_steps: Optional[StepsListener] = None,
        on_result: Optional[ResultListener] = None,
    ):
        self.uploader = uploader
        self.store = store
        self.executor = executor
        self.table_name = table_name
        self.fixture = fixture
        self.on_steps = on_steps
        self.on_result = on_result

        self.plan: List[Tuple[str, StepBody]] = [
            ("Ensure data is loaded", self._ensure_loaded),
            ("Fetch stats", self._fetch_stats),
            ("Run aggregate query", self._aggregate_query),
            ("Run row query", self._row_query),
        ]
        self.steps: Tuple[TestStep, ...] = fresh_steps(tuple(name for name, _ in self.plan))
        self.status = HarnessStatus.IDLE

    @property
    def aggregate_sql(self) -> str:
        return f"SELECT COUNT(*) AS total FROM {self.table_name}"

    @property
    def row_sql(self) -> str:
        return f"SELECT * FROM {self.table_name} LIMIT {ROW_QUERY_LIMIT}"

    async def run(self) -> HarnessReport:
        self.steps = fresh_steps(tuple(name for name, _ in self.plan))
        self.status = HarnessStatus.RUNNING
        self._publish()
        logger.info("Self-test started")

        for index, (name, body) in enumerate(self.plan):
            self._set(index, StepStatus.RUNNING)
            try:
                detail = await body()
            except Exception as e:
                message = str(e) or e.__class__.__name__
                logger.warning(f"Self-test step '{name}' failed: {message}")
                self._set(index, StepStatus.FAIL, message)
                self.status = HarnessStatus.FAILED
                return self.report()
            logger.info(f"Self-test step '{name}' passed: {detail}")
            self._set(index, StepStatus.PASS, detail)

        self.status = HarnessStatus.PASSED
        logger.info("Self-test passed")
        return self.report()

    def report(self) -> HarnessReport:
        return HarnessReport(status=self.status, steps=self.steps)

    def _set(self, index: int, status: StepStatus, detail: Optional[str] = None) -> None:
        self.steps = set_step(self.steps, index, status, detail)
        self._publish()

    def _publish(self) -> None:
        if self.on_steps is not None:
            self.on_steps(self.steps)

    async def _ensure_loaded(self) -> str:
        if self.store.loaded:
            dataset = self.store.current()
            return f"Already loaded: {dataset.row_count} rows, {dataset.column_count} columns"

        ack = await self.uploader.submit(self.fixture.encode("utf-8"), FIXTURE_FILENAME)
        if ack.row_count > 0 and ack.column_count > 0:
            return f"Uploaded fixture: {ack.row_count} rows, {ack.column_count} columns"
        raise StepFailed(f"Upload reported {ack.row_count} rows, {ack.column_count} columns")

    async def _fetch_stats(self) -> str:
        dataset = await self.uploader.refresh_stats()
        return f"{dataset.column_count} columns, {dataset.row_count} rows"

    async def _aggregate_query(self) -> str:
        result = await self.executor.run(self.aggregate_sql)
        if not result.ok:
            raise StepFailed(result.error)
        if not result.rows:
            raise StepFailed("Aggregate query returned no rows")
        return f"COUNT(*) = {result.scalar()}"

    async def _row_query(self) -> str:
        sql = self.row_sql
        result = await self.executor.run(sql)
        if not result.ok:
            raise StepFailed(result.error)
        if not result.columns or not result.rows:
            raise StepFailed(
                f"Expected rows and columns, got {len(result.rows)} rows, {len(result.columns)} columns"
            )
        if self.on_result is not None:
            self.on_result(sql, result)
        return f"{len(result.rows)} rows, {len(result.columns)} columns"
