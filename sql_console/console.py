"""Workspace that ties the dataset, editor, assistant and self-test together."""

import logging
from contextlib import contextmanager
from typing import Iterator, Optional, Set

from sql_console.assistant import ConversationalAssistant
from sql_console.config import ConsoleConfig
from sql_console.errors import (
    ControlBusyError,
    DatasetNotLoadedError,
    RemoteInvariantError,
    SqlConsoleError,
    StaleResponseError,
    TransportError,
)
from sql_console.export import export_csv
from sql_console.harness import StepRunner
from sql_console.models import ConversationTurn, Dataset, HarnessReport, QueryResult
from sql_console.progress import ProgressChannel
from sql_console.query import QueryExecutor
from sql_console.state import DatasetStateStore, ViewState, append_turn, reset_for_dataset
from sql_console.transport import TransportClient
from sql_console.upload import UploadCoordinator


logger = logging.getLogger(__name__)


class Workspace:
    """Everything one user session sees, driven through plain method calls.

    Each control (upload, query, chat, test) admits one operation at a
    time; different controls may overlap. Writes to the current query
    result go to the most recently issued request: a response whose
    request was overtaken, or whose dataset was replaced or cleared in the
    meantime, is returned to its caller but not displayed.
    """

    def __init__(self, transport: TransportClient, config: Optional[ConsoleConfig] = None):
        self.config = config or ConsoleConfig()
        self.transport = transport
        self.store = DatasetStateStore()
        self.view = ViewState(query_text=self.config.default_query)
        self.progress = ProgressChannel()
        self.progress.subscribe(self._on_progress)

        self.uploader = UploadCoordinator(transport, self.store)
        self.uploader.on_commit(self._on_dataset_committed)
        self.executor = QueryExecutor(transport, self.store)
        self.assistant = ConversationalAssistant(transport)
        self.harness = StepRunner(
            self.uploader,
            self.store,
            self.executor,
            table_name=self.config.table_name,
            on_steps=self._on_steps,
            on_result=self._on_verified_result,
        )

        self._busy: Set[str] = set()
        self._query_ticket = 0

    @property
    def dataset(self) -> Dataset:
        return self.store.current()

    @property
    def loaded(self) -> bool:
        return self.store.loaded

    def busy(self, control: str) -> bool:
        return control in self._busy

    @contextmanager
    def _control(self, control: str) -> Iterator[None]:
        if control in self._busy:
            raise ControlBusyError(control)
        self._busy.add(control)
        try:
            yield
        finally:
            self._busy.discard(control)

    # Dataset

    async def sync(self) -> Dataset:
        """Load the service's current dataset, if any, into the workspace."""
        with self._control("upload"):
            return await self.uploader.sync()

    async def upload(self, file_bytes: bytes, filename: str = "upload.csv") -> Optional[Dataset]:
        """Upload a CSV. Returns the committed dataset, or None when the upload failed or went stale."""
        with self._control("upload"):
            self.progress.reset()
            self.view = self.view.model_copy(update={"upload_error": None, "upload_progress": 0})
            try:
                return await self.uploader.upload(file_bytes, filename, self.progress)
            except StaleResponseError:
                logger.info(f"Upload of {filename} finished after the dataset changed; ignoring it")
                return None
            except (TransportError, RemoteInvariantError) as e:
                self.view = self.view.model_copy(update={"upload_error": str(e)})
                return None
            finally:
                self.view = self.view.model_copy(update={"upload_progress": None})

    def clear_dataset(self) -> None:
        self.store.clear()
        self._on_dataset_committed(self.store.current(), query_text=self.config.default_query)

    def dismiss_upload_error(self) -> None:
        self.view = self.view.model_copy(update={"upload_error": None})

    # Editor

    def set_query_text(self, text: str) -> None:
        self.view = self.view.model_copy(update={"query_text": text})

    def copy_to_editor(self, sql: str) -> None:
        self.set_query_text(sql)

    async def run_query(self, sql: Optional[str] = None) -> Optional[QueryResult]:
        """Run ``sql`` (or the editor text) and show the result.

        Blank SQL is a no-op: nothing is sent and None is returned.
        """
        text = self.view.query_text if sql is None else sql
        if not text.strip():
            return None

        with self._control("query"):
            self.set_query_text(text)
            ticket = self._issue_ticket()
            generation = self.store.generation
            result = await self.executor.run(text)
            self._show_result(result, ticket, generation)
            return result

    async def run_from_chat(self, turn: ConversationTurn) -> Optional[QueryResult]:
        if not turn.sql:
            return None
        return await self.run_query(turn.sql)

    def dismiss_result(self) -> None:
        self.view = self.view.model_copy(update={"query_result": None})

    def export_result(self) -> str:
        if self.view.query_result is None:
            raise SqlConsoleError("No query result to export")
        return export_csv(self.view.query_result)

    # Assistant

    async def ask(self, text: str, auto_execute: Optional[bool] = None) -> Optional[ConversationTurn]:
        """Send a chat message; the user turn and the reply are committed together."""
        if not text.strip():
            return None
        if not self.loaded:
            raise DatasetNotLoadedError("Upload a CSV file first to start chatting.")
        if auto_execute is None:
            auto_execute = self.config.auto_execute

        with self._control("chat"):
            reply = await self.assistant.send(self.view.conversation, text, auto_execute)
            conversation = append_turn(self.view.conversation, ConversationTurn.user(text))
            conversation = append_turn(conversation, reply)
            self.view = self.view.model_copy(update={"conversation": conversation})
            return reply

    def clear_chat(self) -> None:
        self.view = self.view.model_copy(update={"conversation": ()})

    # Self-test

    async def run_self_test(self) -> HarnessReport:
        with self._control("test"):
            report = await self.harness.run()
            self.view = self.view.model_copy(update={"harness_status": report.status})
            return report

    # Internal

    def _issue_ticket(self) -> int:
        self._query_ticket += 1
        return self._query_ticket

    def _show_result(self, result: QueryResult, ticket: int, generation: int) -> None:
        if ticket != self._query_ticket:
            logger.warning(f"Query result {ticket} arrived after result {self._query_ticket} was requested; not shown")
            return
        if generation != self.store.generation:
            logger.warning("Query result arrived after the dataset changed; not shown")
            return
        self.view = self.view.model_copy(update={"query_result": result})

    def _on_dataset_committed(self, dataset: Dataset, query_text: Optional[str] = None) -> None:
        self.view = reset_for_dataset(self.view, query_text)

    def _on_progress(self, percent: int) -> None:
        self.view = self.view.model_copy(update={"upload_progress": percent})

    def _on_steps(self, steps) -> None:
        self.view = self.view.model_copy(update={"steps": steps, "harness_status": self.harness.status})

    def _on_verified_result(self, sql: str, result: QueryResult) -> None:
        ticket = self._issue_ticket()
        self.set_query_text(sql)
        self._show_result(result, ticket, self.store.generation)
