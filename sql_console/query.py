import logging
from typing import Optional

from sql_console.errors import TransportError
from sql_console.models import QueryFailure, QueryResult
from sql_console.state import DatasetStateStore
from sql_console.transport import TransportClient


logger = logging.getLogger(__name__)


class QueryExecutor:
    """Runs SQL against the service and always hands back a result, never an exception.

    SQL is sent as written: no validation, no rewriting and no row cap.
    Blank input is the caller's to reject.
    """

    def __init__(self, transport: TransportClient, store: Optional[DatasetStateStore] = None):
        self.transport = transport
        self.store = store

    async def run(self, sql_text: str) -> QueryResult:
        try:
            result = await self.transport.query(sql_text)
        except TransportError as e:
            logger.error(f"Query failed: {e}")
            result = QueryFailure(error=str(e))

        if not result.ok:
            logger.info(f"Query returned an error: {result.error}")
        return result.model_copy(update={"total_rows": self._known_total()})

    def _known_total(self) -> Optional[int]:
        if self.store is None or not self.store.loaded:
            return None
        return self.store.current().row_count
