import logging
from typing import Callable, List, Optional

from sql_console.errors import RemoteInvariantError, StaleResponseError
from sql_console.models import EMPTY_DATASET, Dataset, UploadAck
from sql_console.progress import ProgressChannel
from sql_console.state import DatasetStateStore
from sql_console.transport import TransportClient


logger = logging.getLogger(__name__)

CommitListener = Callable[[Dataset], None]


class UploadCoordinator:
    """Upload a CSV, then fetch its full statistics and commit them to the store.

    The upload answer is only a provisional acknowledgment; the committed
    dataset always comes from a follow-up stats fetch issued after the
    acknowledgment arrives.
    """

    def __init__(self, transport: TransportClient, store: DatasetStateStore):
        self.transport = transport
        self.store = store
        self._listeners: List[CommitListener] = []

    def on_commit(self, listener: CommitListener) -> None:
        """Register a callback run right after every replace or clear this coordinator makes."""
        self._listeners.append(listener)

    async def submit(
        self,
        file_bytes: bytes,
        filename: str = "upload.csv",
        progress: Optional[ProgressChannel] = None,
    ) -> UploadAck:
        """Send the file and return the provisional acknowledgment without committing anything."""
        channel = progress if progress is not None else ProgressChannel()
        ack = await self.transport.upload(file_bytes, filename, on_progress=channel.publish_bytes)
        channel.finish()
        logger.info(f"Upload acknowledged: {ack.row_count} rows, {ack.column_count} columns")
        return ack

    async def refresh_stats(self, generation: Optional[int] = None) -> Dataset:
        """Fetch full statistics and commit them.

        Raises ``RemoteInvariantError`` when the service describes no columns
        and ``StaleResponseError`` when the store moved past ``generation``
        while the request was in flight.
        """
        if generation is None:
            generation = self.store.generation
        dataset = await self.transport.fetch_stats()
        if not dataset.loaded:
            raise RemoteInvariantError("Stats response contained no columns")
        self._commit(dataset, generation)
        return dataset

    async def upload(
        self,
        file_bytes: bytes,
        filename: str = "upload.csv",
        progress: Optional[ProgressChannel] = None,
    ) -> Dataset:
        generation = self.store.generation
        ack = await self.submit(file_bytes, filename, progress)

        if ack.is_empty:
            logger.warning(f"{filename} produced no columns; treating it as no dataset")
            self._commit(EMPTY_DATASET, generation)
            return EMPTY_DATASET

        return await self.refresh_stats(generation)

    async def sync(self) -> Dataset:
        """Adopt whatever the service currently holds, loaded or not."""
        generation = self.store.generation
        dataset = await self.transport.fetch_stats()
        self._commit(dataset, generation)
        return dataset

    def _commit(self, dataset: Dataset, generation: int) -> None:
        if self.store.generation != generation:
            logger.warning(
                f"Dropping stats for generation {generation}; store is at {self.store.generation}"
            )
            raise StaleResponseError("Dataset changed while the request was in flight")

        if dataset.loaded:
            self.store.replace(dataset)
        else:
            self.store.clear()
        for listener in self._listeners:
            listener(self.store.current())
