import logging
from typing import Any, AsyncIterator, Callable, Dict, List, Optional

import httpx
from pydantic import ValidationError

from sql_console.config import ConsoleConfig
from sql_console.errors import FailureKind, TransportError
from sql_console.models import ChatReply, Dataset, QueryResult, UploadAck, parse_query_result


logger = logging.getLogger(__name__)

BytesProgress = Callable[[int, int], None]

NETWORK_MESSAGES = {
    "upload": "Network error during upload",
    "stats": "Network error while fetching stats",
    "query": "Failed to connect to server",
    "chat": "Could not reach the assistant",
    "health": "Service is unreachable",
}


async def _chunked(body: bytes, chunk_size: int, on_progress: Optional[BytesProgress]) -> AsyncIterator[bytes]:
    total = len(body)
    sent = 0
    for start in range(0, total, chunk_size):
        chunk = body[start:start + chunk_size]
        yield chunk
        sent += len(chunk)
        if on_progress is not None:
            on_progress(sent, total)


class TransportClient:
    """Request/response wrapper for the four data-service operations.

    Every failure leaves as a ``TransportError``; nothing is retried.
    """

    def __init__(
        self,
        base_url: str = "http://localhost:8080",
        timeout: Optional[float] = None,
        upload_chunk_size: int = 64 * 1024,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url
        self.upload_chunk_size = upload_chunk_size
        self._client = httpx.AsyncClient(base_url=base_url, timeout=timeout, transport=transport)

    @classmethod
    def from_config(
        cls, config: ConsoleConfig, transport: Optional[httpx.AsyncBaseTransport] = None
    ) -> "TransportClient":
        return cls(
            base_url=config.api_url,
            timeout=config.request_timeout,
            upload_chunk_size=config.upload_chunk_size,
            transport=transport,
        )

    async def __aenter__(self) -> "TransportClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def health(self) -> bool:
        payload = await self._request("health", "GET", "/api/health")
        return payload.get("status") == "ok"

    async def upload(
        self,
        file_bytes: bytes,
        filename: str = "upload.csv",
        on_progress: Optional[BytesProgress] = None,
    ) -> UploadAck:
        """Stream a CSV file as multipart field ``file`` and return the provisional counts."""
        logger.info(f"Uploading {filename} ({len(file_bytes)} bytes)")

        prepared = self._client.build_request(
            "POST", "/api/upload", files={"file": (filename, file_bytes, "text/csv")}
        )
        body = prepared.read()
        # Re-send the encoded multipart body as a stream so progress can be observed per chunk.
        streamed = httpx.Request(
            "POST",
            prepared.url,
            headers=prepared.headers,
            content=_chunked(body, self.upload_chunk_size, on_progress),
            extensions=prepared.extensions,
        )
        payload = await self._send("upload", streamed)
        return self._parse("upload", UploadAck, payload)

    async def fetch_stats(self) -> Dataset:
        payload = await self._request("stats", "GET", "/api/stats")
        return self._parse("stats", Dataset, payload)

    async def query(self, sql: str) -> QueryResult:
        logger.info(f"Submitting query: {sql}")
        payload = await self._request("query", "POST", "/api/query", json={"sql": sql})
        try:
            return parse_query_result(payload)
        except ValidationError as e:
            raise TransportError(
                f"Query returned an invalid result: {e.errors()[0]['msg']}",
                kind=FailureKind.MALFORMED,
                operation="query",
            ) from e

    async def chat(self, messages: List[Dict[str, str]], auto_execute: bool) -> ChatReply:
        logger.info(f"Sending {len(messages)} messages to assistant (autoExecute={auto_execute})")
        payload = await self._request(
            "chat", "POST", "/api/chat", json={"messages": messages, "autoExecute": auto_execute}
        )
        return self._parse("chat", ChatReply, payload)

    async def _request(self, operation: str, method: str, path: str, **kwargs: Any) -> Dict[str, Any]:
        request = self._client.build_request(method, path, **kwargs)
        return await self._send(operation, request)

    async def _send(self, operation: str, request: httpx.Request) -> Dict[str, Any]:
        try:
            response = await self._client.send(request)
        except httpx.TransportError as e:
            logger.error(f"{operation} request failed before a response arrived: {e}")
            raise TransportError(
                NETWORK_MESSAGES[operation], kind=FailureKind.NETWORK, operation=operation
            ) from e
        return self._decode(operation, response)

    def _decode(self, operation: str, response: httpx.Response) -> Dict[str, Any]:
        if not response.is_success:
            message = _server_error(response) or (
                f"{operation.capitalize()} failed with status {response.status_code}"
            )
            logger.error(f"{operation} rejected ({response.status_code}): {message}")
            raise TransportError(
                message,
                kind=FailureKind.REJECTED,
                operation=operation,
                status_code=response.status_code,
            )

        try:
            payload = response.json()
        except ValueError as e:
            raise TransportError(
                f"{operation.capitalize()} returned a response that is not JSON",
                kind=FailureKind.MALFORMED,
                operation=operation,
                status_code=response.status_code,
            ) from e

        if not isinstance(payload, dict):
            raise TransportError(
                f"{operation.capitalize()} returned an unexpected response",
                kind=FailureKind.MALFORMED,
                operation=operation,
                status_code=response.status_code,
            )
        return payload

    def _parse(self, operation: str, model: Any, payload: Dict[str, Any]) -> Any:
        try:
            return model.model_validate(payload)
        except ValidationError as e:
            raise TransportError(
                f"{operation.capitalize()} returned an invalid response: {e.errors()[0]['msg']}",
                kind=FailureKind.MALFORMED,
                operation=operation,
            ) from e


def _server_error(response: httpx.Response) -> Optional[str]:
    try:
        payload = response.json()
    except ValueError:
        return None
    if isinstance(payload, dict) and payload.get("error"):
        return str(payload["error"])
    return None
