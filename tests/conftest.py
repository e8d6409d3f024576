"""Shared fixtures: an in-process stand-in for the data service."""

import io
import json
import sqlite3
from typing import Any, AsyncGenerator, Dict, List, Optional, Set, Tuple

import httpx
import pandas as pd
import pytest
import pytest_asyncio

from sql_console.config import ConsoleConfig
from sql_console.transport import TransportClient


BASE_URL = "http://data-service.test"
TABLE_NAME = "tablename"

SAMPLE_CSV = "id,name,score\n1,alice,85.5\n2,bob,92.0\n3,charlie,78.3\n"
OTHER_CSV = "city,population\nParis,2100000\nLyon,516000\n"


def _type_of(dtype) -> str:
    if pd.api.types.is_integer_dtype(dtype):
        return "BIGINT"
    if pd.api.types.is_float_dtype(dtype):
        return "DOUBLE"
    return "VARCHAR"


def _multipart_file(request: httpx.Request) -> Tuple[str, bytes]:
    content_type = request.headers["content-type"]
    boundary = content_type.split("boundary=")[1].encode()
    for part in request.content.split(b"--" + boundary):
        if b'name="file"' not in part:
            continue
        head, _, body = part.partition(b"\r\n\r\n")
        filename = head.split(b'filename="')[1].split(b'"')[0].decode()
        return filename, body[:-2] if body.endswith(b"\r\n") else body
    raise ValueError("no file part")


class FakeDataService:
    """Loads uploads into SQLite through pandas and answers the four endpoints."""

    def __init__(self):
        self.conn = sqlite3.connect(":memory:")
        self.frame: Optional[pd.DataFrame] = None
        self.requests: List[httpx.Request] = []
        self.uploads: List[Tuple[str, bytes]] = []
        self.unreachable: Set[str] = set()
        self.failures: Dict[str, Tuple[int, Any]] = {}
        self.chat_reply: Dict[str, Any] = {"reply": "Hello!"}
        self.chat_payloads: List[Dict[str, Any]] = []
        self.stats_override: Optional[Dict[str, Any]] = None

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        if path in self.unreachable:
            raise httpx.ConnectError("connection refused", request=request)
        if path in self.failures:
            status, body = self.failures[path]
            if isinstance(body, (dict, list)):
                return httpx.Response(status, json=body)
            return httpx.Response(status, text=body or "")

        routes = {
            "/api/health": self.health,
            "/api/upload": self.upload,
            "/api/stats": self.stats,
            "/api/query": self.query,
            "/api/chat": self.chat,
        }
        return routes[path](request)

    def paths(self) -> List[str]:
        return [r.url.path for r in self.requests]

    def health(self, request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"status": "ok"})

    def upload(self, request: httpx.Request) -> httpx.Response:
        filename, body = _multipart_file(request)
        self.uploads.append((filename, body))
        self.conn.execute(f"DROP TABLE IF EXISTS {TABLE_NAME}")
        self.frame = None
        if not body.strip():
            return httpx.Response(200, json={"rowCount": 0, "columnCount": 0, "columns": []})

        frame = pd.read_csv(io.BytesIO(body))
        if frame.empty:
            return httpx.Response(200, json={"rowCount": 0, "columnCount": 0, "columns": []})

        frame.to_sql(TABLE_NAME, self.conn, index=False)
        self.frame = frame
        return httpx.Response(200, json={
            "rowCount": len(frame),
            "columnCount": len(frame.columns),
            "columns": [{"name": c, "type": _type_of(frame[c].dtype)} for c in frame.columns],
        })

    def stats(self, request: httpx.Request) -> httpx.Response:
        if self.stats_override is not None:
            return httpx.Response(200, json=self.stats_override)
        if self.frame is None:
            return httpx.Response(200, json={"rowCount": 0, "columnCount": 0, "columns": []})

        columns = []
        for name in self.frame.columns:
            series = self.frame[name]
            if pd.api.types.is_numeric_dtype(series.dtype):
                values = series.dropna()
                stats = {
                    "min": float(values.min()),
                    "max": float(values.max()),
                    "mean": round(float(values.mean()), 3),
                    "nullCount": int(series.isna().sum()),
                }
                distribution = [{"bucketMin": stats["min"], "bucketMax": stats["max"], "count": len(values)}]
            else:
                counts = series.dropna().value_counts()
                top = [{"value": str(v), "count": int(c)} for v, c in counts.head(10).items()]
                stats = {
                    "uniqueCount": int(series.nunique()),
                    "nullCount": int(series.isna().sum()),
                    "topValues": top,
                }
                distribution = top
            columns.append({
                "name": name,
                "type": _type_of(series.dtype),
                "stats": stats,
                "distribution": distribution,
            })
        return httpx.Response(200, json={
            "rowCount": len(self.frame),
            "columnCount": len(columns),
            "columns": columns,
        })

    def query(self, request: httpx.Request) -> httpx.Response:
        sql = json.loads(request.content)["sql"]
        try:
            cursor = self.conn.execute(sql)
        except sqlite3.Error as e:
            return httpx.Response(200, json={"columns": [], "rows": [], "error": str(e)})
        columns = [d[0] for d in cursor.description or []]
        rows = [list(row) for row in cursor.fetchall()]
        return httpx.Response(200, json={"columns": columns, "rows": rows})

    def chat(self, request: httpx.Request) -> httpx.Response:
        self.chat_payloads.append(json.loads(request.content))
        return httpx.Response(200, json=self.chat_reply)


@pytest.fixture
def service() -> FakeDataService:
    return FakeDataService()


@pytest.fixture
def config() -> ConsoleConfig:
    return ConsoleConfig(api_url=BASE_URL, upload_chunk_size=1024)


@pytest_asyncio.fixture
async def client(service: FakeDataService, config: ConsoleConfig) -> AsyncGenerator[TransportClient, None]:
    client = TransportClient.from_config(config, transport=httpx.MockTransport(service.handler))
    yield client
    await client.aclose()
