from enum import Enum
from typing import Any, ClassVar, Dict, List, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, StrictFloat, StrictInt, StrictStr, model_validator


Cell = Union[StrictStr, StrictInt, StrictFloat, None]

NUMERIC_TYPE_MARKERS = ("FLOAT", "DOUBLE", "DECIMAL", "NUMERIC", "REAL")


class ColumnType(str, Enum):
    INTEGER = "INTEGER"
    REAL = "REAL"
    TEXT = "TEXT"

    @classmethod
    def from_remote(cls, value: Any) -> "ColumnType":
        """Map an engine type name (BIGINT, DOUBLE, VARCHAR, ...) onto the three display types."""
        upper = str(value or "").upper()
        if "INT" in upper:
            return cls.INTEGER
        if any(marker in upper for marker in NUMERIC_TYPE_MARKERS):
            return cls.REAL
        return cls.TEXT

    @property
    def is_numeric(self) -> bool:
        return self in (ColumnType.INTEGER, ColumnType.REAL)


class WireModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)


class ValueCount(WireModel):
    value: str
    count: int = Field(ge=0)


class HistogramBucket(WireModel):
    bucket_min: float = Field(alias="bucketMin")
    bucket_max: float = Field(alias="bucketMax")
    count: int = Field(ge=0)


class NumericStats(WireModel):
    min: Optional[float] = None
    max: Optional[float] = None
    mean: Optional[float] = None
    null_count: int = Field(default=0, ge=0, alias="nullCount")


class TextStats(WireModel):
    unique_count: int = Field(default=0, ge=0, alias="uniqueCount")
    null_count: int = Field(default=0, ge=0, alias="nullCount")
    top_values: List[ValueCount] = Field(default_factory=list, alias="topValues")


ColumnStats = Union[NumericStats, TextStats]


class ColumnInfo(WireModel):
    name: str
    type: ColumnType = ColumnType.TEXT
    stats: Optional[ColumnStats] = None
    distribution: Optional[Union[List[HistogramBucket], List[ValueCount]]] = None

    @model_validator(mode="before")
    @classmethod
    def _dispatch_on_type(cls, data: Any) -> Any:
        # The wire stats object carries no tag of its own; the sibling type decides the variant.
        if not isinstance(data, dict):
            return data
        data = dict(data)
        column_type = ColumnType.from_remote(data.get("type"))
        data["type"] = column_type

        stats = data.get("stats")
        if isinstance(stats, dict):
            stats_model = NumericStats if column_type.is_numeric else TextStats
            data["stats"] = stats_model.model_validate(stats)

        distribution = data.get("distribution")
        if isinstance(distribution, list):
            item_model = HistogramBucket if column_type.is_numeric else ValueCount
            data["distribution"] = [
                item_model.model_validate(item) if isinstance(item, dict) else item
                for item in distribution
            ]
        return data

    @property
    def numeric_stats(self) -> Optional[NumericStats]:
        return self.stats if isinstance(self.stats, NumericStats) else None

    @property
    def text_stats(self) -> Optional[TextStats]:
        return self.stats if isinstance(self.stats, TextStats) else None


class Dataset(WireModel):
    """Row/column counts plus per-column schema and statistics of the loaded table."""

    row_count: int = Field(default=0, ge=0, alias="rowCount")
    column_count: int = Field(default=0, ge=0, alias="columnCount")
    columns: List[ColumnInfo] = Field(default_factory=list)

    @model_validator(mode="after")
    def _column_count_matches(self) -> "Dataset":
        if self.column_count != len(self.columns):
            raise ValueError(
                f"columnCount is {self.column_count} but {len(self.columns)} columns were described"
            )
        return self

    @property
    def loaded(self) -> bool:
        return self.column_count > 0

    @property
    def column_names(self) -> List[str]:
        return [col.name for col in self.columns]

    def column(self, name: str) -> Optional[ColumnInfo]:
        for col in self.columns:
            if col.name == name:
                return col
        return None


EMPTY_DATASET = Dataset()


class UploadAck(WireModel):
    """Provisional answer to an upload; counts only, statistics come from a separate fetch."""

    row_count: int = Field(default=0, ge=0, alias="rowCount")
    column_count: int = Field(default=0, ge=0, alias="columnCount")
    columns: List[ColumnInfo] = Field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return self.column_count == 0


def _drop_misshapen_rows(data: Any) -> Any:
    # Rows that do not fit the header are discarded rather than padded.
    if not isinstance(data, dict):
        return data
    columns = data.get("columns") or []
    rows = data.get("rows") or []
    if not isinstance(columns, list) or not isinstance(rows, list):
        return data
    return {
        **data,
        "rows": [row for row in rows if isinstance(row, list) and len(row) == len(columns)],
    }


class QuerySuccess(WireModel):
    columns: List[str] = Field(default_factory=list)
    rows: List[List[Cell]] = Field(default_factory=list)
    total_rows: Optional[int] = None

    ok: ClassVar[bool] = True
    error: ClassVar[None] = None

    @model_validator(mode="after")
    def _rows_fit_columns(self) -> "QuerySuccess":
        width = len(self.columns)
        for index, row in enumerate(self.rows):
            if len(row) != width:
                raise ValueError(f"row {index} has {len(row)} cells, expected {width}")
        return self

    @property
    def row_count(self) -> int:
        return len(self.rows)

    def scalar(self) -> Cell:
        if not self.rows or not self.rows[0]:
            return None
        return self.rows[0][0]

    def to_wire(self) -> Dict[str, Any]:
        return {"columns": list(self.columns), "rows": [list(row) for row in self.rows]}


class QueryFailure(WireModel):
    error: str
    columns: List[str] = Field(default_factory=list)
    rows: List[List[Cell]] = Field(default_factory=list)
    total_rows: Optional[int] = None

    ok: ClassVar[bool] = False

    @model_validator(mode="before")
    @classmethod
    def _fit_partial_rows(cls, data: Any) -> Any:
        return _drop_misshapen_rows(data)

    @property
    def row_count(self) -> int:
        return len(self.rows)

    def to_wire(self) -> Dict[str, Any]:
        return {
            "columns": list(self.columns),
            "rows": [list(row) for row in self.rows],
            "error": self.error,
        }


QueryResult = Union[QuerySuccess, QueryFailure]


def parse_query_result(payload: Dict[str, Any]) -> QueryResult:
    """Turn a query response body into an explicit success or failure."""
    error = payload.get("error")
    columns = payload.get("columns") or []
    rows = payload.get("rows") or []
    if error:
        return QueryFailure(error=str(error), columns=columns, rows=rows)
    return QuerySuccess(columns=columns, rows=rows)


class QueryPreview(WireModel):
    columns: List[str] = Field(default_factory=list)
    rows: List[List[Cell]] = Field(default_factory=list)

    @model_validator(mode="before")
    @classmethod
    def _fit_rows(cls, data: Any) -> Any:
        return _drop_misshapen_rows(data)


class Role(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"


class ChatReply(WireModel):
    reply: str = ""
    sql: Optional[str] = None
    query_result: Optional[QueryPreview] = Field(default=None, alias="queryResult")


class ConversationTurn(WireModel):
    role: Role
    content: str
    sql: Optional[str] = None
    query_result: Optional[QueryPreview] = Field(default=None, alias="queryResult")
    failed: bool = False

    @model_validator(mode="after")
    def _only_assistant_carries_sql(self) -> "ConversationTurn":
        if self.role is Role.USER and (self.sql or self.query_result or self.failed):
            raise ValueError("user turns carry text only")
        return self

    @classmethod
    def user(cls, content: str) -> "ConversationTurn":
        return cls(role=Role.USER, content=content)

    def to_message(self) -> Dict[str, str]:
        return {"role": self.role.value, "content": self.content}


class StepStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    PASS = "pass"
    FAIL = "fail"

    @property
    def is_terminal(self) -> bool:
        return self in (StepStatus.PASS, StepStatus.FAIL)


class TestStep(WireModel):
    __test__: ClassVar[bool] = False

    name: str
    status: StepStatus = StepStatus.PENDING
    detail: Optional[str] = None


class HarnessStatus(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    PASSED = "all passed"
    FAILED = "failed"


class HarnessReport(WireModel):
    status: HarnessStatus
    steps: Tuple[TestStep, ...] = ()

    @property
    def passed(self) -> bool:
        return self.status is HarnessStatus.PASSED

    @property
    def failed_step(self) -> Optional[TestStep]:
        for step in self.steps:
            if step.status is StepStatus.FAIL:
                return step
        return None
