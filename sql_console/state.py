import logging
from typing import Optional, Tuple

from pydantic import BaseModel, ConfigDict

from sql_console.models import (
    EMPTY_DATASET,
    ConversationTurn,
    Dataset,
    HarnessStatus,
    QueryResult,
    StepStatus,
    TestStep,
)


logger = logging.getLogger(__name__)

ALLOWED_STEP_TRANSITIONS = {
    StepStatus.PENDING: {StepStatus.RUNNING},
    StepStatus.RUNNING: {StepStatus.PASS, StepStatus.FAIL},
    StepStatus.PASS: set(),
    StepStatus.FAIL: set(),
}


class DatasetStateStore:
    """Single authoritative snapshot of the loaded dataset.

    Datasets are swapped wholesale. Each swap bumps ``generation`` so that
    responses requested against an older snapshot can be recognised and
    dropped. Nothing is validated here; callers reset their own dependent
    state when they replace or clear.
    """

    def __init__(self, initial: Optional[Dataset] = None):
        self._dataset = initial or EMPTY_DATASET
        self._generation = 0

    def current(self) -> Dataset:
        return self._dataset

    @property
    def loaded(self) -> bool:
        return self._dataset.loaded

    @property
    def generation(self) -> int:
        return self._generation

    def replace(self, dataset: Dataset) -> int:
        self._dataset = dataset
        self._generation += 1
        logger.info(
            f"Dataset replaced: {dataset.row_count} rows, {dataset.column_count} columns "
            f"(generation {self._generation})"
        )
        return self._generation

    def clear(self) -> int:
        self._dataset = EMPTY_DATASET
        self._generation += 1
        logger.info(f"Dataset cleared (generation {self._generation})")
        return self._generation


class ViewState(BaseModel):
    """Presentation state that depends on the dataset, the conversation and the self-test."""

    model_config = ConfigDict(frozen=True)

    query_text: str = ""
    query_result: Optional[QueryResult] = None
    upload_error: Optional[str] = None
    upload_progress: Optional[int] = None
    conversation: Tuple[ConversationTurn, ...] = ()
    steps: Tuple[TestStep, ...] = ()
    harness_status: HarnessStatus = HarnessStatus.IDLE


def reset_for_dataset(view: ViewState, query_text: Optional[str] = None) -> ViewState:
    """Drop everything derived from the previous dataset.

    The query text survives unless a replacement is given.
    """
    update = {"query_result": None, "upload_error": None, "upload_progress": None}
    if query_text is not None:
        update["query_text"] = query_text
    return view.model_copy(update=update)


def append_turn(turns: Tuple[ConversationTurn, ...], turn: ConversationTurn) -> Tuple[ConversationTurn, ...]:
    return turns + (turn,)


def set_step(
    steps: Tuple[TestStep, ...],
    index: int,
    status: StepStatus,
    detail: Optional[str] = None,
) -> Tuple[TestStep, ...]:
    """Return ``steps`` with the step at ``index`` moved to ``status``.

    Steps are addressed by position. Moves outside
    pending -> running -> pass|fail raise ``ValueError``.
    """
    current = steps[index]
    if status not in ALLOWED_STEP_TRANSITIONS[current.status]:
        raise ValueError(
            f"Step {index} ({current.name}) cannot move from {current.status.value} to {status.value}"
        )
    updated = current.model_copy(update={"status": status, "detail": detail})
    return steps[:index] + (updated,) + steps[index + 1:]


def fresh_steps(names: Tuple[str, ...]) -> Tuple[TestStep, ...]:
    return tuple(TestStep(name=name) for name in names)
