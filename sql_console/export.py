from pathlib import Path
from typing import Union

import pandas as pd

from sql_console.models import QueryResult


def export_csv(result: QueryResult) -> str:
    """Render a query result as CSV text.

    Fields holding a comma, quote or newline are quoted with embedded
    quotes doubled. Nulls become empty fields, so they cannot be told apart
    from empty strings after a round trip.
    """
    if not result.columns:
        return ""
    frame = pd.DataFrame(result.rows, columns=result.columns, dtype=object)
    return frame.to_csv(index=False, lineterminator="\n")


def write_csv(result: QueryResult, path: Union[str, Path]) -> Path:
    target = Path(path)
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_text(export_csv(result), encoding="utf-8")
    return target
