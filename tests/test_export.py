"""Tests for CSV export."""

import io

import pandas as pd

from sql_console.export import export_csv, write_csv
from sql_console.models import QueryFailure, QuerySuccess


def test_plain_values():
    result = QuerySuccess(columns=["id", "name", "score"], rows=[[1, "alice", 85.5], [2, "bob", 92.0]])

    assert export_csv(result) == "id,name,score\n1,alice,85.5\n2,bob,92.0\n"


def test_special_characters_are_quoted():
    result = QuerySuccess(columns=["text"], rows=[["a,b"], ['say "hi"'], ["two\nlines"]])

    assert export_csv(result) == 'text\n"a,b"\n"say ""hi"""\n"two\nlines"\n'


def test_text_survives_a_reparse():
    rows = [["a,b", 'q"uote'], ["line\nbreak", "plain"]]
    result = QuerySuccess(columns=["x", "y"], rows=rows)

    frame = pd.read_csv(io.StringIO(export_csv(result)), dtype=str, keep_default_na=False)

    assert list(frame.columns) == ["x", "y"]
    assert frame.values.tolist() == rows


def test_null_becomes_empty_field():
    result = QuerySuccess(columns=["a", "b"], rows=[[None, ""]])

    assert export_csv(result) == "a,b\n,\n"


def test_no_columns_exports_nothing():
    assert export_csv(QueryFailure(error="boom")) == ""


def test_write_csv(tmp_path):
    target = write_csv(QuerySuccess(columns=["a"], rows=[[1]]), tmp_path / "out" / "result.csv")

    assert target.read_text(encoding="utf-8") == "a\n1\n"
