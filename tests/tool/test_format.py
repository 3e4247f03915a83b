"""Tests for the format library."""

import json

import yaml

from gitops_sync.tool.format import (
    JsonFormatter,
    PrintFormatter,
    YamlFormatter,
    format_columns,
    formatter,
)


def test_format_columns_empty_rows() -> None:
    """Tests with no rows."""
    assert list(format_columns(["a", "b", "c"], [])) == ["a    b    c"]


def test_format_columns_rows() -> None:
    """Tests format with normal rows"""
    assert list(
        format_columns(["name", "namespace"], [["vote", "voting"], ["result", "web"]])
    ) == [
        "name      namespace",
        "vote      voting",
        "result    web",
    ]


def test_print_formatter() -> None:
    """Print formatting with empty data."""
    assert list(PrintFormatter().format([])) == []


def test_print_formatter_data() -> None:
    """Print formatting data objects with missing values."""
    result = PrintFormatter(["name", "status"]).format(
        [
            {"name": "vote", "status": "Synced"},
            {"name": "result", "status": None},
        ]
    )
    assert list(result) == [
        "NAME      STATUS",
        "vote      Synced",
        "result    -",
    ]


def test_yaml_formatter() -> None:
    """Test each record is a yaml document."""
    records = [{"name": "vote"}, {"name": "result"}]
    lines = list(YamlFormatter().format(records))
    assert lines[0].startswith("---")
    assert list(yaml.safe_load_all("\n".join(lines))) == records


def test_json_formatter() -> None:
    """Test the records are printed as a json list."""
    lines = JsonFormatter().format([{"name": "vote"}])
    assert json.loads("\n".join(lines)) == [{"name": "vote"}]


def test_formatter_for_output() -> None:
    """Test selecting a formatter with the output flag."""
    assert isinstance(formatter("yaml"), YamlFormatter)
    assert isinstance(formatter("json"), JsonFormatter)
    assert isinstance(formatter("table", ["name"]), PrintFormatter)
