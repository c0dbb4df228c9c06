"""Unit tests for column token resolution."""

from __future__ import annotations

from gridwright.sheet_runtime.engine.references import find_tokens, resolve, resolve_mapping, stringify_cell
from gridwright.sheet_runtime.models.sheet import ColumnDefinition


def _cols(*ids: str) -> list[ColumnDefinition]:
    return [ColumnDefinition(id=i, header=i.title()) for i in ids]


def test_resolve_substitutes_known_tokens() -> None:
    row = {"id": "r1", "name": "Ada", "age": 36}
    assert resolve("/name is /age", row, _cols("name", "age")) == "Ada is 36"


def test_resolve_prefers_longest_id() -> None:
    row = {"email": "a@x.io", "email_2": "b@x.io"}
    result = resolve("/email_2 then /email", row, _cols("email", "email_2"))
    assert result == "b@x.io then a@x.io"


def test_resolve_leaves_unknown_tokens() -> None:
    assert resolve("/name and /unknown", {"name": "Ada"}, ["name"]) == "Ada and /unknown"


def test_resolve_does_not_match_prefix_of_longer_word() -> None:
    # ``/names`` is not a token for column ``name``.
    assert resolve("/names", {"name": "Ada"}, ["name"]) == "/names"


def test_resolve_token_boundary_is_ascii() -> None:
    assert resolve("/nameé", {"name": "Ada"}, ["name"]) == "Adaé"
    assert resolve("/name-x", {"name": "Ada"}, ["name"]) == "Ada-x"


def test_resolve_does_not_rescan_values() -> None:
    row = {"a": "/b", "b": "secret"}
    assert resolve("/a", row, ["a", "b"]) == "/b"


def test_resolve_missing_value_is_empty() -> None:
    assert resolve("[/name]", {}, ["name"]) == "[]"


def test_resolve_without_columns_is_identity() -> None:
    assert resolve("/name", {"name": "Ada"}, []) == "/name"
    assert resolve("", {"name": "Ada"}, ["name"]) == ""


def test_stringify_cell() -> None:
    assert stringify_cell(None) == ""
    assert stringify_cell(True) == "true"
    assert stringify_cell(False) == "false"
    assert stringify_cell(3.0) == "3"
    assert stringify_cell(2.5) == "2.5"
    assert stringify_cell({"k": 1}) == '{"k": 1}'


def test_resolve_mapping_only_resolves_values() -> None:
    result = resolve_mapping({"/name": "Hello /name"}, {"name": "Ada"}, ["name"])
    assert result == {"/name": "Hello Ada"}


def test_find_tokens_syntactic() -> None:
    assert find_tokens("/a /b /a /c_d") == ["a", "b", "c_d"]


def test_find_tokens_known_columns_only() -> None:
    assert find_tokens("/email_2 /email /missing", _cols("email", "email_2")) == ["email_2", "email"]
    assert find_tokens("") == []
