# tests/test_normalize.py

from __future__ import annotations

import pytest

from stageboard.core.models import Task, empty_collection
from stageboard.core.normalize import (
    normalize_client_tag,
    normalize_content,
    normalize_link,
    normalize_links,
    normalize_tag_catalog,
    task_from_record,
    task_to_record,
)
from stageboard.core.stages import StageId


def test_normalize_link_prefixes_bare_hosts() -> None:
    assert normalize_link("example.com/a") == "https://example.com/a"
    assert normalize_link("  http://example.com ") == "http://example.com"
    assert normalize_link("ftp://files.example.com") == "ftp://files.example.com"
    assert normalize_link("mailto:me@example.com") == "mailto:me@example.com"
    assert normalize_link("   ") is None
    assert normalize_link(None) is None


def test_normalize_links_dedupes_and_collapses_empty() -> None:
    assert normalize_links(["example.com", "https://example.com", " ", ""]) == (
        "https://example.com",
    )
    assert normalize_links(["b.com", "a.com", "b.com"]) == ("https://b.com", "https://a.com")
    assert normalize_links([]) is None
    assert normalize_links(["  ", ""]) is None
    assert normalize_links(None) is None


@pytest.mark.parametrize(
    "links",
    [
        [],
        ["example.com"],
        ["  https://x.io ", "x.io", "https://x.io"],
        ["a.com", "", "mailto:a@b.c", "HTTP://A.COM"],
        ["   "],
    ],
)
def test_normalize_links_is_idempotent(links: list[str]) -> None:
    once = normalize_links(links)
    assert normalize_links(once) == once


def test_normalize_client_tag() -> None:
    assert normalize_client_tag(" Acme ") == "Acme"
    assert normalize_client_tag("   ") is None
    assert normalize_client_tag(None) is None


def test_normalize_content_strips_lines_and_outer_whitespace() -> None:
    raw = "\n\n  first line   \nsecond\t\r\n\n   \n"
    assert normalize_content(raw) == "first line\nsecond"
    assert normalize_content(normalize_content(raw)) == "first line\nsecond"
    assert normalize_content(" \n \t ") is None
    assert normalize_content("") is None


def test_tag_catalog_unions_remembered_and_task_tags() -> None:
    todos = empty_collection()
    todos[StageId.DRAFT].append(Task(id="a", text="x", done=False, created_at=1, client_tag="Zeta"))
    todos[StageId.PUBLISH].append(Task(id="b", text="y", done=False, created_at=2, client_tag=" Acme "))

    tags = normalize_tag_catalog(todos, ["beta", "Acme", " ", "Beta"])

    # case-sensitive dedupe, sorted, trimmed
    assert tags == ["Acme", "Beta", "Zeta", "beta"]


def test_task_from_record_accepts_legacy_link_field() -> None:
    task = task_from_record(
        {"id": "x1", "text": "  Ship it ", "done": 1, "createdAt": 5, "link": "example.com"}
    )
    assert task is not None
    assert task.text == "Ship it"
    assert task.done is True
    assert task.links == ("https://example.com",)


def test_task_from_record_rejects_unusable_records() -> None:
    assert task_from_record({"text": "no id"}) is None
    assert task_from_record({"id": "x", "text": "   "}) is None
    assert task_from_record("not a dict") is None


def test_task_from_record_defaults_missing_created_at() -> None:
    task = task_from_record({"id": "x", "text": "t"}, default_created_at=42)
    assert task is not None
    assert task.created_at == 42


def test_task_record_omits_absent_fields() -> None:
    task = Task(id="x", text="t", done=False, created_at=1, links=None, content=None)
    assert task_to_record(task) == {"id": "x", "text": "t", "done": False, "createdAt": 1}

    full = Task(
        id="y",
        text="t",
        done=True,
        created_at=1,
        due_at=9,
        client_tag="Acme",
        links=("https://a.io",),
        content="note",
    )
    assert task_from_record(task_to_record(full)) == full


@pytest.mark.parametrize("raw", ["example.com/a", "  http://x.io ", "mailto:me@example.com", "   ", None])
def test_normalize_link_is_idempotent(raw: str | None) -> None:
    once = normalize_link(raw)
    assert normalize_link(once) == once


@pytest.mark.parametrize("raw", [" Acme ", "Acme", "   ", None])
def test_normalize_client_tag_is_idempotent(raw: str | None) -> None:
    once = normalize_client_tag(raw)
    assert normalize_client_tag(once) == once


def test_tag_catalog_is_stable_when_fed_back() -> None:
    todos = empty_collection()
    todos[StageId.IDEATION].append(Task(id="a", text="x", done=False, created_at=1, client_tag=" Zeta"))

    once = normalize_tag_catalog(todos, ["beta", " Acme ", ""])

    assert normalize_tag_catalog(todos, once) == once
