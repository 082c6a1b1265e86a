import pytest

from deskmate.domain.errors import NotFoundError
from deskmate.domain.resolution.entity_resolver import MAX_CANDIDATES, find, is_match
from deskmate.infrastructure.storage.base import StoredDocument


def _docs(*titles):
    return [StoredDocument(id=f"doc-{i}", data={"title": t}) for i, t in enumerate(titles)]


def test_query_contained_in_title():
    result = find(_docs("Fix the login bug", "Write report"), "login bug")

    assert result.found
    assert result.entity.id == "doc-0"
    assert result.title == "Fix the login bug"


def test_no_match_is_a_result_not_an_exception():
    result = find(_docs("Fix the login bug", "Write report"), "nonexistent")

    assert not result.found
    assert result.entity is None
    assert result.query == "nonexistent"


def test_title_contained_in_query():
    result = find(_docs("Standup", "Report"), "move my standup meeting to 3pm")
    assert result.entity.id == "doc-0"


def test_first_match_in_fetch_order_wins():
    result = find(_docs("Quarterly report", "Write report"), "REPORT")
    assert result.entity.id == "doc-0"


def test_empty_query_and_empty_titles_never_match():
    assert not find(_docs("Anything"), "  ").found
    assert not find(_docs(""), "standup").found
    assert not is_match("", "")


def test_only_the_bounded_prefix_is_examined():
    docs = _docs(*(["Other"] * MAX_CANDIDATES + ["Target"]))
    assert not find(docs, "target").found
    assert find(docs, "target", limit=MAX_CANDIDATES + 1).found


def test_require_raises_not_found():
    missing = find(_docs("Write report"), "budget")
    with pytest.raises(NotFoundError):
        missing.require("task")

    assert find(_docs("Write report"), "report").require("task").id == "doc-0"
