import contextlib

import pytest
from prompt_toolkit import PromptSession
from prompt_toolkit.input import create_pipe_input
from prompt_toolkit.output import DummyOutput

from ledger_import.models import DraftTransaction
from ledger_import.term_ui import (
    confirm,
    describe_draft,
    parse_selection,
    prompt_text,
    select_category,
    select_conflicts_to_include,
)

CATEGORIES = ["Groceries", "Entertainment", "Other", "Restaurants"]


@contextlib.contextmanager
def pipe_session():
    with create_pipe_input() as pipe:
        sess = PromptSession(input=pipe, output=DummyOutput())
        yield pipe, sess


def _drafts():
    return [
        DraftTransaction(row_index=4, date="2024-01-15", descriptor="NETFLIX.COM", amount=-99.0, account="Checking"),
        DraftTransaction(row_index=7, date="2024-01-16", descriptor="IRMA", amount=-1234.5, account=""),
        DraftTransaction(row_index=9, date="2024-01-17", descriptor="SALARY", amount=25000.0, account="Savings"),
    ]


def test_parse_selection():
    assert parse_selection("", 3) == []
    assert parse_selection("none", 3) == []
    assert parse_selection("all", 3) == [0, 1, 2]
    assert parse_selection("1, 3", 3) == [0, 2]
    assert parse_selection("3-2", 3) == [1, 2]
    with pytest.raises(ValueError):
        parse_selection("4", 3)
    with pytest.raises(ValueError):
        parse_selection("x", 3)


def test_describe_draft():
    netflix, irma, _ = _drafts()
    assert describe_draft(netflix) == "2024-01-15        -99.00  NETFLIX.COM [Checking]"
    assert describe_draft(irma).endswith("-1,234.50  IRMA")


def test_conflict_selection_by_number_and_range(capsys):
    with pipe_session() as (pipe, sess):
        pipe.send_text("1,2-3\r")
        assert select_conflicts_to_include(_drafts(), session=sess) == [4, 7, 9]
    assert "3 row(s) look like" in capsys.readouterr().out


def test_conflict_selection_defaults_to_none():
    with pipe_session() as (pipe, sess):
        pipe.send_text("\r")
        assert select_conflicts_to_include(_drafts(), session=sess) == []
    assert select_conflicts_to_include([]) == []


def test_conflict_selection_all():
    with pipe_session() as (pipe, sess):
        pipe.send_text("all\r")
        assert select_conflicts_to_include(_drafts()[:2], session=sess) == [4, 7]


def test_confirm_uses_default_on_enter():
    with pipe_session() as (pipe, sess):
        pipe.send_text("\r")
        assert confirm("Import?", session=sess) is True
    with pipe_session() as (pipe, sess):
        pipe.send_text("\r")
        assert confirm("Import?", default=False, session=sess) is False
    with pipe_session() as (pipe, sess):
        pipe.send_text("n\r")
        assert confirm("Import?", session=sess) is False


def test_prompt_text_accepts_default_and_edits():
    with pipe_session() as (pipe, sess):
        pipe.send_text("\r")
        assert prompt_text("Pattern: ", default="NETFLIX.COM", session=sess) == "NETFLIX.COM"
    with pipe_session() as (pipe, sess):
        # Ctrl-A (home), Ctrl-K (kill to end), type new value, Enter
        pipe.send_text("\x01\x0b  Netflix \r")
        assert prompt_text("Clean name: ", default="NETFLIX.COM", session=sess) == "Netflix"
    with pipe_session() as (pipe, sess):
        pipe.send_text("\r")
        assert prompt_text("Sub-category: ", session=sess, allow_empty=True) == ""


def test_select_category_accepts_default_with_enter():
    with pipe_session() as (pipe, sess):
        pipe.send_text("\r")
        assert select_category(CATEGORIES, default="Groceries", session=sess) == "Groceries"


def test_select_category_returns_stored_spelling():
    with pipe_session() as (pipe, sess):
        pipe.send_text("\x01\x0brestaurants\r")
        assert select_category(CATEGORIES, default="Other", session=sess) == "Restaurants"


def test_select_category_accepts_new_name():
    with pipe_session() as (pipe, sess):
        pipe.send_text("\x01\x0bStreaming\r")
        assert select_category(CATEGORIES, default="Other", session=sess) == "Streaming"
