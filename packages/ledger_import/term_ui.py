"""Tiny terminal UI helpers (prompt_toolkit-based).

Small, focused prompts used by the interactive CLI flows (conflict selection
during import, rule confirmation during a scan). Kept apart from the pipeline
so they are easy to drive from tests with a pipe input.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence

from prompt_toolkit import PromptSession
from prompt_toolkit.completion import WordCompleter
from prompt_toolkit.key_binding import KeyBindings
from prompt_toolkit.validation import ValidationError, Validator

from .categories import validate_name as _validate_name
from .ingest.values import format_amount
from .models import DraftTransaction

_YES = {"y", "yes"}
_NO = {"n", "no"}


def _session(session: PromptSession | None, kb: KeyBindings | None = None) -> PromptSession:
    if session is None:
        return PromptSession(key_bindings=kb)
    return PromptSession(
        input=getattr(session, "input", None),
        output=getattr(session, "output", None),
        key_bindings=kb,
    )


def _cancel_bindings() -> KeyBindings:
    kb = KeyBindings()

    @kb.add("escape")
    def _(event) -> None:  # pragma: no cover - exercised indirectly
        event.app.exit(result=None)

    @kb.add("c-c", eager=True)
    def _(event) -> None:  # pragma: no cover - exercised indirectly
        event.app.exit(result=None)

    return kb


def parse_selection(text: str, count: int) -> list[int]:
    """Parse ``"1,3-4"`` / ``"all"`` / ``"none"`` into zero-based positions.

    Positions shown to the operator are one-based. Raises ``ValueError`` for
    malformed input or out-of-range numbers.
    """

    t = text.strip().lower()
    if t in ("", "none", "n"):
        return []
    if t in ("all", "a"):
        return list(range(count))
    picked: set[int] = set()
    for part in t.replace(" ", "").split(","):
        if not part:
            continue
        lo_s, sep, hi_s = part.partition("-")
        if not lo_s.isdigit() or (sep and not hi_s.isdigit()):
            raise ValueError(f"not a number or range: {part!r}")
        lo = int(lo_s)
        hi = int(hi_s) if sep else lo
        if lo > hi:
            lo, hi = hi, lo
        if lo < 1 or hi > count:
            raise ValueError(f"choose between 1 and {count}")
        picked.update(range(lo - 1, hi))
    return sorted(picked)


def describe_draft(draft: DraftTransaction) -> str:
    account = f" [{draft.account}]" if draft.account else ""
    return f"{draft.date}  {format_amount(draft.amount):>12}  {draft.descriptor}{account}"


def select_conflicts_to_include(
    conflicts: Sequence[DraftTransaction],
    *,
    session: PromptSession | None = None,
    message: str = "Import anyway (e.g. 1,3-4 / all / none; Enter = none): ",
) -> list[int]:
    """List possible duplicates and ask which ones to import anyway.

    Returns the ``row_index`` values of the chosen drafts. Nothing is selected
    by default; Esc or Ctrl+C also selects nothing.
    """

    if not conflicts:
        return []

    print(f"{len(conflicts)} row(s) look like transactions that were already imported:")
    for pos, draft in enumerate(conflicts, start=1):
        print(f"  {pos:>3}. {describe_draft(draft)}")

    class _SelectionValidator(Validator):
        def validate(self, document) -> None:
            try:
                parse_selection(document.text, len(conflicts))
            except ValueError as e:
                raise ValidationError(message=str(e)) from e

    kb = _cancel_bindings()
    result = _session(session, kb).prompt(
        message,
        validator=_SelectionValidator(),
        validate_while_typing=False,
        key_bindings=kb,
    )
    if result is None:
        return []
    return [conflicts[i].row_index for i in parse_selection(result, len(conflicts))]


def confirm(
    message: str,
    *,
    default: bool = True,
    session: PromptSession | None = None,
) -> bool:
    """Yes/no prompt; Enter accepts ``default``."""

    class _YesNo(Validator):
        def validate(self, document) -> None:
            t = document.text.strip().lower()
            if t and t not in _YES | _NO:
                raise ValidationError(message="Answer y or n.")

    hint = "[Y/n]" if default else "[y/N]"
    result = _session(session).prompt(
        f"{message} {hint} ", validator=_YesNo(), validate_while_typing=False
    )
    t = (result or "").strip().lower()
    if not t:
        return default
    return t in _YES


def prompt_text(
    message: str,
    *,
    default: str = "",
    session: PromptSession | None = None,
    allow_empty: bool = False,
) -> str | None:
    """Free-text prompt pre-filled with ``default``; ``None`` on Esc/Ctrl+C."""

    class _NonEmpty(Validator):
        def validate(self, document) -> None:
            if not allow_empty and not document.text.strip():
                raise ValidationError(message="A value is required.")

    kb = _cancel_bindings()
    result = _session(session, kb).prompt(
        message,
        default=default,
        validator=_NonEmpty(),
        validate_while_typing=False,
        key_bindings=kb,
    )
    return result.strip() if result is not None else None


def select_category(
    categories: Iterable[str],
    *,
    default: str = "",
    message: str = "Category (Enter to accept): ",
    session: PromptSession | None = None,
) -> str | None:
    """Choose a category with completion; unknown names are accepted as new.

    Known names are returned in their stored spelling. New names must pass
    category-name validation. Returns ``None`` on Esc/Ctrl+C.
    """

    words = list(categories)
    canonical = {w.lower(): w for w in words}
    completer = WordCompleter(words, ignore_case=True, match_middle=True, sentence=False)

    class _NameValidator(Validator):
        def validate(self, document) -> None:
            if document.text.strip().lower() in canonical:
                return
            v = _validate_name(document.text)
            if not v.ok:
                raise ValidationError(message=v.reason or "Invalid name")

    kb = _cancel_bindings()
    result = _session(session, kb).prompt(
        message,
        default=default,
        completer=completer,
        validator=_NameValidator(),
        validate_while_typing=False,
        key_bindings=kb,
    )
    if result is None:
        return None
    name = result.strip()
    return canonical.get(name.lower(), name)


__all__ = [
    "parse_selection",
    "describe_draft",
    "select_conflicts_to_include",
    "confirm",
    "prompt_text",
    "select_category",
]
