"""Terminal review of possible duplicates (prompt_toolkit-based).

Kept separate from :mod:`statement_import.duplicates` so the resolution state
machine stays UI-free and this module can be driven headlessly in tests via a
pipe-input ``PromptSession``.
"""

from __future__ import annotations

from collections.abc import Callable

from prompt_toolkit import PromptSession
from prompt_toolkit.completion import WordCompleter
from prompt_toolkit.validation import Validator

from .duplicates import DuplicateResolver
from .errors import ResolutionError
from .models import BulkResolutionReport, PossibleDuplicate, ResolutionAction

PAIR_CHOICES: dict[str, ResolutionAction] = {
    "undo": ResolutionAction.UNDO,
    "remove": ResolutionAction.REMOVE_EXISTING,
    "keep": ResolutionAction.KEEP_BOTH,
}
BULK_CHOICES: dict[str, ResolutionAction] = {
    "undo-all": ResolutionAction.UNDO,
    "remove-all": ResolutionAction.REMOVE_EXISTING,
    "keep-all": ResolutionAction.KEEP_BOTH,
}
SKIP = "skip"
ALL_CHOICES: tuple[str, ...] = (*PAIR_CHOICES, SKIP, *BULK_CHOICES)

HELP = (
    "undo: delete the imported row | remove: delete the existing row | "
    "keep: keep both | skip | undo-all / remove-all / keep-all"
)


def format_pair(pair: PossibleDuplicate) -> str:
    inc, ex = pair.incoming, pair.existing
    return (
        f"Possible duplicate on {inc.date}:\n"
        f"  imported  #{inc.id}  {inc.amount:>10}  {inc.description}\n"
        f"  existing  #{ex.id}  {ex.amount:>10}  {ex.description}"
    )


def choose_resolution(
    *,
    default: str = "keep",
    message: str = "Resolve [undo/remove/keep/skip, *-all]: ",
    session: PromptSession | None = None,
) -> str:
    """Prompt for one of ``ALL_CHOICES``; Enter accepts ``default``.

    Returns the normalized (lower-case, stripped) choice.
    """

    completer = WordCompleter(list(ALL_CHOICES), ignore_case=True, sentence=True)
    validator = Validator.from_callable(
        lambda text: text.strip().lower() in ALL_CHOICES,
        error_message="Choose one of: " + ", ".join(ALL_CHOICES),
        move_cursor_to_end=True,
    )
    if session is None:
        sess: PromptSession = PromptSession()
    else:
        sess = PromptSession(
            input=getattr(session, "input", None),
            output=getattr(session, "output", None),
        )
    answer = sess.prompt(
        message,
        default=default,
        completer=completer,
        validator=validator,
        validate_while_typing=False,
    )
    return answer.strip().lower()


def review_possible_duplicates(
    resolver: DuplicateResolver,
    *,
    session: PromptSession | None = None,
    echo: Callable[[str], None] = print,
) -> BulkResolutionReport:
    """Walk the outstanding pairs and apply the user's choice to each.

    A bulk choice applies to every outstanding pair (the current one and any
    skipped earlier included) and ends the review. A pair is reported in
    exactly one of ``applied``, ``skipped`` or ``failures``.
    """

    report = BulkResolutionReport()
    pending = resolver.outstanding
    if not pending:
        return report

    echo(HELP)
    for pair in pending:
        if not resolver.is_outstanding(pair):
            report.skipped.append(pair)
            continue
        echo(format_pair(pair))
        choice = choose_resolution(session=session)

        if choice == SKIP:
            report.skipped.append(pair)
            continue

        if choice in BULK_CHOICES:
            bulk = resolver.resolve_bulk(BULK_CHOICES[choice], resolver.outstanding)
            # Pairs skipped or failed earlier are still outstanding; the bulk run covers them.
            handled = {p.key for p in bulk.applied} | {p.key for p, _ in bulk.failures}
            report.skipped = [p for p in report.skipped if p.key not in handled]
            report.failures = [(p, r) for p, r in report.failures if p.key not in handled]
            known = {p.key for p in report.skipped}
            report.applied.extend(bulk.applied)
            report.skipped.extend(p for p in bulk.skipped if p.key not in known)
            report.failures.extend(bulk.failures)
            for failed, reason in bulk.failures:
                echo(f"Error: could not resolve #{failed.incoming.id}/#{failed.existing.id}: {reason}")
            break

        try:
            resolver.resolve_pair(PAIR_CHOICES[choice], pair)
        except ResolutionError as exc:
            echo(f"Error: {exc}")
            report.failures.append((pair, str(exc.cause)))
        else:
            report.applied.append(pair)

    return report


__all__ = [
    "ALL_CHOICES",
    "BULK_CHOICES",
    "PAIR_CHOICES",
    "SKIP",
    "choose_resolution",
    "format_pair",
    "review_possible_duplicates",
]
