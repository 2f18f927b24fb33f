import contextlib
from decimal import Decimal

from prompt_toolkit import PromptSession
from prompt_toolkit.input import create_pipe_input
from prompt_toolkit.output import DummyOutput

from statement_import.duplicates import DuplicateResolver
from statement_import.errors import LedgerError
from statement_import.models import ExistingSide, IncomingSide, PossibleDuplicate
from statement_import.term_ui import choose_resolution, format_pair, review_possible_duplicates

CLEAR = "\x01\x0b"  # Ctrl-A, Ctrl-K


@contextlib.contextmanager
def pipe_session():
    with create_pipe_input() as pipe:
        sess = PromptSession(input=pipe, output=DummyOutput())
        yield pipe, sess


class RecordingLedger:
    def __init__(self, failing=()):
        self.deleted: list[int] = []
        self.failing = set(failing)

    def delete_transaction(self, transaction_id: int) -> bool:
        if transaction_id in self.failing:
            raise LedgerError("storage unavailable")
        self.deleted.append(transaction_id)
        return True


def pair(incoming_id: int, existing_id: int) -> PossibleDuplicate:
    return PossibleDuplicate(
        incoming=IncomingSide(
            id=incoming_id,
            date="2024-03-01",
            amount=Decimal("4.50"),
            description="Coffee Shop",
            external_hash="a" * 64,
        ),
        existing=ExistingSide(
            id=existing_id, date="2024-03-01", amount=Decimal("4.50"), description="COFFEE SHOP LTD"
        ),
    )


def scripted_echo(pipe, answers):
    """Feed the next answer into the pipe each time a pair is shown."""

    shown: list[str] = []
    queue = list(answers)

    def echo(message: str) -> None:
        shown.append(message)
        if message.startswith("Possible duplicate") and queue:
            pipe.send_text(queue.pop(0))

    return echo, shown


def test_enter_accepts_keep_default():
    with pipe_session() as (pipe, sess):
        pipe.send_text("\r")
        assert choose_resolution(session=sess) == "keep"


def test_per_pair_choices():
    pairs = [pair(11, 1), pair(12, 2), pair(13, 3), pair(14, 4)]
    ledger = RecordingLedger()
    resolver = DuplicateResolver(ledger, pairs)
    with pipe_session() as (pipe, sess):
        echo, shown = scripted_echo(
            pipe, ["\r", CLEAR + "undo\r", CLEAR + "remove\r", CLEAR + "skip\r"]
        )
        report = review_possible_duplicates(resolver, session=sess, echo=echo)

    assert ledger.deleted == [12, 3]
    assert report.applied == pairs[:3]
    assert report.skipped == [pairs[3]]
    assert resolver.outstanding == [pairs[3]]
    assert format_pair(pairs[0]) in shown


def test_bulk_choice_applies_to_all_remaining_pairs():
    pairs = [pair(11, 1), pair(12, 2), pair(13, 3)]
    ledger = RecordingLedger()
    resolver = DuplicateResolver(ledger, pairs)
    with pipe_session() as (pipe, sess):
        echo, _ = scripted_echo(pipe, ["\r", CLEAR + "undo-all\r"])
        report = review_possible_duplicates(resolver, session=sess, echo=echo)

    assert ledger.deleted == [12, 13]
    assert report.applied == pairs
    assert resolver.outstanding == []


def test_bulk_choice_picks_up_pairs_skipped_earlier():
    pairs = [pair(11, 1), pair(12, 2), pair(13, 3)]
    ledger = RecordingLedger()
    resolver = DuplicateResolver(ledger, pairs)
    with pipe_session() as (pipe, sess):
        echo, _ = scripted_echo(pipe, [CLEAR + "skip\r", CLEAR + "undo-all\r"])
        report = review_possible_duplicates(resolver, session=sess, echo=echo)

    assert ledger.deleted == [11, 12, 13]
    assert report.applied == pairs
    assert report.skipped == []
    assert report.failures == []


def test_failed_resolution_is_reported_and_review_continues():
    pairs = [pair(11, 1), pair(12, 2)]
    ledger = RecordingLedger(failing={11})
    resolver = DuplicateResolver(ledger, pairs)
    with pipe_session() as (pipe, sess):
        echo, shown = scripted_echo(pipe, [CLEAR + "undo\r", CLEAR + "undo\r"])
        report = review_possible_duplicates(resolver, session=sess, echo=echo)

    assert ledger.deleted == [12]
    assert report.failed_count == 1
    assert report.failures[0][0] == pairs[0]
    assert any(m.startswith("Error:") for m in shown)
    assert resolver.outstanding == [pairs[0]]


def test_nothing_outstanding_prompts_nothing():
    resolver = DuplicateResolver(RecordingLedger(), [])
    report = review_possible_duplicates(resolver, echo=lambda _m: None)
    assert report.applied == [] and report.skipped == []
