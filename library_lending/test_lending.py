import threading
from datetime import date
from decimal import Decimal

import pytest

from library_lending.conftest import add_book, add_member
from library_lending.events import CollectingNotifier, EventKind
from library_lending.exceptions import (
    BookNotAvailableError,
    BookNotFoundError,
    BorrowLimitExceededError,
    DuplicateIdError,
    ErrorKind,
    LoanNotFoundError,
    MemberNotFoundError,
    MembershipInvalidError,
    ValidationError,
)
from library_lending.ids import IdGenerator
from library_lending.lending import LendingEngine
from library_lending.models import Book, BookStatus, MembershipTier, TierRules
from library_lending.store import EntityStore


@pytest.fixture
def paid_engine(store, clock):
    """Engine where BASIC members pay 0.50 per overdue day."""
    rules = {MembershipTier.BASIC: TierRules("Basic", 3, 14, Decimal("0.50"))}
    return LendingEngine(store, IdGenerator(), tier_rules=rules, clock=clock)


# Borrow
def test_borrow_single_copy_then_second_borrower_fails(store, engine, clock):
    add_book(store, "X", copies=1)
    add_member(store, "M")
    add_member(store, "M2")

    loan = engine.borrowBook("M", "X", due_date=date(2024, 1, 15))
    assert loan.memberId == "M"
    assert loan.bookIsbn == "X"
    assert loan.borrowDate == clock.today
    assert loan.dueDate == date(2024, 1, 15)
    assert loan.returnDate is None

    book = store.books.get("X")
    assert book.availableCopies == 0
    assert book.status is BookStatus.BORROWED
    assert store.members.get("M").loanIds == [loan.loanId]
    assert store.loans.get(loan.loanId) == loan

    with pytest.raises(BookNotAvailableError) as exc:
        engine.borrowBook("M2", "X", due_date=date(2024, 1, 15))
    assert exc.value.kind is ErrorKind.BOOK_NOT_AVAILABLE
    assert store.members.get("M2").loanIds == []
    assert store.loans.count() == 1


def test_borrow_limit_exceeded_leaves_book_untouched(store, engine):
    add_member(store, "M")
    for isbn in ("A", "B", "C", "D"):
        add_book(store, isbn)
    for isbn in ("A", "B", "C"):
        engine.borrowBook("M", isbn)

    with pytest.raises(BorrowLimitExceededError) as exc:
        engine.borrowBook("M", "D")
    assert exc.value.current == 3
    assert exc.value.maximum == 3
    assert exc.value.memberId == "M"

    d = store.books.get("D")
    assert d.availableCopies == 1
    assert d.status is BookStatus.AVAILABLE
    assert store.loans.count() == 3


def test_history_does_not_count_against_limit(store, engine):
    add_member(store, "M")
    add_book(store, "A")
    for _ in range(5):
        engine.borrowBook("M", "A")
        assert engine.returnBook("M", "A") is True
    assert len(store.members.get("M").loanIds) == 5


def test_borrow_failures_are_named(store, engine):
    add_member(store, "M")
    add_member(store, "OFF", active=False)
    add_book(store, "X")

    with pytest.raises(MemberNotFoundError):
        engine.borrowBook("nobody", "X")
    with pytest.raises(BookNotFoundError):
        engine.borrowBook("M", "missing")
    # inactive is reported before the book lookup
    with pytest.raises(MembershipInvalidError) as exc:
        engine.borrowBook("OFF", "missing")
    assert exc.value.reason == "member is not active"
    assert store.books.get("X").availableCopies == 1


def test_default_due_date_follows_tier(store, engine, clock):
    add_member(store, "B")
    add_member(store, "F", tier=MembershipTier.FACULTY)
    add_book(store, "X", copies=2)

    assert engine.borrowBook("B", "X").dueDate == date(2024, 1, 15)
    assert engine.borrowBook("F", "X").dueDate == date(2024, 1, 31)


def test_due_date_before_borrow_date_is_rejected(store, engine):
    add_member(store, "M")
    add_book(store, "X")
    with pytest.raises(ValidationError):
        engine.borrowBook("M", "X", due_date=date(2023, 12, 31))
    assert store.books.get("X").availableCopies == 1


def test_missing_member_reported_before_bad_due_date(store, engine):
    add_book(store, "X")
    with pytest.raises(MemberNotFoundError):
        engine.borrowBook("nobody", "X", due_date=date(2023, 12, 31))

    add_member(store, "M")
    with pytest.raises(BookNotFoundError):
        engine.borrowBook("M", "missing", due_date=date(2023, 12, 31))


class _FixedIds(IdGenerator):
    def generateId(self, prefix=IdGenerator.DEFAULT_PREFIX):
        return f"{prefix}_fixed"


def test_borrow_refuses_to_overwrite_existing_loan_id(store, clock):
    engine = LendingEngine(store, _FixedIds(), clock=clock)
    add_member(store, "M")
    add_member(store, "N")
    add_book(store, "X", copies=2)
    first = engine.borrowBook("M", "X")

    with pytest.raises(DuplicateIdError) as exc:
        engine.borrowBook("N", "X")
    assert exc.value.entityId == first.loanId

    assert store.loans.get(first.loanId).memberId == "M"
    assert store.books.get("X").availableCopies == 1
    assert store.members.get("N").loanIds == []


# Return
@pytest.mark.parametrize("copies", [1, 2, 3])
def test_borrow_then_return_restores_book(store, engine, copies):
    add_member(store, "M")
    add_book(store, "X", copies=copies)
    before = store.books.get("X")

    engine.borrowBook("M", "X")
    assert engine.returnBook("M", "X") is True

    after = store.books.get("X")
    assert after.availableCopies == before.availableCopies
    assert after.status is before.status


def test_return_without_open_loan_is_false_and_mutates_nothing(store, engine):
    add_member(store, "M")
    add_book(store, "X", copies=2)
    add_book(store, "Y")
    engine.borrowBook("M", "X")
    books_before = {b.isbn: (b.availableCopies, b.status) for b in store.books.list()}
    loans_before = store.loans.list()

    assert engine.returnBook("M", "Y") is False
    assert engine.returnBook("someone", "X") is False

    assert {b.isbn: (b.availableCopies, b.status) for b in store.books.list()} == books_before
    assert store.loans.list() == loans_before


def test_double_return_preserves_late_fee(store, paid_engine, clock):
    add_member(store, "M")
    add_book(store, "X")
    loan = paid_engine.borrowBook("M", "X", due_date=date(2024, 1, 15))

    clock.today = date(2024, 1, 20)
    assert paid_engine.returnBook("M", "X") is True
    closed = store.loans.get(loan.loanId)
    assert closed.returnDate == date(2024, 1, 20)
    assert closed.lateFee == Decimal("2.50")

    clock.today = date(2024, 3, 1)
    assert paid_engine.returnBook("M", "X") is False
    assert store.loans.get(loan.loanId).lateFee == Decimal("2.50")
    assert store.books.get("X").availableCopies == 1


def test_zero_fee_tier_overdue_then_returned(store, engine, clock):
    """
    Borrowed Jan 1, due Jan 15, returned Jan 20 on a zero-fee BASIC tier.
    """
    add_member(store, "M")
    add_book(store, "X")
    loan = engine.borrowBook("M", "X", due_date=date(2024, 1, 15))

    clock.today = date(2024, 1, 20)
    assert engine.isOverdue(store.loans.get(loan.loanId)) is True
    assert engine.overdueDays(store.loans.get(loan.loanId)) == 5

    engine.returnBook("M", "X")
    closed = store.loans.get(loan.loanId)
    assert closed.lateFee == Decimal("0.00")
    assert engine.isOverdue(closed) is False


def test_return_closes_earliest_open_loan_first(store, engine, clock):
    add_member(store, "M")
    add_book(store, "X", copies=2)
    first = engine.borrowBook("M", "X")
    clock.today = date(2024, 1, 3)
    second = engine.borrowBook("M", "X")

    engine.returnBook("M", "X")
    assert store.loans.get(first.loanId).isReturned() is True
    assert store.loans.get(second.loanId).isReturned() is False


def test_return_same_day_loans_in_borrow_order(store, engine):
    add_member(store, "M")
    add_book(store, "X", copies=2)
    first = engine.borrowBook("M", "X")
    second = engine.borrowBook("M", "X")

    engine.returnBook("M", "X")
    assert store.loans.get(first.loanId).isReturned() is True
    assert store.loans.get(second.loanId).isReturned() is False


def test_return_after_member_record_removed(store, engine):
    add_member(store, "M")
    add_book(store, "X")
    loan = engine.borrowBook("M", "X")
    store.members.delete("M")

    assert engine.returnBook("M", "X") is True
    assert store.loans.get(loan.loanId).isReturned() is True
    assert store.books.get("X").availableCopies == 1


def test_return_before_borrow_date_is_rejected(store, engine):
    add_member(store, "M")
    add_book(store, "X")
    engine.borrowBook("M", "X")
    with pytest.raises(ValidationError):
        engine.returnBook("M", "X", return_date=date(2023, 12, 1))
    assert len(engine.getActiveLoans()) == 1


def test_return_does_not_double_credit_copies(store, engine):
    add_member(store, "M")
    add_book(store, "X")
    loan = engine.borrowBook("M", "X")
    # inventory reset behind the engine's back
    store.books.put(Book("X", "Book X", "Some Author"))

    assert engine.returnBook("M", "X") is True
    assert store.loans.get(loan.loanId).isReturned() is True
    book = store.books.get("X")
    assert book.availableCopies == book.totalCopies == 1


# Extension and overdue queries
def test_extend_due_date(store, engine):
    add_member(store, "M")
    add_book(store, "X")
    loan = engine.borrowBook("M", "X", due_date=date(2024, 1, 15))

    assert engine.extendDueDate(loan.loanId, 7) is True
    assert store.loans.get(loan.loanId).dueDate == date(2024, 1, 22)
    assert engine.extendDueDate(loan.loanId, 0) is False

    engine.returnBook("M", "X")
    assert engine.extendDueDate(loan.loanId, 7) is False
    with pytest.raises(LoanNotFoundError):
        engine.extendDueDate("LOAN_missing", 7)


def test_overdue_reports_and_notices(store, engine, clock, publisher):
    add_member(store, "M", email="m@example.com")
    add_member(store, "N", email="no-email")
    add_book(store, "X")
    add_book(store, "Y")
    add_book(store, "Z")
    engine.borrowBook("M", "X", due_date=date(2024, 1, 10))
    engine.borrowBook("N", "Y", due_date=date(2024, 1, 10))
    engine.borrowBook("M", "Z", due_date=date(2024, 2, 1))

    events = []
    publisher.subscribe(events.append, kinds=[EventKind.OVERDUE_NOTIFICATION])

    clock.today = date(2024, 1, 12)
    assert {r.bookIsbn for r in engine.getOverdueLoans()} == {"X", "Y"}
    infos = {i.book.isbn: i for i in engine.getOverdueBooks()}
    assert infos["X"].daysOverdue == 2
    assert "Days Overdue: 2" in infos["X"].formattedInfo()

    notifier = CollectingNotifier()
    assert engine.notifyOverdue(notifier) == 1
    assert [memberId for memberId, _ in notifier.sent] == ["M"]
    assert len(events) == 2


def test_failing_notifier_does_not_raise(store, engine, clock):
    class Broken:
        def notify(self, member, message):
            raise RuntimeError("smtp down")

    add_member(store, "M")
    add_book(store, "X")
    engine.borrowBook("M", "X", due_date=date(2024, 1, 2))
    clock.today = date(2024, 1, 5)

    assert engine.notifyOverdue(Broken()) == 0


def test_events_published_and_sink_failures_isolated(store, engine, publisher):
    def broken(event):
        raise RuntimeError("sink down")

    seen = []
    publisher.subscribe(broken, priority=-1)
    publisher.subscribe(lambda e: seen.append(e.kind))
    add_member(store, "M")
    add_book(store, "X")

    loan = engine.borrowBook("M", "X")
    assert engine.returnBook("M", "X") is True
    assert seen == [EventKind.BOOK_BORROWED, EventKind.BOOK_RETURNED]
    assert store.loans.get(loan.loanId).isReturned()


def test_member_loans_in_order(store, engine):
    add_member(store, "M")
    add_book(store, "A")
    add_book(store, "B")
    a = engine.borrowBook("M", "A")
    b = engine.borrowBook("M", "B")
    assert [r.loanId for r in engine.getMemberLoans("M")] == [a.loanId, b.loanId]
    with pytest.raises(MemberNotFoundError):
        engine.getMemberLoans("nobody")


# Concurrency
def _run_concurrently(n, fn):
    barrier = threading.Barrier(n)
    results = [None] * n

    def worker(i):
        barrier.wait()
        try:
            results[i] = fn(i)
        except Exception as e:
            results[i] = e

    threads = [threading.Thread(target=worker, args=(i,)) for i in range(n)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    return results


def test_concurrent_borrowers_of_single_copy():
    store = EntityStore()
    engine = LendingEngine(store, IdGenerator())
    add_book(store, "X", copies=1)
    n = 16
    for i in range(n):
        add_member(store, f"M{i}")

    results = _run_concurrently(n, lambda i: engine.borrowBook(f"M{i}", "X"))

    wins = [r for r in results if not isinstance(r, Exception)]
    losses = [r for r in results if isinstance(r, BookNotAvailableError)]
    assert len(wins) == 1
    assert len(losses) == n - 1
    assert store.books.get("X").availableCopies == 0
    assert store.loans.count() == 1


def test_concurrent_borrows_by_one_member_respect_limit():
    store = EntityStore()
    engine = LendingEngine(store, IdGenerator())
    add_member(store, "M")
    n = 10
    for i in range(n):
        add_book(store, f"B{i}")

    results = _run_concurrently(n, lambda i: engine.borrowBook("M", f"B{i}"))

    assert sum(1 for r in results if not isinstance(r, Exception)) == 3
    assert sum(1 for r in results if isinstance(r, BorrowLimitExceededError)) == n - 3
    assert len(store.members.get("M").loanIds) == 3
    assert sum(b.availableCopies for b in store.books.list()) == n - 3


def test_copy_counts_stay_in_bounds_under_mixed_load():
    store = EntityStore()
    engine = LendingEngine(store, IdGenerator())
    add_book(store, "X", copies=3)
    n = 12
    for i in range(n):
        add_member(store, f"M{i}")

    def borrow_and_return(i):
        for _ in range(20):
            try:
                engine.borrowBook(f"M{i}", "X")
            except BookNotAvailableError:
                continue
            b = store.books.get("X")
            assert 0 <= b.availableCopies <= b.totalCopies
            engine.returnBook(f"M{i}", "X")
        return True

    results = _run_concurrently(n, borrow_and_return)
    assert all(r is True for r in results)

    book = store.books.get("X")
    assert book.availableCopies == 3
    assert book.status is BookStatus.AVAILABLE
    assert engine.getActiveLoans() == []
