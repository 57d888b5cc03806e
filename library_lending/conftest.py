from datetime import date

import pytest

from library_lending.events import EventPublisher
from library_lending.ids import IdGenerator
from library_lending.lending import LendingEngine
from library_lending.models import Address, Book, Member, MembershipTier, Person
from library_lending.store import EntityStore


class FakeClock:
    """Callable clock that tests can move around."""

    def __init__(self, today: date) -> None:
        self.today = today

    def __call__(self) -> date:
        return self.today


def make_person(first="Mari", email="mari@example.com"):
    return Person(first, "Maasikas", email, date(1990, 1, 1), Address("Pikk 1", "Tallinn", "10123", "Estonia"))


def add_member(store, memberId, tier=MembershipTier.BASIC, active=True, email="mari@example.com"):
    member = Member(memberId, make_person(email=email), tier=tier, membershipDate=date(2023, 1, 1), active=active)
    store.members.put(member)
    return member


def add_book(store, isbn, copies=1, title=None):
    book = Book(isbn, title or f"Book {isbn}", "Some Author", "Press", date(2000, 1, 1), totalCopies=copies)
    store.books.put(book)
    return book


@pytest.fixture
def clock():
    return FakeClock(date(2024, 1, 1))


@pytest.fixture
def store():
    return EntityStore()


@pytest.fixture
def publisher():
    return EventPublisher()


@pytest.fixture
def engine(store, clock, publisher):
    return LendingEngine(store, IdGenerator(clock_ms=lambda: 0), publisher=publisher, clock=clock)
