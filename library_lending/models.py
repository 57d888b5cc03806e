from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, timedelta
from decimal import Decimal, ROUND_HALF_UP
from enum import Enum
from typing import Callable, Iterable, List, Optional

MONEY_Q = Decimal("0.01")


def money(x: Decimal) -> Decimal:
    return x.quantize(MONEY_Q, rounding=ROUND_HALF_UP)


# Membership Tiers
@dataclass(frozen=True)
class TierRules:
    """
    Borrowing rules attached to a membership tier.

    Attributes:
        displayName (str): Human readable tier name.
        maxBorrowedBooks (int): Maximum number of concurrently open loans.
        maxBorrowingDays (int): Default loan length in days.
        lateFeePerDay (Decimal): Fee charged per overdue day at return time.
    """
    displayName: str
    maxBorrowedBooks: int
    maxBorrowingDays: int
    lateFeePerDay: Decimal = Decimal("0.00")

    def calculateLateFee(self, overdue_days: int) -> Decimal:
        return money(Decimal(max(0, overdue_days)) * self.lateFeePerDay)


class MembershipTier(Enum):
    BASIC = TierRules("Basic", 3, 14, Decimal("0.00"))
    PREMIUM = TierRules("Premium", 5, 21, Decimal("0.00"))
    STUDENT = TierRules("Student", 4, 28, Decimal("0.00"))
    FACULTY = TierRules("Faculty", 10, 30, Decimal("0.00"))

    @property
    def rules(self) -> TierRules:
        return self.value

    def __str__(self) -> str:
        return self.value.displayName


class BookStatus(Enum):
    AVAILABLE = "Available"
    BORROWED = "Borrowed"
    MAINTENANCE = "Under Maintenance"
    LOST = "Lost"
    DAMAGED = "Damaged"

    def __str__(self) -> str:
        return self.value


class BookCategory(Enum):
    FICTION = "Fiction"
    NON_FICTION = "Non-Fiction"
    SCIENCE = "Science"
    TECHNOLOGY = "Technology"
    HISTORY = "History"
    BIOGRAPHY = "Biography"
    REFERENCE = "Reference"
    CHILDREN = "Children"
    TEXTBOOK = "Textbook"
    MAGAZINE = "Magazine"

    def __str__(self) -> str:
        return self.value


# Domain Models
@dataclass(frozen=True)
class Address:
    street: str
    city: str
    postalCode: str
    country: str

    def fullAddress(self) -> str:
        return f"{self.street}, {self.city} {self.postalCode}, {self.country}"


@dataclass
class Person:
    """
    Personal details shared by anyone the library keeps on file.

    Attributes:
        firstName (str): Given name.
        lastName (str): Family name.
        email (str): Contact email address.
        dateOfBirth (date): Date of birth.
        address (Address): Postal address.
    """
    firstName: str
    lastName: str
    email: str
    dateOfBirth: date
    address: Address

    def fullName(self) -> str:
        return f"{self.firstName} {self.lastName}"

    def age(self, on_date: Optional[date] = None) -> int:
        on_date = on_date or date.today()
        return on_date.year - self.dateOfBirth.year


@dataclass
class LoanRecord:
    """
    A single borrow lifecycle for one copy of a book.

    Attributes:
        loanId (str): Unique loan identifier.
        memberId (str): Borrowing member.
        bookIsbn (str): Borrowed book.
        borrowDate (date): Date the loan was opened.
        dueDate (date): Date the book should be back; moved only by extendDueDate.
        returnDate (Optional[date]): Set once when the loan is closed.
        lateFee (Decimal): Fixed at return time, never recomputed.
    """
    loanId: str
    memberId: str
    bookIsbn: str
    borrowDate: date
    dueDate: date
    returnDate: Optional[date] = None
    lateFee: Decimal = Decimal("0.00")

    def isReturned(self) -> bool:
        return self.returnDate is not None

    def isOverdue(self, on_date: Optional[date] = None) -> bool:
        """
        Returns True if the loan is still open and on_date is past the due date.
        """
        on_date = on_date or date.today()
        return not self.isReturned() and on_date > self.dueDate

    def overdueDays(self, on_date: Optional[date] = None) -> int:
        on_date = on_date or date.today()
        if not self.isOverdue(on_date):
            return 0
        return (on_date - self.dueDate).days

    def borrowingDays(self, on_date: Optional[date] = None) -> int:
        end = self.returnDate or on_date or date.today()
        return (end - self.borrowDate).days

    def close(self, return_date: date, late_fee_per_day: Decimal) -> bool:
        """
        Closes the loan and fixes its late fee.

        Returns:
            bool: False if the loan was already closed (nothing changes).
        """
        if self.isReturned():
            return False

        self.returnDate = return_date
        if return_date > self.dueDate:
            overdue_days = (return_date - self.dueDate).days
            self.lateFee = money(Decimal(overdue_days) * late_fee_per_day)
        return True

    def extendDueDate(self, additional_days: int) -> bool:
        if self.isReturned() or additional_days <= 0:
            return False
        self.dueDate = self.dueDate + timedelta(days=additional_days)
        return True


LoanLookup = Callable[[str], Optional[LoanRecord]]


@dataclass
class Member:
    """
    Represents a library member.

    Attributes:
        memberId (str): Unique member identifier.
        person (Person): Personal details.
        tier (MembershipTier): Membership classification.
        membershipDate (date): Date the membership started.
        active (bool): Inactive members cannot open new loans.
        loanIds (List[str]): Loan references in chronological order.
    """
    memberId: str
    person: Person
    tier: MembershipTier = MembershipTier.BASIC
    membershipDate: date = field(default_factory=date.today)
    active: bool = True
    loanIds: List[str] = field(default_factory=list)

    def fullName(self) -> str:
        return self.person.fullName()

    def addLoan(self, loanId: str) -> None:
        self.loanIds.append(loanId)

    def currentBorrowedCount(self, lookup: LoanLookup) -> int:
        """
        Counts referenced loans that have not been returned yet.
        """
        count = 0
        for loan in self._loans(lookup):
            if not loan.isReturned():
                count += 1
        return count

    def canBorrowMore(self, lookup: LoanLookup, rules: Optional[TierRules] = None) -> bool:
        if not self.active:
            return False
        rules = rules or self.tier.rules
        return self.currentBorrowedCount(lookup) < rules.maxBorrowedBooks

    def _loans(self, lookup: LoanLookup) -> Iterable[LoanRecord]:
        for loanId in self.loanIds:
            loan = lookup(loanId)
            if loan is not None:
                yield loan


@dataclass
class Book:
    """
    Represents a book title and its stock of interchangeable copies.

    availableCopies is derived state: it is only ever changed by markBorrowed,
    markReturned, setTotalCopies and setStatus.

    Attributes:
        isbn (str): Unique identifier for the book.
        title (str): Book title.
        author (str): Author name.
        publisher (str): Publisher name.
        publicationDate (date): Publication date.
        category (BookCategory): Catalogue category.
        totalCopies (int): Copies owned, at least 1.
        status (BookStatus): Circulation status.
    """
    isbn: str
    title: str
    author: str
    publisher: str = ""
    publicationDate: Optional[date] = None
    category: BookCategory = BookCategory.FICTION
    totalCopies: int = 1
    status: BookStatus = BookStatus.AVAILABLE
    availableCopies: int = field(init=False, default=0)

    def __post_init__(self) -> None:
        self.totalCopies = max(1, self.totalCopies)
        self._rederive_available()

    def isAvailable(self) -> bool:
        return self.status is BookStatus.AVAILABLE and self.availableCopies > 0

    def markBorrowed(self) -> bool:
        """
        Takes one copy out of circulation.

        Returns:
            bool: False (and no change) if no copy is available.
        """
        if not self.isAvailable():
            return False

        self.availableCopies -= 1
        if self.availableCopies == 0:
            self.status = BookStatus.BORROWED
        return True

    def markReturned(self) -> bool:
        """
        Puts one copy back into circulation.

        Returns:
            bool: False if every copy is already available (guards double returns).
        """
        if self.availableCopies >= self.totalCopies:
            return False

        self.availableCopies += 1
        if self.availableCopies == self.totalCopies:
            self.status = BookStatus.AVAILABLE
        return True

    def setTotalCopies(self, n: int) -> None:
        self.totalCopies = max(1, n)
        self._rederive_available()

    def setStatus(self, status: BookStatus) -> None:
        self.status = status
        self._rederive_available()

    def age(self, on_date: Optional[date] = None) -> int:
        if self.publicationDate is None:
            return 0
        on_date = on_date or date.today()
        return on_date.year - self.publicationDate.year

    def _rederive_available(self) -> None:
        if self.status is BookStatus.AVAILABLE:
            self.availableCopies = self.totalCopies
        elif self.status is BookStatus.BORROWED:
            self.availableCopies = max(0, self.totalCopies - 1)
        else:
            self.availableCopies = 0
