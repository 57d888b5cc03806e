from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import Callable, Dict, List, Optional

from library_lending.events import CollectingNotifier, EventKind, EventPublisher, LibraryEvent, Notifier
from library_lending.exceptions import (
    BookCurrentlyBorrowedError,
    DuplicateBookError,
    DuplicateIdError,
    LibraryError,
    ValidationError,
)
from library_lending.ids import IdGenerator
from library_lending.lending import LendingEngine, OverdueBookInfo
from library_lending.log import get_logger
from library_lending.models import (
    Address,
    Book,
    BookCategory,
    BookStatus,
    LoanRecord,
    Member,
    MembershipTier,
    Person,
    TierRules,
)
from library_lending.stats import LibraryStatistics, StatisticsAggregator
from library_lending.store import EntityStore

logger = get_logger("library")


# Library Core
class Library:
    """
    Library front door: catalogue and membership management plus the lending
    and reporting operations, all over one shared EntityStore.

    Rules enforced here (lending rules live in LendingEngine):
        (1) New members and books are validated before they are stored
        (2) ISBNs are unique
        (3) Members are never hard-deleted, only deactivated
        (4) Books with open loans cannot be removed, re-counted or re-statused
    """

    def __init__(
        self,
        store: Optional[EntityStore] = None,
        id_generator: Optional[IdGenerator] = None,
        publisher: Optional[EventPublisher] = None,
        tier_rules: Optional[Dict[MembershipTier, TierRules]] = None,
        clock: Optional[Callable[[], date]] = None,
    ) -> None:
        self.store = store or EntityStore()
        self.ids = id_generator or IdGenerator()
        self.publisher = publisher or EventPublisher()
        self._clock = clock or date.today
        self.lending = LendingEngine(self.store, self.ids, self.publisher, tier_rules, self._clock)
        self.statistics = StatisticsAggregator(self.store, self._clock)

    # Member Management
    def registerMember(
        self,
        firstName: str,
        lastName: str,
        email: str,
        dateOfBirth: date,
        street: str,
        city: str,
        postalCode: str,
        country: str,
        tier: MembershipTier = MembershipTier.BASIC,
    ) -> Member:
        """
        Registers a new member with a generated id.

        Raises:
            ValidationError: If any field is empty, the email has no '@', or
                the date of birth lies in the future.
            DuplicateIdError: The generated member id is already stored.
        """
        logger.info("registerMember called | name=%s %s tier=%s", firstName, lastName, tier.name)

        self._require_text(firstName, "firstName")
        self._require_text(lastName, "lastName")
        self._require_email(email)
        self._require_past_date(dateOfBirth, "dateOfBirth")
        for value, name in ((street, "street"), (city, "city"), (postalCode, "postalCode"), (country, "country")):
            self._require_text(value, name)

        member = Member(
            memberId=self.ids.generateMemberId(),
            person=Person(firstName, lastName, email, dateOfBirth, Address(street, city, postalCode, country)),
            tier=tier,
            membershipDate=self._clock(),
        )
        if not self.store.members.putIfAbsent(member):
            logger.error("Generated member id already stored | memberId=%s", member.memberId)
            raise DuplicateIdError("member", member.memberId)

        logger.info("Member registered successfully | memberId=%s", member.memberId)
        self._publish(EventKind.MEMBER_REGISTERED, f"Member {member.fullName()} registered", member)
        return member

    def findMember(self, memberId: str) -> Optional[Member]:
        return self.store.members.get(memberId)

    def getAllMembers(self) -> List[Member]:
        return self.store.members.list()

    def updateMember(
        self,
        memberId: str,
        firstName: Optional[str] = None,
        lastName: Optional[str] = None,
        email: Optional[str] = None,
        tier: Optional[MembershipTier] = None,
    ) -> bool:
        """
        Updates the given fields; fields left as None keep their value.

        Returns:
            bool: False if the member does not exist.
        """
        logger.info("updateMember called | memberId=%s", memberId)

        if firstName is not None:
            self._require_text(firstName, "firstName")
        if lastName is not None:
            self._require_text(lastName, "lastName")
        if email is not None:
            self._require_email(email)

        with self.store.members.lock(memberId):
            member = self.store.members.get(memberId)
            if member is None:
                logger.warning("Member not found for update | memberId=%s", memberId)
                return False
            if firstName is not None:
                member.person.firstName = firstName
            if lastName is not None:
                member.person.lastName = lastName
            if email is not None:
                member.person.email = email
            if tier is not None:
                member.tier = tier
            self.store.members.put(member)

        self._publish(EventKind.MEMBER_UPDATED, f"Member {memberId} updated", member)
        return True

    def deactivateMember(self, memberId: str) -> bool:
        logger.info("deactivateMember called | memberId=%s", memberId)
        if not self._set_active(memberId, False):
            return False
        self._publish(EventKind.MEMBER_DEACTIVATED, f"Member {memberId} deactivated", memberId)
        return True

    def reactivateMember(self, memberId: str) -> bool:
        logger.info("reactivateMember called | memberId=%s", memberId)
        if not self._set_active(memberId, True):
            return False
        self._publish(EventKind.MEMBER_UPDATED, f"Member {memberId} reactivated", memberId)
        return True

    # Book Management
    def addBook(
        self,
        isbn: str,
        title: str,
        author: str,
        publisher: str,
        publicationDate: date,
        category: BookCategory,
        totalCopies: int = 1,
    ) -> Book:
        """
        Adds a new book to the library with every copy available.

        Raises:
            DuplicateBookError: If a book with the same ISBN already exists.
            ValidationError: If a field is empty, the publication date lies in
                the future, or totalCopies is not positive.
        """
        logger.info("addBook called | isbn=%s title=%s", isbn, title)

        self._require_text(isbn, "isbn")
        self._require_text(title, "title")
        self._require_text(author, "author")
        self._require_text(publisher, "publisher")
        self._require_past_date(publicationDate, "publicationDate")
        self._require_positive(totalCopies, "totalCopies")

        book = Book(isbn, title, author, publisher, publicationDate, category, totalCopies)
        with self.store.books.lock(isbn):
            if self.store.books.exists(isbn):
                raise DuplicateBookError(isbn)
            self.store.books.put(book)

        logger.info("Book added successfully | isbn=%s copies=%d", isbn, book.totalCopies)
        self._publish(EventKind.BOOK_ADDED, f"Book '{title}' added", book)
        return book

    def findBook(self, isbn: str) -> Optional[Book]:
        return self.store.books.get(isbn)

    def getAllBooks(self) -> List[Book]:
        return self.store.books.list()

    def getAvailableBooks(self) -> List[Book]:
        """
        Returns all books that have a copy available for checkout.
        """
        return [b for b in self.store.books.list() if b.isAvailable()]

    def searchBooks(
        self,
        title: Optional[str] = None,
        author: Optional[str] = None,
        category: Optional[BookCategory] = None,
        available_only: bool = False,
    ) -> List[Book]:
        """
        Case-insensitive partial match on title and author; None matches anything.
        """
        results = []
        for b in self.store.books.list():
            if title is not None and title.lower() not in b.title.lower():
                continue
            if author is not None and author.lower() not in b.author.lower():
                continue
            if category is not None and b.category is not category:
                continue
            if available_only and not b.isAvailable():
                continue
            results.append(b)
        return results

    def updateBook(
        self,
        isbn: str,
        title: Optional[str] = None,
        author: Optional[str] = None,
        publisher: Optional[str] = None,
        category: Optional[BookCategory] = None,
        totalCopies: Optional[int] = None,
    ) -> bool:
        """
        Updates the given fields; fields left as None keep their value.

        Returns:
            bool: False if the book does not exist.

        Raises:
            BookCurrentlyBorrowedError: totalCopies changed while loans are open.
        """
        logger.info("updateBook called | isbn=%s", isbn)

        for value, name in ((title, "title"), (author, "author"), (publisher, "publisher")):
            if value is not None:
                self._require_text(value, name)
        if totalCopies is not None:
            self._require_positive(totalCopies, "totalCopies")

        with self.store.books.lock(isbn):
            book = self.store.books.get(isbn)
            if book is None:
                logger.warning("Book not found for update | isbn=%s", isbn)
                return False
            if totalCopies is not None and totalCopies != book.totalCopies:
                self._require_no_open_loans(isbn)
                book.setTotalCopies(totalCopies)
            if title is not None:
                book.title = title
            if author is not None:
                book.author = author
            if publisher is not None:
                book.publisher = publisher
            if category is not None:
                book.category = category
            self.store.books.put(book)

        logger.info("Book updated successfully | isbn=%s", isbn)
        return True

    def setBookStatus(self, isbn: str, status: BookStatus) -> bool:
        """
        Moves a book in or out of circulation (maintenance, lost, damaged).

        BORROWED cannot be set by hand; it only results from lending.

        Returns:
            bool: False if the book does not exist.

        Raises:
            ValidationError: status is BORROWED.
            BookCurrentlyBorrowedError: the book has open loans.
        """
        logger.info("setBookStatus called | isbn=%s status=%s", isbn, status.name)

        if status is BookStatus.BORROWED:
            raise ValidationError("status", "BORROWED is only set by lending a copy")

        with self.store.books.lock(isbn):
            book = self.store.books.get(isbn)
            if book is None:
                logger.warning("Book not found for status change | isbn=%s", isbn)
                return False
            self._require_no_open_loans(isbn)
            book.setStatus(status)
            self.store.books.put(book)
        return True

    def removeBook(self, isbn: str) -> bool:
        """
        Removes a book that has no open loans. Closed loans stay as history.

        Returns:
            bool: False if the book does not exist.

        Raises:
            BookCurrentlyBorrowedError
        """
        logger.info("removeBook called | isbn=%s", isbn)

        with self.store.books.lock(isbn):
            if not self.store.books.exists(isbn):
                logger.warning("Book not found for removal | isbn=%s", isbn)
                return False
            self._require_no_open_loans(isbn)
            self.store.books.delete(isbn)

        logger.info("Book removed successfully | isbn=%s", isbn)
        self._publish(EventKind.BOOK_REMOVED, f"Book {isbn} removed", isbn)
        return True

    # Lending
    def borrowBook(
        self,
        memberId: str,
        isbn: str,
        due_date: Optional[date] = None,
        borrow_date: Optional[date] = None,
    ) -> LoanRecord:
        return self.lending.borrowBook(memberId, isbn, due_date=due_date, borrow_date=borrow_date)

    def returnBook(self, memberId: str, isbn: str, return_date: Optional[date] = None) -> bool:
        return self.lending.returnBook(memberId, isbn, return_date=return_date)

    def extendDueDate(self, loanId: str, additional_days: int = LendingEngine.DEFAULT_EXTENSION_DAYS) -> bool:
        return self.lending.extendDueDate(loanId, additional_days)

    def getMemberBorrowingHistory(self, memberId: str) -> List[dict]:
        """
        Returns the borrowing history for a member, oldest first.

        Each record includes:
            - loanId
            - isbn
            - borrowDate
            - dueDate
            - returnDate
            - lateFee
        """
        return [
            {
                "loanId": r.loanId,
                "isbn": r.bookIsbn,
                "borrowDate": r.borrowDate,
                "dueDate": r.dueDate,
                "returnDate": r.returnDate,
                "lateFee": r.lateFee,
            }
            for r in self.lending.getMemberLoans(memberId)
        ]

    def getActiveLoans(self) -> List[LoanRecord]:
        return self.lending.getActiveLoans()

    def getOverdueLoans(self) -> List[LoanRecord]:
        return self.lending.getOverdueLoans()

    def getOverdueBooks(self) -> List[OverdueBookInfo]:
        return self.lending.getOverdueBooks()

    def sendOverdueNotices(self, notifier: Optional[Notifier] = None) -> int:
        return self.lending.notifyOverdue(notifier)

    def getLibraryStatistics(self) -> LibraryStatistics:
        return self.statistics.collect()

    # Internal Helpers
    def _set_active(self, memberId: str, active: bool) -> bool:
        with self.store.members.lock(memberId):
            member = self.store.members.get(memberId)
            if member is None:
                logger.warning("Member not found | memberId=%s", memberId)
                return False
            member.active = active
            self.store.members.put(member)
        return True

    def _require_no_open_loans(self, isbn: str) -> None:
        open_loans = [r for r in self.store.loansForBook(isbn) if not r.isReturned()]
        if open_loans:
            logger.warning("Book has open loans | isbn=%s open=%d", isbn, len(open_loans))
            raise BookCurrentlyBorrowedError(isbn, len(open_loans))

    def _publish(self, kind: EventKind, description: str, data: object = None) -> None:
        self.publisher.publish(LibraryEvent(kind, description, data))

    @staticmethod
    def _require_text(value: str, name: str) -> None:
        if not isinstance(value, str) or not value.strip():
            raise ValidationError(name, f"{name} cannot be empty")

    @staticmethod
    def _require_email(email: str) -> None:
        if not isinstance(email, str) or "@" not in email:
            raise ValidationError("email", "a valid email is required")

    def _require_past_date(self, d: date, name: str) -> None:
        """
        Validates that the value is a datetime.date not later than today.
        """
        if not isinstance(d, date):
            raise ValidationError(name, f"{name} must be a datetime.date")
        if d > self._clock():
            raise ValidationError(name, f"{name} cannot be in the future")

    @staticmethod
    def _require_positive(n: int, name: str) -> None:
        if not isinstance(n, int) or isinstance(n, bool) or n <= 0:
            raise ValidationError(name, f"{name} must be positive")


# Main Program
def main() -> None:
    """
    Main driver program that demonstrates the lending operations.

    Demonstrated scenarios:
        - adding books and registering members
        - successful borrows
        - borrow rule violations
            * book not available
            * tier borrowing limit
            * inactive member
        - returning books, late fees with a paid tier
        - overdue report and notices
        - statistics
    """
    print("\n=== Library Lending Demo ===\n")

    today = date(2025, 1, 20)
    rules = {MembershipTier.PREMIUM: TierRules("Premium", 5, 21, Decimal("0.50"))}
    library = Library(tier_rules=rules, clock=lambda: today)
    library.publisher.subscribe(lambda e: print(f"  [event] {e.kind}: {e.description}"))

    for isbn, title, author, copies in [
        ("111", "Clean Code", "Robert C. Martin", 1),
        ("222", "Design Patterns", "GoF", 2),
        ("333", "Effective Java", "Joshua Bloch", 1),
        ("444", "Refactoring", "Martin Fowler", 1),
    ]:
        library.addBook(isbn, title, author, "Demo Press", date(2008, 8, 1), BookCategory.TECHNOLOGY, copies)

    ana = library.registerMember(
        "Ana", "Tamm", "ana@example.com", date(1990, 5, 4), "Pikk 1", "Tallinn", "10123", "Estonia"
    )
    mart = library.registerMember(
        "Mart", "Kask", "mart@example.com", date(1985, 2, 11), "Lai 7", "Tartu", "50090", "Estonia",
        tier=MembershipTier.PREMIUM,
    )

    print("\nBorrowing up to the BASIC limit for Ana...")
    for isbn in ("111", "222", "333"):
        library.borrowBook(ana.memberId, isbn, borrow_date=date(2025, 1, 1))

    print("\nAttempting a 4th borrow (should fail)...")
    try:
        library.borrowBook(ana.memberId, "444", borrow_date=date(2025, 1, 1))
    except LibraryError as e:
        print("Expected violation:", e)

    print("\nAttempting to borrow the only copy of 111 (should fail)...")
    try:
        library.borrowBook(mart.memberId, "111", borrow_date=date(2025, 1, 1))
    except LibraryError as e:
        print("Expected violation:", e)

    loan = library.borrowBook(mart.memberId, "222", borrow_date=date(2025, 1, 1), due_date=date(2025, 1, 10))

    print("\nOverdue report:")
    for info in library.getOverdueBooks():
        print(info.formattedInfo())

    notifier = CollectingNotifier()
    print("\nNotices delivered:", library.sendOverdueNotices(notifier))

    print("\nReturning Mart's loan late...")
    library.returnBook(mart.memberId, "222")
    print("Late fee:", library.store.loans.get(loan.loanId).lateFee)

    library.deactivateMember(mart.memberId)
    try:
        library.borrowBook(mart.memberId, "444")
    except LibraryError as e:
        print("Expected violation:", e)

    print()
    print(library.getLibraryStatistics().summary())
    print("\n=== Demo Completed ===\n")


if __name__ == "__main__":
    try:
        main()
    except LibraryError as e:
        logger.error("LibraryError bubbled to top-level | %s", e)
        raise
    except Exception as e:
        logger.exception("Unhandled fatal error | %s", e)
        raise
