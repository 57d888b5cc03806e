from __future__ import annotations

import copy
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Callable, Dict, List, Optional

from library_lending.events import EventKind, EventPublisher, LibraryEvent, Notifier
from library_lending.exceptions import (
    BookNotAvailableError,
    BookNotFoundError,
    BorrowLimitExceededError,
    DuplicateIdError,
    LoanNotFoundError,
    MemberNotFoundError,
    MembershipInvalidError,
    ValidationError,
)
from library_lending.ids import IdGenerator
from library_lending.log import get_logger
from library_lending.models import Book, LoanRecord, Member, MembershipTier, TierRules
from library_lending.store import EntityStore

logger = get_logger("lending")


@dataclass(frozen=True)
class OverdueBookInfo:
    book: Book
    member: Member
    loan: LoanRecord
    daysOverdue: int

    def formattedInfo(self) -> str:
        return (
            f"Book: {self.book.title} by {self.book.author} (ISBN: {self.book.isbn})\n"
            f"Borrowed by: {self.member.fullName()} (ID: {self.member.memberId})\n"
            f"Due Date: {self.loan.dueDate}\n"
            f"Days Overdue: {self.daysOverdue}"
        )


class LendingEngine:
    """
    Opens and closes loans. No other component creates or closes LoanRecords.

    Rules enforced:
        (1) Inactive members cannot borrow
        (2) Open loans per member are capped by the member's tier
        (3) A copy must be available; the last copy flips the book to BORROWED
        (4) Late fee = overdue days x tier fee per day, fixed once at return

    Locking: borrow and return hold the member's key lock and then the book's
    key lock for the whole check-and-persist sequence. Every loan mutation
    happens under its member's lock.
    """

    DEFAULT_EXTENSION_DAYS = 7

    def __init__(
        self,
        store: EntityStore,
        id_generator: IdGenerator,
        publisher: Optional[EventPublisher] = None,
        tier_rules: Optional[Dict[MembershipTier, TierRules]] = None,
        clock: Callable[[], date] = date.today,
    ) -> None:
        self.store = store
        self._ids = id_generator
        self._publisher = publisher
        self._tier_rules = dict(tier_rules or {})
        self._clock = clock

    def rulesFor(self, tier: MembershipTier) -> TierRules:
        return self._tier_rules.get(tier, tier.rules)

    def today(self) -> date:
        return self._clock()

    # Transactions
    def borrowBook(
        self,
        memberId: str,
        isbn: str,
        due_date: Optional[date] = None,
        borrow_date: Optional[date] = None,
    ) -> LoanRecord:
        """
        Lends one copy of a book to a member.

        due_date defaults to borrow_date plus the tier's maxBorrowingDays.

        Raises:
            MemberNotFoundError
            MembershipInvalidError
            BookNotFoundError
            BorrowLimitExceededError
            BookNotAvailableError
            ValidationError: due_date before borrow_date.
            DuplicateIdError: the generated loan id is already stored.
        """
        logger.info("borrowBook called | memberId=%s isbn=%s", memberId, isbn)

        with self.store.members.lock(memberId):
            member = self.store.members.get(memberId)
            if member is None:
                raise MemberNotFoundError(memberId)
            if not member.active:
                logger.warning("Inactive member attempted to borrow | memberId=%s", memberId)
                raise MembershipInvalidError(memberId, "member is not active")

            with self.store.books.lock(isbn):
                book = self.store.books.get(isbn)
                if book is None:
                    raise BookNotFoundError(isbn)

                if borrow_date is None:
                    borrow_date = self._clock()
                if due_date is not None and due_date < borrow_date:
                    raise ValidationError("dueDate", "due date cannot be before the borrow date")

                rules = self.rulesFor(member.tier)
                if not member.canBorrowMore(self.store.loans.get, rules):
                    current = member.currentBorrowedCount(self.store.loans.get)
                    logger.warning(
                        "Borrow limit reached | memberId=%s current=%d max=%d",
                        memberId, current, rules.maxBorrowedBooks,
                    )
                    raise BorrowLimitExceededError(memberId, current, rules.maxBorrowedBooks)

                shelved = copy.deepcopy(book)
                if not book.markBorrowed():
                    logger.warning("Book not available | isbn=%s status=%s", isbn, book.status.name)
                    raise BookNotAvailableError(isbn, book.status)

                if due_date is None:
                    due_date = borrow_date + timedelta(days=rules.maxBorrowingDays)

                loan = LoanRecord(
                    loanId=self._ids.generateLoanId(),
                    memberId=memberId,
                    bookIsbn=isbn,
                    borrowDate=borrow_date,
                    dueDate=due_date,
                )

                # book first: a crash after this leaves the copy out, never a phantom copy
                self.store.books.put(book)
                if not self.store.loans.putIfAbsent(loan):
                    self.store.books.put(shelved)
                    logger.error("Generated loan id already stored | loanId=%s", loan.loanId)
                    raise DuplicateIdError("loan", loan.loanId)
                member.addLoan(loan.loanId)
                self.store.members.put(member)

        logger.info("Borrow successful | loanId=%s memberId=%s isbn=%s due=%s", loan.loanId, memberId, isbn, due_date)
        self._publish(
            EventKind.BOOK_BORROWED,
            f"{member.fullName()} borrowed '{book.title}' (due {due_date})",
            loan,
        )
        return loan

    def returnBook(self, memberId: str, isbn: str, return_date: Optional[date] = None) -> bool:
        """
        Closes the member's earliest open loan for the book.

        Returns:
            bool: False if the member has no open loan for this book.

        Raises:
            ValidationError: return_date before the loan's borrow date.
        """
        logger.info("returnBook called | memberId=%s isbn=%s", memberId, isbn)

        if return_date is None:
            return_date = self._clock()

        with self.store.members.lock(memberId):
            with self.store.books.lock(isbn):
                member = self.store.members.get(memberId)
                loan = self._find_open_loan(member, memberId, isbn)
                if loan is None:
                    logger.warning("No open loan to return | memberId=%s isbn=%s", memberId, isbn)
                    return False
                if return_date < loan.borrowDate:
                    raise ValidationError("returnDate", "return date cannot be before the borrow date")

                tier = member.tier if member is not None else MembershipTier.BASIC
                loan.close(return_date, self.rulesFor(tier).lateFeePerDay)

                book = self.store.books.get(isbn)
                credited = book is not None and book.markReturned()
                if book is not None and not credited:
                    logger.warning(
                        "Return did not credit a copy, all copies already available | isbn=%s loanId=%s",
                        isbn, loan.loanId,
                    )

                self.store.loans.put(loan)
                if credited:
                    self.store.books.put(book)

        logger.info("Return successful | loanId=%s lateFee=%s", loan.loanId, loan.lateFee)
        self._publish(
            EventKind.BOOK_RETURNED,
            f"Loan {loan.loanId} for isbn {isbn} returned on {return_date}",
            loan,
        )
        return True

    def extendDueDate(self, loanId: str, additional_days: int) -> bool:
        """
        Pushes an open loan's due date forward.

        Returns:
            bool: False if the loan is closed or additional_days is not positive.

        Raises:
            LoanNotFoundError
        """
        logger.info("extendDueDate called | loanId=%s days=%s", loanId, additional_days)

        loan = self.store.loans.get(loanId)
        if loan is None:
            raise LoanNotFoundError(loanId)

        with self.store.members.lock(loan.memberId):
            loan = self.store.loans.get(loanId)
            if loan is None:
                raise LoanNotFoundError(loanId)
            if not loan.extendDueDate(additional_days):
                logger.warning("Extension refused | loanId=%s returned=%s", loanId, loan.isReturned())
                return False
            self.store.loans.put(loan)

        logger.info("Extension successful | loanId=%s due=%s", loanId, loan.dueDate)
        return True

    # Queries
    def isOverdue(self, loan: LoanRecord) -> bool:
        return loan.isOverdue(self._clock())

    def overdueDays(self, loan: LoanRecord) -> int:
        return loan.overdueDays(self._clock())

    def getMemberLoans(self, memberId: str) -> List[LoanRecord]:
        """
        Returns every loan the member ever opened, oldest first.

        Raises:
            MemberNotFoundError
        """
        member = self.store.members.get(memberId)
        if member is None:
            raise MemberNotFoundError(memberId)
        loans = []
        for loanId in member.loanIds:
            loan = self.store.loans.get(loanId)
            if loan is not None:
                loans.append(loan)
        return loans

    def getActiveLoans(self) -> List[LoanRecord]:
        return self.store.openLoans()

    def getOverdueLoans(self) -> List[LoanRecord]:
        today = self._clock()
        return [r for r in self.store.openLoans() if r.isOverdue(today)]

    def getOverdueBooks(self) -> List[OverdueBookInfo]:
        today = self._clock()
        infos = []
        for loan in self.getOverdueLoans():
            book = self.store.books.get(loan.bookIsbn)
            member = self.store.members.get(loan.memberId)
            if book is None or member is None:
                continue
            infos.append(OverdueBookInfo(book, member, loan, loan.overdueDays(today)))
        return infos

    def notifyOverdue(self, notifier: Optional[Notifier] = None) -> int:
        """
        Publishes an overdue event per overdue loan and notifies the borrower.

        Returns:
            int: Number of notifications the notifier reported as delivered.
        """
        delivered = 0
        for info in self.getOverdueBooks():
            message = (
                f"'{info.book.title}' was due on {info.loan.dueDate} "
                f"and is {info.daysOverdue} day(s) overdue."
            )
            self._publish(EventKind.OVERDUE_NOTIFICATION, message, info.loan)
            if notifier is None:
                continue
            try:
                if notifier.notify(info.member, message):
                    delivered += 1
            except Exception as e:
                logger.exception("Notifier failed | memberId=%s | %s", info.member.memberId, e)
        logger.info("Overdue notices sent | delivered=%d", delivered)
        return delivered

    # Internal Helpers
    def _find_open_loan(self, member: Optional[Member], memberId: str, isbn: str) -> Optional[LoanRecord]:
        """
        Earliest borrowed open loan for (member, isbn); member order breaks ties.
        """
        if member is not None:
            loans = (self.store.loans.get(loanId) for loanId in member.loanIds)
        else:
            # member record is gone, fall back to scanning the loan table
            loans = self.store.loansForMember(memberId)

        earliest = None
        for loan in loans:
            if loan is None or loan.bookIsbn != isbn or loan.isReturned():
                continue
            if earliest is None or loan.borrowDate < earliest.borrowDate:
                earliest = loan
        return earliest

    def _publish(self, kind: EventKind, description: str, data: object = None) -> None:
        if self._publisher is None:
            return
        self._publisher.publish(LibraryEvent(kind, description, data))
