from __future__ import annotations

from enum import Enum
from typing import Optional


class ErrorKind(str, Enum):
    MEMBER_NOT_FOUND = "MEMBER_NOT_FOUND"
    BOOK_NOT_FOUND = "BOOK_NOT_FOUND"
    LOAN_NOT_FOUND = "LOAN_NOT_FOUND"
    MEMBERSHIP_INVALID = "MEMBERSHIP_INVALID"
    BORROW_LIMIT_EXCEEDED = "BORROW_LIMIT_EXCEEDED"
    BOOK_NOT_AVAILABLE = "BOOK_NOT_AVAILABLE"
    BOOK_CURRENTLY_BORROWED = "BOOK_CURRENTLY_BORROWED"
    DUPLICATE_BOOK = "DUPLICATE_BOOK"
    DUPLICATE_ID = "DUPLICATE_ID"
    VALIDATION = "VALIDATION"


class LibraryError(Exception):
    """Base exception for library system errors."""

    kind: ErrorKind

    def __init__(self, message: str, details: Optional[str] = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details

    def __str__(self) -> str:
        text = f"[{self.kind.value}] {self.message}"
        if self.details:
            text += f" - {self.details}"
        return text


class MemberNotFoundError(LibraryError):
    """Requested memberId does not exist in the library."""

    kind = ErrorKind.MEMBER_NOT_FOUND

    def __init__(self, memberId: str) -> None:
        super().__init__("Member not found", f"memberId={memberId}")
        self.memberId = memberId


class BookNotFoundError(LibraryError):
    """Requested ISBN does not exist in the library."""

    kind = ErrorKind.BOOK_NOT_FOUND

    def __init__(self, isbn: str) -> None:
        super().__init__("Book not found", f"isbn={isbn}")
        self.isbn = isbn


class LoanNotFoundError(LibraryError):
    """Requested loan id does not exist in the library."""

    kind = ErrorKind.LOAN_NOT_FOUND

    def __init__(self, loanId: str) -> None:
        super().__init__("Loan record not found", f"loanId={loanId}")
        self.loanId = loanId


class MembershipInvalidError(LibraryError):
    """Member exists but may not open new loans (e.g. deactivated)."""

    kind = ErrorKind.MEMBERSHIP_INVALID

    def __init__(self, memberId: str, reason: str) -> None:
        super().__init__("Membership is not valid for borrowing", f"memberId={memberId}, reason={reason}")
        self.memberId = memberId
        self.reason = reason


class BorrowLimitExceededError(LibraryError):
    """Member already holds the maximum number of open loans for their tier."""

    kind = ErrorKind.BORROW_LIMIT_EXCEEDED

    def __init__(self, memberId: str, current: int, maximum: int) -> None:
        super().__init__(
            "Member borrowing limit exceeded",
            f"memberId={memberId}, current={current}, max={maximum}",
        )
        self.memberId = memberId
        self.current = current
        self.maximum = maximum


class BookNotAvailableError(LibraryError):
    """Book has no copy that can be lent out right now."""

    kind = ErrorKind.BOOK_NOT_AVAILABLE

    def __init__(self, isbn: str, status: object = None) -> None:
        super().__init__("Book is not available for borrowing", f"isbn={isbn}, status={status}")
        self.isbn = isbn
        self.status = status


class BookCurrentlyBorrowedError(LibraryError):
    """Book has open loans and cannot be removed or taken out of circulation."""

    kind = ErrorKind.BOOK_CURRENTLY_BORROWED

    def __init__(self, isbn: str, openLoans: int) -> None:
        super().__init__("Book is currently borrowed", f"isbn={isbn}, openLoans={openLoans}")
        self.isbn = isbn
        self.openLoans = openLoans


class DuplicateBookError(LibraryError):
    """Trying to add a book that already exists."""

    kind = ErrorKind.DUPLICATE_BOOK

    def __init__(self, isbn: str) -> None:
        super().__init__("Book already exists", f"isbn={isbn}")
        self.isbn = isbn


class DuplicateIdError(LibraryError):
    """Generated id is already taken by a stored entity of the same kind."""

    kind = ErrorKind.DUPLICATE_ID

    def __init__(self, entity: str, entityId: str) -> None:
        super().__init__("Generated id already in use", f"entity={entity}, id={entityId}")
        self.entity = entity
        self.entityId = entityId


class ValidationError(LibraryError, ValueError):
    """Malformed input to a create/update operation."""

    kind = ErrorKind.VALIDATION

    def __init__(self, field: str, message: str) -> None:
        super().__init__(message, f"field={field}")
        self.field = field
