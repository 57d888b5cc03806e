from library_lending.events import CollectingNotifier, EventKind, EventPublisher, LibraryEvent, Notifier
from library_lending.exceptions import (
    BookCurrentlyBorrowedError,
    BookNotAvailableError,
    BookNotFoundError,
    BorrowLimitExceededError,
    DuplicateBookError,
    DuplicateIdError,
    ErrorKind,
    LibraryError,
    LoanNotFoundError,
    MemberNotFoundError,
    MembershipInvalidError,
    ValidationError,
)
from library_lending.ids import IdGenerator
from library_lending.lending import LendingEngine, OverdueBookInfo
from library_lending.library_system import Library
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
from library_lending.store import EntityStore, EntityTable

__version__ = "0.1.0"
