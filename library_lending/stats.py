from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from typing import Callable

from library_lending.log import get_logger
from library_lending.store import EntityStore

logger = get_logger("stats")


@dataclass(frozen=True)
class LibraryStatistics:
    totalMembers: int
    activeMembers: int
    totalBooks: int
    availableBooks: int
    borrowedBooks: int
    totalLoanRecords: int
    openLoans: int
    overdueLoans: int
    generatedAt: date

    @property
    def utilization(self) -> float:
        if self.totalBooks == 0:
            return 0.0
        return self.borrowedBooks / self.totalBooks

    @property
    def memberActivityRate(self) -> float:
        if self.totalMembers == 0:
            return 0.0
        return self.activeMembers / self.totalMembers

    def summary(self) -> str:
        return "\n".join(
            [
                f"Library Statistics (Generated: {self.generatedAt})",
                f"Members: {self.totalMembers} total, {self.activeMembers} active "
                f"({self.memberActivityRate * 100:.1f}% activity rate)",
                f"Books: {self.totalBooks} total, {self.availableBooks} available, "
                f"{self.borrowedBooks} borrowed ({self.utilization * 100:.1f}% utilization)",
                f"Loans: {self.totalLoanRecords} total, {self.openLoans} open, {self.overdueLoans} overdue",
            ]
        )


class StatisticsAggregator:
    """
    Read-only summary counts over the store, evaluated at call time.
    """

    def __init__(self, store: EntityStore, clock: Callable[[], date] = date.today) -> None:
        self.store = store
        self._clock = clock

    def collect(self) -> LibraryStatistics:
        today = self._clock()
        members = self.store.members.list()
        books = self.store.books.list()
        loans = self.store.loans.list()

        available = sum(1 for b in books if b.isAvailable())
        open_loans = [r for r in loans if not r.isReturned()]

        stats = LibraryStatistics(
            totalMembers=len(members),
            activeMembers=sum(1 for m in members if m.active),
            totalBooks=len(books),
            availableBooks=available,
            borrowedBooks=len(books) - available,
            totalLoanRecords=len(loans),
            openLoans=len(open_loans),
            overdueLoans=sum(1 for r in open_loans if r.isOverdue(today)),
            generatedAt=today,
        )
        logger.debug("Statistics collected | %s", stats)
        return stats
