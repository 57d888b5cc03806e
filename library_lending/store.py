"""
Thread-safe in-memory storage for members, books and loan records.

Each table keeps private deep copies of the entities it holds and hands out
copies on read, so a reader always sees a whole entity as it was last put.
The table lock only guards the dictionary itself and is never held while
copying, so a put waits at most for another thread's single dict operation.
The per-key locks returned by ``EntityTable.lock`` are for callers that run
read-modify-write sequences on a single entity.
"""

from __future__ import annotations

import copy
import threading
import weakref
from typing import Callable, Dict, Generic, List, Optional, TypeVar

from library_lending.log import get_logger
from library_lending.models import Book, LoanRecord, Member

logger = get_logger("store")

E = TypeVar("E")


class EntityTable(Generic[E]):
    """Keyed table of one entity type."""

    def __init__(self, name: str, key: Callable[[E], str]) -> None:
        self.name = name
        self._key = key
        self._rows: Dict[str, E] = {}
        self._guard = threading.Lock()
        # an entry lives only while some caller still references the lock
        self._key_locks: weakref.WeakValueDictionary[str, threading.RLock] = weakref.WeakValueDictionary()

    def put(self, entity: E) -> None:
        """
        Inserts or replaces the entity under its natural key.

        The copy is taken before the table lock, which covers only the slot
        assignment. Puts on different keys never wait on each other's copies.
        """
        snapshot = copy.deepcopy(entity)
        key = self._key(snapshot)
        with self._guard:
            self._rows[key] = snapshot
        logger.debug("put | table=%s key=%s", self.name, key)

    def putIfAbsent(self, entity: E) -> bool:
        """
        Inserts the entity only if its key is not taken yet.

        Returns:
            bool: False (and nothing stored) if the key already exists.
        """
        snapshot = copy.deepcopy(entity)
        key = self._key(snapshot)
        with self._guard:
            if key in self._rows:
                return False
            self._rows[key] = snapshot
        logger.debug("insert | table=%s key=%s", self.name, key)
        return True

    def get(self, key: str) -> Optional[E]:
        with self._guard:
            row = self._rows.get(key)
        if row is None:
            return None
        return copy.deepcopy(row)

    def list(self) -> List[E]:
        with self._guard:
            rows = list(self._rows.values())
        return [copy.deepcopy(r) for r in rows]

    def delete(self, key: str) -> None:
        with self._guard:
            removed = self._rows.pop(key, None)
        if removed is not None:
            logger.debug("delete | table=%s key=%s", self.name, key)

    def exists(self, key: str) -> bool:
        with self._guard:
            return key in self._rows

    def count(self) -> int:
        with self._guard:
            return len(self._rows)

    def lock(self, key: str) -> threading.RLock:
        """
        Returns the re-entrant lock that serializes updates to one key.

        Every caller asking for the same key while the lock is referenced gets
        the same object. Once nobody holds it the entry is dropped, so probing
        keys that never exist does not grow the table.
        """
        with self._guard:
            lk = self._key_locks.get(key)
            if lk is None:
                lk = threading.RLock()
                self._key_locks[key] = lk
            return lk


class EntityStore:
    """
    Holds the three entity tables. No business rules live here.
    """

    def __init__(self) -> None:
        self.members: EntityTable[Member] = EntityTable("members", lambda m: m.memberId)
        self.books: EntityTable[Book] = EntityTable("books", lambda b: b.isbn)
        self.loans: EntityTable[LoanRecord] = EntityTable("loans", lambda r: r.loanId)

    # Query helpers
    def loansForMember(self, memberId: str) -> List[LoanRecord]:
        return [r for r in self.loans.list() if r.memberId == memberId]

    def loansForBook(self, isbn: str) -> List[LoanRecord]:
        return [r for r in self.loans.list() if r.bookIsbn == isbn]

    def openLoans(self) -> List[LoanRecord]:
        return [r for r in self.loans.list() if not r.isReturned()]
