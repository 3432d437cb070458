"""
BALLOTPROOF — Ledger Event Log.

Append-only record of everything the registry commits, consumed by
indexers and result pages.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import List, Tuple, Union


@dataclass(frozen=True)
class BallotCreated:
    ballot_id: int
    proposal_names: Tuple[str, ...]


@dataclass(frozen=True)
class VoteCast:
    ballot_id: int
    identity: str
    proposal_index: int


@dataclass(frozen=True)
class BallotClosed:
    ballot_id: int


@dataclass(frozen=True)
class MerkleRootUpdated:
    ballot_id: int
    merkle_root: bytes


LedgerEvent = Union[BallotCreated, VoteCast, BallotClosed, MerkleRootUpdated]


class EventLog:
    """Ordered, append-only event list. Readers page through it by offset."""

    def __init__(self):
        self._events: List[LedgerEvent] = []
        self._lock = threading.Lock()

    def append(self, event: LedgerEvent) -> int:
        """Append an event and return its offset."""
        with self._lock:
            self._events.append(event)
            return len(self._events) - 1

    def since(self, offset: int = 0) -> List[LedgerEvent]:
        with self._lock:
            return list(self._events[max(offset, 0):])

    def of_type(self, event_type: type) -> List[LedgerEvent]:
        with self._lock:
            return [e for e in self._events if isinstance(e, event_type)]

    def __len__(self) -> int:
        return len(self._events)
