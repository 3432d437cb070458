"""
BALLOTPROOF — Ledger Client.

Async boundary between off-ledger services and the ballot registry. Root
pushes go through here and may be slow or fail; callers must not hold any
rebuild lock while awaiting them.
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from typing import Sequence

from ballotproof.registry import BallotInfo, BallotRegistry


class LedgerClient(ABC):
    """Operations the off-ledger services need from the ledger."""

    @abstractmethod
    async def create_ballot(self, merkle_root: bytes, proposal_names: Sequence[str]) -> int: ...

    @abstractmethod
    async def update_merkle_root(self, ballot_id: int, new_root: bytes) -> None: ...

    @abstractmethod
    async def close_ballot(self, ballot_id: int) -> None: ...

    @abstractmethod
    async def get_merkle_root(self, ballot_id: int) -> bytes: ...

    @abstractmethod
    async def get_ballot(self, ballot_id: int) -> BallotInfo: ...

    @abstractmethod
    async def ballot_count(self) -> int: ...


class LocalLedgerClient(LedgerClient):
    """Ledger client backed by an in-process ``BallotRegistry``.

    Registry calls take a threading lock, so they run in a worker thread to
    keep the event loop free.
    """

    def __init__(self, registry: BallotRegistry, sender: str | None = None):
        self.registry = registry
        self.sender = sender

    async def create_ballot(self, merkle_root: bytes, proposal_names: Sequence[str]) -> int:
        return await asyncio.to_thread(
            self.registry.create_ballot, merkle_root, list(proposal_names), self.sender
        )

    async def update_merkle_root(self, ballot_id: int, new_root: bytes) -> None:
        await asyncio.to_thread(self.registry.update_merkle_root, ballot_id, new_root, self.sender)

    async def close_ballot(self, ballot_id: int) -> None:
        await asyncio.to_thread(self.registry.close_ballot, ballot_id, self.sender)

    async def get_merkle_root(self, ballot_id: int) -> bytes:
        return self.registry.get_merkle_root(ballot_id)

    async def get_ballot(self, ballot_id: int) -> BallotInfo:
        return self.registry.get_ballot(ballot_id)

    async def ballot_count(self) -> int:
        return self.registry.ballot_count
