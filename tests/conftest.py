import asyncio

import pytest
from eth_utils import keccak, to_checksum_address

from ballotproof import config
from ballotproof.ledger import LocalLedgerClient
from ballotproof.metrics import metrics
from ballotproof.registry import BallotRegistry
from ballotproof.store import WhitelistStore


def make_address(i: int) -> str:
    """Deterministic checksum address for test voter ``i``."""
    return to_checksum_address(keccak(text=f"voter-{i}")[-20:])


class FlakyLedgerClient(LocalLedgerClient):
    """Local ledger whose root pushes can fail or be held back."""

    def __init__(self, registry, failures: int = 0, error: Exception | None = None):
        super().__init__(registry)
        self.failures = failures
        self.error = error or ConnectionError("ledger unreachable")
        self.push_calls = 0
        self.gate = asyncio.Event()
        self.gate.set()

    async def update_merkle_root(self, ballot_id, new_root):
        self.push_calls += 1
        await self.gate.wait()
        if self.failures > 0:
            self.failures -= 1
            raise self.error
        await super().update_merkle_root(ballot_id, new_root)


@pytest.fixture(autouse=True)
def reset_ballotproof_state():
    """Reset config and metrics between every test."""
    config.reload()
    metrics.reset()
    yield
    metrics.reset()
    config.reload()


@pytest.fixture
def voters():
    return [make_address(i) for i in range(8)]


@pytest.fixture
def db_path(tmp_path):
    return str(tmp_path / "ballotproof_test.db")


@pytest.fixture
def registry():
    return BallotRegistry()


@pytest.fixture
async def store(db_path):
    s = WhitelistStore(db_path)
    await s.connect()
    yield s
    await s.close()


@pytest.fixture
def ledger(registry):
    return FlakyLedgerClient(registry)
