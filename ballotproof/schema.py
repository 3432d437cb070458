"""
BALLOTPROOF — SQLite Schema Definitions.

Whitelist entries are the source of truth for every Merkle tree; the root
outbox tracks pushes of rebuilt roots to the ledger.
"""

SCHEMA_VERSION = "1.0.0"

# ─── Whitelist (append-only) ─────────────────────────────────────────
CREATE_WHITELIST = """
CREATE TABLE IF NOT EXISTS whitelist_entries (
    id          INTEGER PRIMARY KEY AUTOINCREMENT,
    ballot_id   INTEGER NOT NULL,
    identity    TEXT NOT NULL,
    added_at    TEXT NOT NULL DEFAULT (datetime('now')),
    UNIQUE (ballot_id, identity)
);
"""

CREATE_WHITELIST_INDEXES = """
CREATE INDEX IF NOT EXISTS idx_whitelist_ballot ON whitelist_entries(ballot_id);
"""

# ─── Root Push Outbox (ledger consistency) ───────────────────────────
CREATE_ROOT_OUTBOX = """
CREATE TABLE IF NOT EXISTS root_outbox (
    id           INTEGER PRIMARY KEY AUTOINCREMENT,
    ballot_id    INTEGER NOT NULL,
    root         TEXT NOT NULL,
    status       TEXT NOT NULL DEFAULT 'pending', -- pending, confirmed, failed, superseded
    attempts     INTEGER DEFAULT 0,
    last_error   TEXT,
    created_at   TEXT NOT NULL DEFAULT (datetime('now')),
    processed_at TEXT
);
"""

CREATE_ROOT_OUTBOX_INDEXES = """
CREATE INDEX IF NOT EXISTS idx_root_outbox_status ON root_outbox(status);
CREATE INDEX IF NOT EXISTS idx_root_outbox_ballot ON root_outbox(ballot_id);
"""

CREATE_META = """
CREATE TABLE IF NOT EXISTS ballotproof_meta (
    key     TEXT PRIMARY KEY,
    value   TEXT
);
"""

# ─── All statements in order ─────────────────────────────────────────
ALL_SCHEMA = [
    CREATE_WHITELIST,
    CREATE_WHITELIST_INDEXES,
    CREATE_ROOT_OUTBOX,
    CREATE_ROOT_OUTBOX_INDEXES,
    CREATE_META,
]


def get_init_meta() -> list[tuple[str, str]]:
    """Return initial metadata key-value pairs."""
    return [
        ("schema_version", SCHEMA_VERSION),
        ("created_by", "ballotproof-init"),
    ]
