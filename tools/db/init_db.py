#!/usr/bin/env python3
"""Initialize the proposal database with all required tables.

Creates tables for:
  - Catalog (sustainable products with per-unit impact metrics)
  - AI interaction log (append-only prompt/response audit trail)
  - Proposals (verified, budget-compliant proposals with provenance)

Usage:
    python tools/db/init_db.py [--json] [--db-path PATH]
"""

import json
import sqlite3
import sys
from datetime import datetime, timezone
from pathlib import Path

BASE_DIR = Path(__file__).resolve().parent.parent.parent
sys.path.insert(0, str(BASE_DIR))

from tools.config import resolve_db_path  # noqa: E402


SCHEMA_SQL = """
-- ============================================================
-- CATALOG
-- ============================================================

-- Canonical product catalog; the pipeline only ever reads it
CREATE TABLE IF NOT EXISTS products (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    category TEXT NOT NULL,
    unit_price REAL NOT NULL CHECK(unit_price >= 0),
    plastic_saved_per_unit REAL NOT NULL DEFAULT 0
        CHECK(plastic_saved_per_unit >= 0),
    carbon_avoided_per_unit REAL NOT NULL DEFAULT 0
        CHECK(carbon_avoided_per_unit >= 0),
    created_at TEXT NOT NULL DEFAULT (datetime('now'))
);

CREATE INDEX IF NOT EXISTS idx_products_category ON products(category);

-- ============================================================
-- AI INTERACTION LOG (append-only, no UPDATE/DELETE)
-- ============================================================

CREATE TABLE IF NOT EXISTS ai_logs (
    id TEXT PRIMARY KEY,
    system_prompt TEXT NOT NULL,
    user_prompt TEXT NOT NULL,
    raw_response TEXT NOT NULL,
    module TEXT NOT NULL,
    module_version TEXT NOT NULL,
    model_id TEXT,
    created_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_ai_logs_created ON ai_logs(created_at);

CREATE TRIGGER IF NOT EXISTS trg_ai_logs_no_update
BEFORE UPDATE ON ai_logs
BEGIN
    SELECT RAISE(ABORT, 'ai_logs is append-only');
END;

CREATE TRIGGER IF NOT EXISTS trg_ai_logs_no_delete
BEFORE DELETE ON ai_logs
BEGIN
    SELECT RAISE(ABORT, 'ai_logs is append-only');
END;

-- ============================================================
-- PROPOSALS
-- ============================================================

CREATE TABLE IF NOT EXISTS proposals (
    id TEXT PRIMARY KEY,
    client_name TEXT NOT NULL DEFAULT '',
    proposal_summary TEXT NOT NULL,
    total_budget_limit REAL NOT NULL CHECK(total_budget_limit >= 0),
    allocated_budget REAL NOT NULL CHECK(allocated_budget >= 0),
    remaining_budget REAL NOT NULL,
    products TEXT NOT NULL,
    impact_summary TEXT NOT NULL,
    confidence_score REAL NOT NULL
        CHECK(confidence_score BETWEEN 0.0 AND 1.0),
    total_plastic_saved REAL NOT NULL DEFAULT 0,
    total_carbon_avoided REAL NOT NULL DEFAULT 0,
    ai_metadata TEXT NOT NULL,
    created_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_proposals_created ON proposals(created_at);
CREATE INDEX IF NOT EXISTS idx_proposals_client ON proposals(client_name);
"""


def init_db(db_path=None):
    """Initialize the proposal database."""
    path = db_path or str(resolve_db_path())
    db_dir = Path(path).parent
    db_dir.mkdir(parents=True, exist_ok=True)

    conn = sqlite3.connect(str(path))
    conn.execute("PRAGMA journal_mode=WAL")
    conn.execute("PRAGMA foreign_keys=ON")

    conn.executescript(SCHEMA_SQL)
    conn.commit()

    cursor = conn.execute(
        "SELECT COUNT(*) FROM sqlite_master WHERE type='table'"
    )
    table_count = cursor.fetchone()[0]

    cursor = conn.execute(
        "SELECT COUNT(*) FROM sqlite_master WHERE type='index' "
        "AND name NOT LIKE 'sqlite_%'"
    )
    index_count = cursor.fetchone()[0]

    conn.close()

    return {
        "status": "initialized",
        "db_path": str(path),
        "tables": table_count,
        "indexes": index_count,
        "initialized_at": datetime.now(timezone.utc).isoformat(),
    }


if __name__ == "__main__":
    import argparse

    parser = argparse.ArgumentParser(description="Initialize proposal database")
    parser.add_argument("--json", action="store_true", help="JSON output")
    parser.add_argument("--db-path", help="Override database path")
    args = parser.parse_args()

    result = init_db(db_path=args.db_path)

    if args.json:
        print(json.dumps(result, indent=2))
    else:
        print("Proposal database initialized:")
        print(f"  Path:    {result['db_path']}")
        print(f"  Tables:  {result['tables']}")
        print(f"  Indexes: {result['indexes']}")
        print(f"  Time:    {result['initialized_at']}")
