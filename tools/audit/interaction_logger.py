#!/usr/bin/env python3
"""Interaction Logger: append-only record of every AI provider round.

Each raw prompt/response pair is written to the ai_logs table before the
response is parsed. A failed write raises InteractionLogError and aborts
the request; nothing here retries or suppresses. The table has no
UPDATE/DELETE path (triggers in init_db enforce it).

Usage:
    python tools/audit/interaction_logger.py --recent 10 --json
"""

import argparse
import json
import logging
import sqlite3
import sys
from datetime import datetime, timezone
from pathlib import Path
from uuid import uuid4

BASE_DIR = Path(__file__).resolve().parent.parent.parent
sys.path.insert(0, str(BASE_DIR))

from tools.config import resolve_db_path  # noqa: E402
from tools.proposal.errors import InteractionLogError  # noqa: E402
from tools.proposal.models import InteractionLogEntry  # noqa: E402

logger = logging.getLogger("ecoproposal.audit.interactions")


class InteractionLogger:
    """Writes InteractionLogEntry rows to ai_logs."""

    def __init__(self, db_path=None):
        self.db_path = db_path

    def record(self, system_prompt: str, user_prompt: str, raw_response: str,
               module_name: str, module_version: str,
               model_id: str = "") -> InteractionLogEntry:
        """Append one provider round. Returns the stored entry."""
        entry = InteractionLogEntry(
            id=str(uuid4()),
            system_prompt=system_prompt,
            user_prompt=user_prompt,
            raw_response=raw_response,
            module=module_name,
            module_version=module_version,
            model_id=model_id,
            created_at=datetime.now(timezone.utc).isoformat(),
        )

        try:
            conn = sqlite3.connect(str(self.db_path or resolve_db_path()))
            try:
                conn.execute(
                    """INSERT INTO ai_logs
                       (id, system_prompt, user_prompt, raw_response,
                        module, module_version, model_id, created_at)
                       VALUES (?, ?, ?, ?, ?, ?, ?, ?)""",
                    (entry.id, entry.system_prompt, entry.user_prompt,
                     entry.raw_response, entry.module, entry.module_version,
                     entry.model_id, entry.created_at),
                )
                conn.commit()
            finally:
                conn.close()
        except sqlite3.Error as exc:
            logger.error("Interaction log write failed: %s", exc)
            raise InteractionLogError(
                f"Logging failure, proposal aborted: {exc}") from exc

        return entry


def recent_interactions(limit: int = 10, db_path=None) -> list:
    """Return the newest ``limit`` log rows, newest first."""
    conn = sqlite3.connect(str(db_path or resolve_db_path()))
    conn.row_factory = sqlite3.Row
    try:
        rows = conn.execute(
            "SELECT id, module, module_version, model_id, created_at, "
            "length(raw_response) AS response_chars "
            "FROM ai_logs ORDER BY created_at DESC LIMIT ?",
            (limit,),
        ).fetchall()
    finally:
        conn.close()
    return [dict(r) for r in rows]


def main():
    parser = argparse.ArgumentParser(description="AI interaction log")
    parser.add_argument("--recent", type=int, default=10)
    parser.add_argument("--json", action="store_true")
    args = parser.parse_args()

    rows = recent_interactions(args.recent)

    if args.json:
        print(json.dumps(rows, indent=2))
    else:
        for r in rows:
            print(f"{r['created_at']}  {r['model_id'] or '-'}  "
                  f"{r['module']} v{r['module_version']}  ({r['response_chars']} chars)")


if __name__ == "__main__":
    main()
