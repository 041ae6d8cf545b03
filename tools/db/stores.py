#!/usr/bin/env python3
"""SQLite-backed catalog and proposal stores.

The pipeline only sees two narrow interfaces:
  CatalogStore.list_all() / find_by_id()   - read-only canonical catalog
  ProposalStore.create() / find_by_id()    - one write per successful run
"""

import hashlib
import json
import logging
import os
import sqlite3
from datetime import datetime, timezone
from typing import Iterable, List, Optional

from tools.config import resolve_db_path
from tools.proposal.errors import PersistenceError, PreconditionError
from tools.proposal.models import (
    CandidateLineItem, CatalogItem, ComputedImpact, PersistedProposal,
)

logger = logging.getLogger("ecoproposal.db.stores")


def _get_db(db_path=None):
    """Open a database connection with WAL mode enabled."""
    path = str(db_path or resolve_db_path())
    conn = sqlite3.connect(path)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA journal_mode=WAL")
    return conn


def _now():
    """Return current UTC timestamp as ISO-8601 string."""
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def _new_id(prefix: str) -> str:
    """Generate a unique ID: PREFIX- + 12 hex chars."""
    raw = hashlib.sha256(os.urandom(32)).hexdigest()[:12]
    return f"{prefix}-{raw}"


def _row_to_item(row) -> CatalogItem:
    return CatalogItem(
        id=row["id"],
        name=row["name"],
        category=row["category"],
        unit_price=row["unit_price"],
        plastic_saved_per_unit=row["plastic_saved_per_unit"] or 0.0,
        carbon_avoided_per_unit=row["carbon_avoided_per_unit"] or 0.0,
    )


_INSERT_PRODUCT_SQL = """INSERT INTO products
    (id, name, category, unit_price,
     plastic_saved_per_unit, carbon_avoided_per_unit, created_at)
    VALUES (?, ?, ?, ?, ?, ?, ?)"""


def _product_row(item: CatalogItem) -> tuple:
    return (item.id, item.name, item.category, item.unit_price,
            item.plastic_saved_per_unit, item.carbon_avoided_per_unit, _now())


class CatalogStore:
    """Read access to the canonical product catalog."""

    def __init__(self, db_path=None):
        self.db_path = db_path

    def list_all(self) -> List[CatalogItem]:
        try:
            conn = _get_db(self.db_path)
            try:
                rows = conn.execute(
                    "SELECT * FROM products ORDER BY category, name"
                ).fetchall()
            finally:
                conn.close()
        except sqlite3.Error as exc:
            raise PreconditionError(f"Catalog unavailable: {exc}") from exc
        return [_row_to_item(r) for r in rows]

    def find_by_id(self, product_id: str) -> Optional[CatalogItem]:
        try:
            conn = _get_db(self.db_path)
            try:
                row = conn.execute(
                    "SELECT * FROM products WHERE id = ?", (product_id,)
                ).fetchone()
            finally:
                conn.close()
        except sqlite3.Error as exc:
            raise PreconditionError(f"Catalog unavailable: {exc}") from exc
        return _row_to_item(row) if row else None

    def insert(self, item: CatalogItem) -> str:
        """Add one product. Returns its id."""
        conn = _get_db(self.db_path)
        try:
            conn.execute(_INSERT_PRODUCT_SQL, _product_row(item))
            conn.commit()
        finally:
            conn.close()
        return item.id

    def replace_all(self, items: Iterable[CatalogItem]) -> int:
        """Clear the catalog and insert ``items``. Used by the seed script."""
        items = list(items)
        conn = _get_db(self.db_path)
        try:
            conn.execute("DELETE FROM products")
            conn.executemany(_INSERT_PRODUCT_SQL, [_product_row(i) for i in items])
            conn.commit()
        finally:
            conn.close()
        return len(items)


class ProposalStore:
    """Persistence for assembled proposals."""

    def __init__(self, db_path=None):
        self.db_path = db_path

    def create(self, record: PersistedProposal) -> str:
        """Insert ``record`` and return its generated id."""
        proposal_id = _new_id("PROP")
        created_at = _now()
        try:
            conn = _get_db(self.db_path)
            try:
                conn.execute(
                    """INSERT INTO proposals
                       (id, client_name, proposal_summary, total_budget_limit,
                        allocated_budget, remaining_budget, products,
                        impact_summary, confidence_score, total_plastic_saved,
                        total_carbon_avoided, ai_metadata, created_at)
                       VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                    (
                        proposal_id,
                        record.client_name,
                        record.proposal_summary,
                        record.total_budget_limit,
                        record.allocated_budget,
                        record.remaining_budget,
                        json.dumps([p.to_dict() for p in record.products]),
                        record.impact_summary,
                        record.confidence_score,
                        record.computed_impact.total_plastic_saved,
                        record.computed_impact.total_carbon_avoided,
                        json.dumps(record.ai_metadata),
                        created_at,
                    ),
                )
                conn.commit()
            finally:
                conn.close()
        except sqlite3.Error as exc:
            logger.error("Proposal persistence failed: %s", exc)
            raise PersistenceError(f"Failed to persist proposal: {exc}") from exc

        record.id = proposal_id
        record.created_at = created_at
        return proposal_id

    def find_by_id(self, proposal_id: str) -> Optional[PersistedProposal]:
        try:
            conn = _get_db(self.db_path)
            try:
                row = conn.execute(
                    "SELECT * FROM proposals WHERE id = ?", (proposal_id,)
                ).fetchone()
            finally:
                conn.close()
        except sqlite3.Error as exc:
            raise PersistenceError(f"Failed to load proposal: {exc}") from exc
        if row is None:
            return None
        return PersistedProposal(
            id=row["id"],
            client_name=row["client_name"],
            proposal_summary=row["proposal_summary"],
            total_budget_limit=row["total_budget_limit"],
            allocated_budget=row["allocated_budget"],
            remaining_budget=row["remaining_budget"],
            products=[CandidateLineItem(**p) for p in json.loads(row["products"])],
            impact_summary=row["impact_summary"],
            confidence_score=row["confidence_score"],
            computed_impact=ComputedImpact(
                total_plastic_saved=row["total_plastic_saved"],
                total_carbon_avoided=row["total_carbon_avoided"],
            ),
            ai_metadata=json.loads(row["ai_metadata"]),
            created_at=row["created_at"],
        )
