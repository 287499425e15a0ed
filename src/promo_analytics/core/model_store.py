"""
Engine Snapshots and the Model Store

The engine's long-lived state (ensemble weights, the anomaly model, the spend
optimizer's regression parameters) lives in one immutable, versioned
EngineSnapshot that callers pass in explicitly. Training produces a new
snapshot; nothing is mutated in place.

This module provides:
    1. EngineSnapshot - the versioned state object with JSON round-trip
    2. ModelStore - persists snapshots with versioning (last writer wins)

Copyright (c) 2024-2025 Tim Kaye / Local Cannabis Co.
All Rights Reserved. Proprietary and Confidential.
"""

from __future__ import annotations

import json
import logging
import os
import sqlite3
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, Dict, List, Optional

from .anomaly import AnomalyModel
from .config import EnsembleWeights
from .errors import InvalidInputError
from .optimizer import OptimizerModel

logger = logging.getLogger(__name__)

SNAPSHOT_FORMAT = 1


@dataclass(frozen=True)
class EngineSnapshot:
    """All trained state the engine reads, as one immutable value."""
    version: int = 0
    computed_at: datetime = field(default_factory=datetime.now)
    ensemble_weights: EnsembleWeights = field(default_factory=EnsembleWeights)
    anomaly_model: Optional[AnomalyModel] = None
    optimizer_model: Optional[OptimizerModel] = None

    def _next(self, **changes: Any) -> "EngineSnapshot":
        return replace(self, version=self.version + 1, computed_at=datetime.now(), **changes)

    def with_weights(self, weights: EnsembleWeights) -> "EngineSnapshot":
        return self._next(ensemble_weights=weights)

    def with_anomaly_model(self, model: AnomalyModel) -> "EngineSnapshot":
        return self._next(anomaly_model=model)

    def with_optimizer_model(self, model: OptimizerModel) -> "EngineSnapshot":
        return self._next(optimizer_model=model)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "format": SNAPSHOT_FORMAT,
            "version": self.version,
            "computed_at": self.computed_at.isoformat(),
            "ensemble_weights": self.ensemble_weights.to_dict(),
            "anomaly_model": self.anomaly_model.to_dict() if self.anomaly_model else None,
            "optimizer_model": self.optimizer_model.to_dict() if self.optimizer_model else None,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "EngineSnapshot":
        fmt = data.get("format", SNAPSHOT_FORMAT)
        if fmt != SNAPSHOT_FORMAT:
            raise InvalidInputError(f"Unsupported snapshot format: {fmt}")
        return cls(
            version=int(data.get("version", 0)),
            computed_at=datetime.fromisoformat(data["computed_at"]) if "computed_at" in data else datetime.now(),
            ensemble_weights=EnsembleWeights.from_dict(data["ensemble_weights"])
            if data.get("ensemble_weights") else EnsembleWeights(),
            anomaly_model=AnomalyModel.from_dict(data["anomaly_model"]) if data.get("anomaly_model") else None,
            optimizer_model=OptimizerModel.from_dict(data["optimizer_model"]) if data.get("optimizer_model") else None,
        )

    def to_json(self) -> str:
        return json.dumps(self.to_dict())

    @classmethod
    def from_json(cls, payload: str) -> "EngineSnapshot":
        return cls.from_dict(json.loads(payload))


class ModelStore:
    """
    Persists engine snapshots with versioning.

    Uses SQLite; every call opens its own connection, so a file path is
    required (":memory:" would lose the table between calls).
    """

    def __init__(self, db_path: Optional[str] = None):
        if db_path is None:
            db_path = os.environ.get("PROMO_MODEL_DB", "promo_models.db")
        self.db_path = db_path
        self._init_tables()

    def _connect(self) -> sqlite3.Connection:
        return sqlite3.connect(self.db_path)

    def _init_tables(self):
        """Create snapshot storage table."""
        conn = self._connect()
        try:
            conn.executescript("""
                CREATE TABLE IF NOT EXISTS model_snapshots (
                    version INTEGER PRIMARY KEY,
                    kind TEXT NOT NULL,
                    computed_at TEXT NOT NULL,
                    payload TEXT NOT NULL,
                    is_active INTEGER DEFAULT 0
                );

                CREATE INDEX IF NOT EXISTS idx_model_snapshots_active
                ON model_snapshots(kind, is_active);
            """)
            conn.commit()
        finally:
            conn.close()

    def save_snapshot(self, snapshot: EngineSnapshot, kind: str = "engine", activate: bool = True) -> EngineSnapshot:
        """Save a snapshot under the next store version, optionally making it active.

        Returns the snapshot re-stamped with the version it was stored under.
        """
        conn = self._connect()
        try:
            cursor = conn.cursor()
            # Reserve the write lock before reading MAX(version) so concurrent savers serialize
            cursor.execute("BEGIN IMMEDIATE")
            cursor.execute("SELECT COALESCE(MAX(version), 0) + 1 FROM model_snapshots")
            version = cursor.fetchone()[0]
            stored = replace(snapshot, version=version)

            cursor.execute(
                """
                INSERT INTO model_snapshots (version, kind, computed_at, payload, is_active)
                VALUES (?, ?, ?, ?, ?)
                """,
                (version, kind, stored.computed_at.isoformat(), stored.to_json(), 1 if activate else 0),
            )
            if activate:
                cursor.execute(
                    "UPDATE model_snapshots SET is_active = 0 WHERE kind = ? AND version != ?",
                    (kind, version),
                )
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

        logger.info(f"Saved {kind} snapshot v{version} (active={activate})")
        return stored

    def activate(self, version: int) -> None:
        conn = self._connect()
        try:
            cursor = conn.cursor()
            cursor.execute("SELECT kind FROM model_snapshots WHERE version = ?", (version,))
            row = cursor.fetchone()
            if not row:
                raise InvalidInputError(f"No snapshot with version {version}")
            cursor.execute("UPDATE model_snapshots SET is_active = (version = ?) WHERE kind = ?", (version, row[0]))
            conn.commit()
        finally:
            conn.close()
        logger.info(f"Activated snapshot v{version}")

    def get_active_snapshot(self, kind: str = "engine") -> Optional[EngineSnapshot]:
        """Get the currently active snapshot of a kind."""
        conn = self._connect()
        try:
            row = conn.execute(
                """
                SELECT payload FROM model_snapshots
                WHERE kind = ? AND is_active = 1
                ORDER BY version DESC LIMIT 1
                """,
                (kind,),
            ).fetchone()
        finally:
            conn.close()

        if not row:
            return None
        return EngineSnapshot.from_json(row[0])

    def get_snapshot_by_version(self, version: int) -> Optional[EngineSnapshot]:
        conn = self._connect()
        try:
            row = conn.execute("SELECT payload FROM model_snapshots WHERE version = ?", (version,)).fetchone()
        finally:
            conn.close()

        if not row:
            return None
        return EngineSnapshot.from_json(row[0])

    def list_versions(self, kind: Optional[str] = None, limit: int = 10) -> List[Dict[str, Any]]:
        """List recent snapshot versions, newest first."""
        query = "SELECT version, kind, computed_at, is_active FROM model_snapshots"
        params: tuple = ()
        if kind is not None:
            query += " WHERE kind = ?"
            params = (kind,)
        query += " ORDER BY version DESC LIMIT ?"

        conn = self._connect()
        try:
            rows = conn.execute(query, params + (limit,)).fetchall()
        finally:
            conn.close()

        return [
            {
                "version": row[0],
                "kind": row[1],
                "computed_at": row[2],
                "is_active": bool(row[3]),
            }
            for row in rows
        ]
