# -*- coding: utf-8 -*-
"""
Provenance Tracking for the Fog-of-War Engine

Provides SHA-256 chain-hashed tracking of revealed-area state changes.
Every spatial index mutation is recorded under the index's entity id; the
chain hash of the latest entry is the index's content version, which the
fog result cache compares against to detect stale entries.

Operation Types:
    - index_mutation: Insert, remove, clear or optimize on a spatial index
    - location_reveal: A location fix turned into a revealed area

Example:
    >>> from cartographer.fog_of_war.provenance import ProvenanceTracker
    >>> tracker = ProvenanceTracker()
    >>> head = tracker.record("index_mutation", "IDX-1", "insert", "abc123")
    >>> assert tracker.latest_hash("IDX-1") == head
    >>> valid, chain = tracker.verify_chain("IDX-1")
    >>> assert valid is True

Author: Cartographer Team
Date: October 2026
Status: Production Ready
"""

from __future__ import annotations

import hashlib
import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Tuple

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _utcnow() -> datetime:
    """Return current UTC datetime with microseconds zeroed."""
    return datetime.now(timezone.utc).replace(microsecond=0)


# ---------------------------------------------------------------------------
# Valid operation types
# ---------------------------------------------------------------------------

VALID_OPERATION_TYPES = frozenset({
    "index_mutation",
    "location_reveal",
})


# =============================================================================
# ProvenanceTracker
# =============================================================================


class ProvenanceTracker:
    """Tracks revealed-area state changes with SHA-256 chain hashing.

    Entries link to the previous global entry, so a chain head can never
    repeat once the state has moved on. ``latest_hash(entity_id)`` returns
    the chain hash of the entity's newest entry, or the genesis hash when
    the entity has no history.

    Attributes:
        _chain_store: In-memory chain storage grouped by entity_id.
        _global_chain: Flat list of all entries in order.
        _last_chain_hash: Most recent chain hash for linking.
    """

    _GENESIS_HASH = hashlib.sha256(b"cartographer-fog-of-war-genesis").hexdigest()

    def __init__(self) -> None:
        """Initialize ProvenanceTracker."""
        self._chain_store: Dict[str, List[Dict[str, Any]]] = {}
        self._global_chain: List[Dict[str, Any]] = []
        self._last_chain_hash: str = self._GENESIS_HASH
        logger.info("ProvenanceTracker initialized for fog-of-war engine")

    def record(
        self,
        entity_type: str,
        entity_id: str,
        action: str,
        data_hash: str,
    ) -> str:
        """Record a provenance entry for an entity operation.

        Args:
            entity_type: Type of entity (one of VALID_OPERATION_TYPES or any string).
            entity_id: Unique entity identifier.
            action: Action performed (insert, remove, clear, optimize, reveal,
                calculate).
            data_hash: SHA-256 hash of the operation data.

        Returns:
            Chain hash of the new entry.
        """
        timestamp = _utcnow().isoformat()
        chain_hash = self._compute_chain_hash(
            self._last_chain_hash, data_hash, action, timestamp,
        )
        entry = {
            "entity_type": entity_type,
            "entity_id": entity_id,
            "action": action,
            "data_hash": data_hash,
            "timestamp": timestamp,
            "sequence": len(self._global_chain),
            "chain_hash": chain_hash,
        }

        self._chain_store.setdefault(entity_id, []).append(entry)
        self._global_chain.append(entry)
        self._last_chain_hash = chain_hash

        logger.debug(
            "Recorded provenance: %s/%s action=%s hash=%s",
            entity_type, entity_id, action, chain_hash[:16],
        )
        return chain_hash

    def latest_hash(self, entity_id: str) -> str:
        """Return the chain hash of the entity's newest entry (or genesis)."""
        chain = self._chain_store.get(entity_id)
        if not chain:
            return self._GENESIS_HASH
        return chain[-1]["chain_hash"]

    def verify_chain(self, entity_id: str) -> Tuple[bool, List[Dict[str, Any]]]:
        """Verify the integrity of the provenance chain for an entity.

        Recomputes every global chain hash up to the entity's last entry
        and checks each entity entry against it.

        Args:
            entity_id: Entity ID whose chain to verify.

        Returns:
            Tuple of (is_valid: bool, chain_entries: list).
        """
        chain = self._chain_store.get(entity_id, [])
        if not chain:
            return True, []

        previous = self._GENESIS_HASH
        recomputed: Dict[int, str] = {}
        for entry in self._global_chain[: chain[-1]["sequence"] + 1]:
            previous = self._compute_chain_hash(
                previous, entry["data_hash"], entry["action"], entry["timestamp"],
            )
            recomputed[entry["sequence"]] = previous

        for entry in chain:
            if recomputed.get(entry["sequence"]) != entry["chain_hash"]:
                logger.warning(
                    "Chain verification failed for %s at sequence %d",
                    entity_id, entry["sequence"],
                )
                return False, list(chain)
        return True, list(chain)

    def get_chain(self, entity_id: str) -> List[Dict[str, Any]]:
        """Get the provenance chain for an entity, oldest first."""
        return list(self._chain_store.get(entity_id, []))

    def get_global_chain(self, limit: int = 100) -> List[Dict[str, Any]]:
        """Get the newest ``limit`` entries across all entities, newest first."""
        return list(reversed(self._global_chain[-limit:]))

    def _compute_chain_hash(
        self,
        previous_hash: str,
        data_hash: str,
        action: str,
        timestamp: str,
    ) -> str:
        combined = json.dumps({
            "previous": previous_hash,
            "data": data_hash,
            "action": action,
            "timestamp": timestamp,
        }, sort_keys=True)
        return hashlib.sha256(combined.encode("utf-8")).hexdigest()

    @property
    def last_chain_hash(self) -> str:
        """Return the most recent chain hash across all entities."""
        return self._last_chain_hash

    @property
    def entry_count(self) -> int:
        """Return the total number of provenance entries."""
        return len(self._global_chain)

    @property
    def entity_count(self) -> int:
        """Return the number of unique entities tracked."""
        return len(self._chain_store)

    def export_json(self) -> str:
        """Export all provenance records as a JSON string."""
        return json.dumps(self._global_chain, indent=2, default=str)

    def build_hash(self, data: Any) -> str:
        """Build a SHA-256 hash for arbitrary data.

        Args:
            data: Data to hash (dict, list, or other).

        Returns:
            Hex-encoded SHA-256 hash.
        """
        serialized = json.dumps(data, sort_keys=True, default=str)
        return hashlib.sha256(serialized.encode("utf-8")).hexdigest()


__all__ = [
    "ProvenanceTracker",
    "VALID_OPERATION_TYPES",
]
