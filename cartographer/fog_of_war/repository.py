# -*- coding: utf-8 -*-
"""
Revealed-Area Repository - Fog-of-War Engine

Boundary to the persistent store of revealed areas. The store itself is
an external collaborator; this module defines:

- ``RevealedAreaRepository``: the protocol the engine consumes. Methods
  may be plain functions or coroutines.
- ``GuardedRepository``: wraps a collaborator with a bounded timeout and a
  circuit breaker, and turns every collaborator failure into
  ``SourceUnavailable`` so callers can advance to the next fallback tier.
- ``InMemoryRevealedAreaRepository``: dictionary-backed implementation for
  development and tests, with latency and failure injection.

Author: Cartographer Team
Date: October 2026
Status: Production Ready
"""

from __future__ import annotations

import asyncio
import copy
import inspect
import logging
import time
from typing import Any, Callable, Dict, List, Optional, Protocol, runtime_checkable

from shapely.errors import ShapelyError

from cartographer.exceptions import RepositoryTimeout, SourceUnavailable
from cartographer.fog_of_war.config import FogOfWarConfig, get_config
from cartographer.fog_of_war.geometry_operations import feature_bbox
from cartographer.fog_of_war.metrics import record_repository_error
from cartographer.fog_of_war.models import ViewportBounds, _new_id

logger = logging.getLogger(__name__)


# =============================================================================
# Protocol
# =============================================================================


@runtime_checkable
class RevealedAreaRepository(Protocol):
    """Persistent store of revealed areas (sync or async methods)."""

    def get_revealed_areas(
        self, bounds: Optional[ViewportBounds] = None,
    ) -> Any:
        """Return revealed-area Features, optionally limited to ``bounds``."""
        ...

    def save_revealed_area(self, feature: Dict[str, Any]) -> Any:
        """Persist a revealed-area Feature and return its id."""
        ...


# =============================================================================
# Circuit breaker state
# =============================================================================


def _make_circuit_breaker_state(name: str) -> Dict[str, Any]:
    """Create a circuit breaker state dictionary.

    Args:
        name: Name of the guarded collaborator.

    Returns:
        Circuit breaker state dictionary.
    """
    return {
        "name": name,
        "failures": 0,
        "state": "closed",  # closed, open, half_open
        "last_failure_time": None,
        "last_success_time": None,
        "total_failures": 0,
        "total_calls": 0,
    }


# =============================================================================
# GuardedRepository
# =============================================================================


class GuardedRepository:
    """Timeout and circuit-breaker wrapper around a repository collaborator.

    The breaker opens after ``circuit_breaker_threshold`` consecutive
    failures, rejects calls while open, and lets one trial call through once
    ``circuit_breaker_reset_seconds`` have elapsed (half-open). A
    successful trial call closes it; a failed trial call reopens it.

    Synchronous collaborators cannot be interrupted, so the timeout only
    bounds coroutine results.

    Attributes:
        repository: The wrapped collaborator.
        config: Engine configuration.
    """

    def __init__(
        self,
        repository: Any,
        config: Optional[FogOfWarConfig] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.repository = repository
        self.config = config or get_config()
        self._clock = clock
        self._breaker = _make_circuit_breaker_state(type(repository).__name__)
        logger.info(
            "GuardedRepository initialized for %s (timeout=%.1fs, threshold=%d)",
            self._breaker["name"],
            self.config.repository_timeout_seconds,
            self.config.circuit_breaker_threshold,
        )

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def fetch_revealed_areas(
        self, bounds: Optional[ViewportBounds] = None,
    ) -> List[Dict[str, Any]]:
        """Fetch revealed areas through the guard.

        Raises:
            SourceUnavailable: On timeout, open circuit, collaborator error
                or a malformed (non-list) response.
        """
        result = await self._call(
            "get_revealed_areas", self.repository.get_revealed_areas, bounds,
        )
        if result is None:
            return []
        if not isinstance(result, (list, tuple)):
            self._record_failure("get_revealed_areas", "malformed")
            raise SourceUnavailable(
                message=f"Repository returned {type(result).__name__}, expected a list",
                component="GuardedRepository",
            )
        return list(result)

    async def save_revealed_area(self, feature: Dict[str, Any]) -> str:
        """Persist a revealed area through the guard.

        Raises:
            SourceUnavailable: On timeout, open circuit or collaborator error.
        """
        result = await self._call(
            "save_revealed_area", self.repository.save_revealed_area,
            copy.deepcopy(feature),
        )
        return str(result)

    @property
    def circuit_state(self) -> str:
        """closed, open or half_open (open turns half_open once the reset time passed)."""
        self._refresh_state()
        return self._breaker["state"]

    def get_circuit_breaker_state(self) -> Dict[str, Any]:
        self._refresh_state()
        return dict(self._breaker)

    def reset(self) -> None:
        """Close the circuit and forget failures."""
        self._breaker = _make_circuit_breaker_state(self._breaker["name"])
        logger.info("Circuit breaker reset for %s", self._breaker["name"])

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _refresh_state(self) -> None:
        cb = self._breaker
        if cb["state"] == "open" and cb["last_failure_time"] is not None:
            elapsed = self._clock() - cb["last_failure_time"]
            if elapsed >= self.config.circuit_breaker_reset_seconds:
                cb["state"] = "half_open"
                logger.info("Circuit breaker HALF_OPEN for %s", cb["name"])

    async def _call(self, operation: str, func: Callable[..., Any], *args: Any) -> Any:
        self._refresh_state()
        cb = self._breaker
        cb["total_calls"] += 1
        if cb["state"] == "open":
            record_repository_error(operation, "circuit_open")
            raise SourceUnavailable(
                message=f"Circuit breaker open for {cb['name']}",
                component="GuardedRepository",
                context={"operation": operation},
            )

        timeout = self.config.repository_timeout_seconds
        try:
            result = func(*args)
            if inspect.isawaitable(result):
                result = await asyncio.wait_for(result, timeout=timeout)
        except asyncio.TimeoutError as exc:
            self._record_failure(operation, "timeout")
            raise RepositoryTimeout(
                message=f"{operation} timed out after {timeout:.1f}s",
                timeout_seconds=timeout,
                component="GuardedRepository",
                context={"operation": operation},
            ) from exc
        except Exception as exc:
            self._record_failure(operation, "exception")
            raise SourceUnavailable(
                message=f"{operation} failed: {exc}",
                component="GuardedRepository",
                context={"operation": operation, "error_type": type(exc).__name__},
            ) from exc

        self._record_success()
        return result

    def _record_success(self) -> None:
        cb = self._breaker
        cb["last_success_time"] = self._clock()
        if cb["state"] == "half_open":
            logger.info("Circuit breaker CLOSED for %s", cb["name"])
        cb["state"] = "closed"
        cb["failures"] = 0

    def _record_failure(self, operation: str, error_type: str) -> None:
        cb = self._breaker
        cb["failures"] += 1
        cb["total_failures"] += 1
        cb["last_failure_time"] = self._clock()
        record_repository_error(operation, error_type)

        if cb["state"] == "half_open" or cb["failures"] >= self.config.circuit_breaker_threshold:
            if cb["state"] != "open":
                logger.warning(
                    "Circuit breaker OPEN for %s after %d failures",
                    cb["name"], cb["failures"],
                )
            cb["state"] = "open"
        else:
            logger.warning(
                "Repository %s failed (%s), %d/%d before circuit opens",
                operation, error_type, cb["failures"],
                self.config.circuit_breaker_threshold,
            )


# =============================================================================
# InMemoryRevealedAreaRepository
# =============================================================================


class InMemoryRevealedAreaRepository:
    """Dictionary-backed repository for development and tests.

    Attributes:
        delay_seconds: Artificial latency added to every call.
        fail_reads: Number of upcoming reads that raise ``ConnectionError``.
        fail_writes: Number of upcoming writes that raise ``ConnectionError``.
    """

    def __init__(self, features: Optional[List[Dict[str, Any]]] = None) -> None:
        self._records: Dict[str, Dict[str, Any]] = {}
        self.delay_seconds = 0.0
        self.fail_reads = 0
        self.fail_writes = 0
        self.read_count = 0
        self.write_count = 0
        for feature in features or []:
            self._store(feature)

    def __len__(self) -> int:
        return len(self._records)

    @property
    def records(self) -> List[Dict[str, Any]]:
        return [copy.deepcopy(r) for r in self._records.values()]

    def _store(self, feature: Dict[str, Any]) -> str:
        record = copy.deepcopy(feature)
        properties = record.get("properties")
        if not isinstance(properties, dict):
            properties = record["properties"] = {}
        record_id = str(properties.get("id") or _new_id("RA"))
        properties["id"] = record_id
        self._records[record_id] = record
        return record_id

    async def get_revealed_areas(
        self, bounds: Optional[ViewportBounds] = None,
    ) -> List[Dict[str, Any]]:
        self.read_count += 1
        if self.delay_seconds:
            await asyncio.sleep(self.delay_seconds)
        if self.fail_reads > 0:
            self.fail_reads -= 1
            raise ConnectionError("revealed-area store unavailable")
        if bounds is None:
            return self.records

        matches: List[Dict[str, Any]] = []
        for record in self._records.values():
            try:
                min_lon, min_lat, max_lon, max_lat = feature_bbox(record)
            except (ShapelyError, ValueError, TypeError, AttributeError, KeyError):
                # unreadable geometry still reaches the caller's validation
                matches.append(copy.deepcopy(record))
                continue
            if (
                min_lon <= bounds.max_lon and max_lon >= bounds.min_lon
                and min_lat <= bounds.max_lat and max_lat >= bounds.min_lat
            ):
                matches.append(copy.deepcopy(record))
        return matches

    async def save_revealed_area(self, feature: Dict[str, Any]) -> str:
        self.write_count += 1
        if self.delay_seconds:
            await asyncio.sleep(self.delay_seconds)
        if self.fail_writes > 0:
            self.fail_writes -= 1
            raise ConnectionError("revealed-area store unavailable")
        return self._store(feature)


__all__ = [
    "RevealedAreaRepository",
    "GuardedRepository",
    "InMemoryRevealedAreaRepository",
]
