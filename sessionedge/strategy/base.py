"""Collaborator protocols consumed by the strategy engine.

The engine itself performs no I/O other than the order-book lookup made
through a ``DepthProvider``.
"""

from __future__ import annotations

from typing import Optional, Protocol, runtime_checkable

from sessionedge.strategy.models import DepthSnapshot


@runtime_checkable
class DepthProvider(Protocol):
    """Anything that can supply the latest order-book snapshot for a symbol."""

    async def fetch_depth(self, symbol: str) -> Optional[DepthSnapshot]:
        """Return the latest snapshot, or None when no book is available."""
        ...
