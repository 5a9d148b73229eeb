"""Core package for :mod:`price_relay`.

Tracks a dynamic set of tickers, samples a rendered page for each of them and
fans deduplicated price batches out to every connected subscriber.
"""

from __future__ import annotations

__version__ = "0.1.0"
