"""
Scan windows: the block height each destination chain was at before any
message of the current batch was sent towards it.

Every commit or execution event for those messages lies at or after that
height, so polling from there can neither miss them nor pick up the effects
of earlier batches as new.
"""

import logging
from collections.abc import Mapping
from concurrent.futures import ThreadPoolExecutor
from types import MappingProxyType
from typing import Dict, Iterable, Optional

from .chain import Chain

logger = logging.getLogger(__name__)


class ScanWindows(Mapping):
    """Immutable snapshot of destination selector -> starting block height."""

    def __init__(self, starts: Dict[int, int]):
        self._starts = MappingProxyType(dict(starts))

    def __getitem__(self, dest: int) -> int:
        try:
            return self._starts[dest]
        except KeyError:
            raise KeyError(
                f"no scan window recorded for destination {dest}; "
                "windows must be captured before sending"
            ) from None

    def __iter__(self):
        return iter(self._starts)

    def __len__(self):
        return len(self._starts)

    def __repr__(self):
        return f"ScanWindows({dict(self._starts)!r})"


def capture_scan_windows(
    chains: Mapping,
    destinations: Optional[Iterable[int]] = None,
) -> ScanWindows:
    """Record the current block height of every destination chain.

    Call once per batch, before the first send. All pairs that share a
    destination then share one lower bound.
    """
    targets = sorted(set(destinations) if destinations is not None else chains)

    def read(dest: int):
        chain: Chain = chains[dest]
        return dest, chain.latest_block_height()

    with ThreadPoolExecutor(max_workers=max(len(targets), 1)) as pool:
        starts = dict(pool.map(read, targets))

    logger.info("Captured scan windows: %s", starts)
    return ScanWindows(starts)
