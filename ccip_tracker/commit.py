"""
Commit confirmation poller.

Waits until every lane's expected sequence range is covered by a commit
report on the lane's destination chain.
"""

import logging
import threading
from collections.abc import Mapping
from functools import partial
from typing import Dict, Iterable, List, Optional, Union

from .chain import Chain
from .errors import CommitTimeout, lane_context
from .polling import Deadline, poll_until, run_concurrently
from .types import CommitReport, EventKind, SeqNumRange, SourceDestPair

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 300.0
DEFAULT_POLL_INTERVAL = 2.0


def scan_commit_reports(
    dest_chain: Chain,
    source: int,
    from_block: int,
    to_block: Optional[int] = None,
) -> List[CommitReport]:
    """All commit reports for ``source`` accepted on ``dest_chain`` in the block range"""
    return [
        CommitReport.from_event(dest_chain.selector, event)
        for event in dest_chain.scan_events(
            EventKind.COMMIT_REPORT_ACCEPTED,
            from_block,
            to_block,
            argument_filters={"sourceChainSelector": source},
        )
    ]


def find_matching_commit(
    reports: Iterable[CommitReport],
    pair: SourceDestPair,
    expected: SeqNumRange,
) -> Optional[CommitReport]:
    """First report of ``pair`` whose range fully contains ``expected``.

    A report that only partially overlaps the expected range does not match.
    """
    for report in reports:
        if report.pair != pair:
            continue
        if report.seq_range.contains(expected):
            return report
        if report.seq_range.overlaps(expected):
            logger.debug(
                "Commit report %s for %s only partially covers expected %s",
                report.seq_range, pair, expected,
            )
    return None


def _watch_commit(
    dest_chain: Chain,
    pair: SourceDestPair,
    expected: SeqNumRange,
    window_start: int,
    deadline: Deadline,
    poll_interval: float,
    stop: threading.Event,
) -> Optional[CommitReport]:
    def check():
        latest = dest_chain.latest_block_height()
        reports = scan_commit_reports(dest_chain, pair.source, window_start, latest)
        logger.debug(
            "Scanned %s blocks [%d, %d] for %s: %d commit report(s)",
            dest_chain, window_start, latest, pair, len(reports),
        )
        return find_matching_commit(reports, pair, expected)

    with lane_context(pair):
        match = poll_until(check, lambda found: found is not None, deadline, poll_interval, stop)
    if match is not None:
        logger.info(
            "Commit report for %s covering %s (expected %s) found in block %d",
            pair, match.seq_range, expected, match.block_number,
        )
    return match


def await_commits(
    chains: Mapping,
    expected: Mapping,
    windows: Mapping,
    timeout: float = DEFAULT_TIMEOUT,
    poll_interval: float = DEFAULT_POLL_INTERVAL,
    max_workers: Optional[int] = None,
) -> Dict[SourceDestPair, CommitReport]:
    """Wait for commit reports covering every lane's expected sequence numbers.

    ``expected`` maps each pair to a sequence number or a SeqNumRange.
    ``windows`` maps each destination selector to the block scanning starts
    from. Returns the matching report per pair, or raises CommitTimeout naming
    every pair that was still unmatched at the deadline.
    """
    ranges: Dict[SourceDestPair, SeqNumRange] = {
        pair: SeqNumRange.coerce(value) for pair, value in expected.items()
    }
    if not ranges:
        return {}

    logger.info("Waiting up to %.0fs for commit reports on %d lane(s)", timeout, len(ranges))
    deadline = Deadline(timeout)
    work = {
        pair: partial(
            _watch_commit,
            chains[pair.dest],
            pair,
            seq_range,
            windows[pair.dest],
            deadline,
            poll_interval,
        )
        for pair, seq_range in ranges.items()
    }
    results = run_concurrently(work, max_workers)

    pending = {pair: ranges[pair] for pair, match in results.items() if match is None}
    if pending:
        raise CommitTimeout(pending, timeout)
    return dict(results)


def confirm_commit_with_expected_range(
    dest_chain: Chain,
    source: int,
    window_start: int,
    expected: Union[int, SeqNumRange],
    timeout: float = DEFAULT_TIMEOUT,
    poll_interval: float = DEFAULT_POLL_INTERVAL,
) -> CommitReport:
    """Single-lane form of await_commits"""
    pair = SourceDestPair(source, dest_chain.selector)
    return await_commits(
        {dest_chain.selector: dest_chain},
        {pair: expected},
        {dest_chain.selector: window_start},
        timeout=timeout,
        poll_interval=poll_interval,
    )[pair]
