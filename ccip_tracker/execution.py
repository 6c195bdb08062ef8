"""
Execution confirmation poller.

Waits until every expected sequence number of every lane has a terminal
execution receipt (success or failure) on the destination chain.
"""

import logging
import threading
from collections.abc import Mapping
from functools import partial
from typing import Dict, Iterable, List, Optional

from .chain import Chain
from .errors import DuplicateExecutionReceipt, ExecutionFailed, ExecutionTimeout, lane_context
from .polling import Deadline, poll_until, run_concurrently
from .types import EventKind, ExecutionReceipt, SeqNumRange, SourceDestPair

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 300.0
DEFAULT_POLL_INTERVAL = 2.0


def as_seq_nums(value) -> List[int]:
    """Normalize an int, a SeqNumRange or an iterable of ints to a sorted list"""
    if isinstance(value, SeqNumRange):
        return list(value)
    if isinstance(value, int):
        return [value]
    return sorted({int(seq_num) for seq_num in value})


def expand_ranges(expected: Mapping) -> Dict[SourceDestPair, List[int]]:
    """Turn per-pair commit expectations into per-pair sequence number lists"""
    return {pair: as_seq_nums(value) for pair, value in expected.items()}


def scan_execution_receipts(
    dest_chain: Chain,
    source: int,
    from_block: int,
    to_block: Optional[int] = None,
) -> List[ExecutionReceipt]:
    return [
        ExecutionReceipt.from_event(dest_chain.selector, event)
        for event in dest_chain.scan_events(
            EventKind.EXECUTION_STATE_CHANGED,
            from_block,
            to_block,
            argument_filters={"sourceChainSelector": source},
        )
    ]


def collect_terminal_receipts(
    receipts: Iterable[ExecutionReceipt],
    pair: SourceDestPair,
    seq_nums: Iterable[int],
) -> Dict[int, ExecutionReceipt]:
    """Terminal receipts of ``pair`` for the wanted sequence numbers.

    Receipts may arrive in any order. The same log seen again on a rescan is
    not a duplicate; a second, different terminal log for one sequence
    number is.
    """
    wanted = set(seq_nums)
    found: Dict[int, ExecutionReceipt] = {}
    for receipt in receipts:
        if receipt.pair != pair or receipt.sequence_number not in wanted:
            continue
        if not receipt.state.is_terminal:
            continue
        previous = found.get(receipt.sequence_number)
        if previous is not None and previous.log_id != receipt.log_id:
            raise DuplicateExecutionReceipt(
                f"sequence number {receipt.sequence_number} of {pair} executed twice: "
                f"{previous.state.name} in block {previous.block_number}, "
                f"{receipt.state.name} in block {receipt.block_number}",
                pair=pair,
            )
        found[receipt.sequence_number] = receipt
    return found


def _watch_executions(
    dest_chain: Chain,
    pair: SourceDestPair,
    seq_nums: List[int],
    window_start: int,
    deadline: Deadline,
    poll_interval: float,
    stop: threading.Event,
) -> Dict[int, ExecutionReceipt]:
    def check():
        latest = dest_chain.latest_block_height()
        receipts = scan_execution_receipts(dest_chain, pair.source, window_start, latest)
        found = collect_terminal_receipts(receipts, pair, seq_nums)
        logger.debug(
            "Scanned %s blocks [%d, %d] for %s: %d/%d terminal receipt(s)",
            dest_chain, window_start, latest, pair, len(found), len(seq_nums),
        )
        return found

    with lane_context(pair):
        found = poll_until(check, lambda f: len(f) == len(seq_nums), deadline, poll_interval, stop)
    for seq_num, receipt in sorted(found.items()):
        if receipt.succeeded:
            logger.info("Execution of %s seqNum %d succeeded in block %d", pair, seq_num, receipt.block_number)
        else:
            logger.warning(
                "Execution of %s seqNum %d ended in %s (block %d, return data %s)",
                pair, seq_num, receipt.state.name, receipt.block_number, receipt.return_data.hex() or "-",
            )
    return found


def await_executions(
    chains: Mapping,
    expected: Mapping,
    windows: Mapping,
    timeout: float = DEFAULT_TIMEOUT,
    poll_interval: float = DEFAULT_POLL_INTERVAL,
    max_workers: Optional[int] = None,
) -> Dict[SourceDestPair, Dict[int, ExecutionReceipt]]:
    """Wait for a terminal execution receipt for every expected sequence number.

    A FAILURE receipt is terminal: it is logged and returned, but does not
    stop the wait. Use raise_for_failures to turn failures into an error.
    Raises ExecutionTimeout naming each pair with its missing sequence numbers.
    """
    seq_nums = expand_ranges(expected)
    if not seq_nums:
        return {}

    total = sum(len(nums) for nums in seq_nums.values())
    logger.info(
        "Waiting up to %.0fs for %d execution receipt(s) on %d lane(s)", timeout, total, len(seq_nums)
    )
    deadline = Deadline(timeout)
    work = {
        pair: partial(
            _watch_executions,
            chains[pair.dest],
            pair,
            nums,
            windows[pair.dest],
            deadline,
            poll_interval,
        )
        for pair, nums in seq_nums.items()
    }
    results = run_concurrently(work, max_workers)

    pending = {}
    for pair, found in results.items():
        missing = [seq_num for seq_num in seq_nums[pair] if seq_num not in found]
        if missing:
            pending[pair] = missing
    if pending:
        raise ExecutionTimeout(pending, timeout)
    return dict(results)


def raise_for_failures(results: Mapping) -> None:
    """Raise ExecutionFailed if any receipt in ``results`` is not a success"""
    failures = {}
    for pair, receipts in results.items():
        failed = sorted(seq for seq, receipt in receipts.items() if not receipt.succeeded)
        if failed:
            failures[pair] = failed
    if failures:
        raise ExecutionFailed(failures)


def confirm_exec_with_seq_nums(
    dest_chain: Chain,
    source: int,
    window_start: int,
    seq_nums: Iterable[int],
    timeout: float = DEFAULT_TIMEOUT,
    poll_interval: float = DEFAULT_POLL_INTERVAL,
) -> Dict[int, ExecutionReceipt]:
    """Single-lane form of await_executions"""
    pair = SourceDestPair(source, dest_chain.selector)
    return await_executions(
        {dest_chain.selector: dest_chain},
        {pair: list(seq_nums)},
        {dest_chain.selector: window_start},
        timeout=timeout,
        poll_interval=poll_interval,
    )[pair]
