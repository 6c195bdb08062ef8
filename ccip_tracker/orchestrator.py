"""
Scenario orchestration across a whole topology.

Sends one message on every ordered pair of chains, then confirms that each
of them is committed and executed on its destination:

    IDLE -> SENDING -> AWAITING_COMMIT -> [POST_COMMIT_CHECK] ->
    AWAITING_EXECUTION -> DONE

Any fatal error moves the scenario to FAILED. There is no partial success:
either every lane reaches DONE or the error names the lanes that did not.
"""

import logging
from collections import defaultdict
from collections.abc import Mapping
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Iterable, List, Optional, Tuple

from .chain import Chain
from .checks import PostCommitCheck
from .commit import await_commits, confirm_commit_with_expected_range
from .config import TrackerConfig
from .errors import ConfigError, ProtocolViolation, TrackerError
from .execution import await_executions, confirm_exec_with_seq_nums, expand_ranges, raise_for_failures
from .polling import Deadline
from .sender import send_message
from .types import (
    NATIVE_FEE_TOKEN,
    CommitReport,
    EVM2AnyMessage,
    ExecutionReceipt,
    SentMessage,
    SourceDestPair,
    TokenAmount,
    pad_receiver,
)
from .windows import ScanWindows, capture_scan_windows

logger = logging.getLogger(__name__)


class ScenarioState(Enum):
    IDLE = "idle"
    SENDING = "sending"
    AWAITING_COMMIT = "awaiting_commit"
    POST_COMMIT_CHECK = "post_commit_check"
    AWAITING_EXECUTION = "awaiting_execution"
    DONE = "done"
    FAILED = "failed"


_TRANSITIONS = {
    ScenarioState.IDLE: {ScenarioState.SENDING},
    ScenarioState.SENDING: {ScenarioState.AWAITING_COMMIT},
    ScenarioState.AWAITING_COMMIT: {ScenarioState.POST_COMMIT_CHECK, ScenarioState.AWAITING_EXECUTION},
    ScenarioState.POST_COMMIT_CHECK: {ScenarioState.AWAITING_EXECUTION},
    ScenarioState.AWAITING_EXECUTION: {ScenarioState.DONE},
    ScenarioState.DONE: set(),
    ScenarioState.FAILED: set(),
}


@dataclass(frozen=True)
class MessageTemplate:
    """Payload sent on every lane; the receiver is the destination's receiver."""
    data: bytes = b"hello world"
    fee_token: str = NATIVE_FEE_TOKEN
    extra_args: bytes = b""
    # Token transfers keyed by source selector
    token_amounts: Mapping = field(default_factory=dict)

    def build(self, source: Chain, dest: Chain) -> EVM2AnyMessage:
        if not dest.receiver:
            raise ConfigError(f"no receiver configured on {dest}", chain=dest)
        amounts: Iterable[TokenAmount] = self.token_amounts.get(source.selector, ())
        return EVM2AnyMessage(
            receiver=pad_receiver(dest.receiver),
            data=self.data,
            token_amounts=tuple(amounts),
            fee_token=self.fee_token,
            extra_args=self.extra_args,
        )


@dataclass
class ScenarioResult:
    windows: ScanWindows
    sent: Dict[SourceDestPair, SentMessage]
    commits: Dict[SourceDestPair, CommitReport] = field(default_factory=dict)
    executions: Dict[SourceDestPair, Dict[int, ExecutionReceipt]] = field(default_factory=dict)

    @property
    def expected_seq_nums(self) -> Dict[SourceDestPair, int]:
        return {pair: msg.sequence_number for pair, msg in self.sent.items()}


def all_pairs(selectors: Iterable[int]) -> List[SourceDestPair]:
    """Every ordered pair of distinct chains"""
    selectors = sorted(selectors)
    return [SourceDestPair(src, dest) for src in selectors for dest in selectors if src != dest]


class Scenario:
    """One send/commit/execute round over every lane of a topology."""

    def __init__(
        self,
        chains: Mapping,
        template: Optional[MessageTemplate] = None,
        config: Optional[TrackerConfig] = None,
        post_commit_checks: Iterable[PostCommitCheck] = (),
        require_success: bool = True,
    ):
        if len(chains) < 2:
            raise ConfigError(f"a topology needs at least 2 chains, got {len(chains)}")
        self.chains = dict(chains)
        self.template = template or MessageTemplate()
        self.config = config or TrackerConfig()
        self.post_commit_checks = tuple(post_commit_checks)
        self.require_success = require_success

        self.state = ScenarioState.IDLE
        self.history: List[ScenarioState] = [ScenarioState.IDLE]
        self.error: Optional[BaseException] = None
        self.result: Optional[ScenarioResult] = None

    @property
    def pairs(self) -> List[SourceDestPair]:
        return all_pairs(self.chains)

    def _transition(self, new_state: ScenarioState):
        if new_state is not ScenarioState.FAILED and new_state not in _TRANSITIONS[self.state]:
            raise RuntimeError(f"invalid scenario transition {self.state.name} -> {new_state.name}")
        logger.info("Scenario %s -> %s", self.state.name, new_state.name)
        self.state = new_state
        self.history.append(new_state)

    def _phase_timeout(self, phase_timeout: float, deadline: Optional[Deadline]) -> float:
        if deadline is None:
            return phase_timeout
        return min(phase_timeout, deadline.remaining())

    def _send_all(self) -> Tuple[ScanWindows, Dict[SourceDestPair, SentMessage]]:
        pairs = self.pairs
        # Windows first: no send may reach a destination before its height is recorded
        windows = capture_scan_windows(self.chains, {pair.dest for pair in pairs})

        by_source = defaultdict(list)
        for pair in pairs:
            by_source[pair.source].append(pair)

        def send_from(source: int) -> List[SentMessage]:
            chain = self.chains[source]
            return [
                send_message(chain, pair.dest, self.template.build(chain, self.chains[pair.dest]))
                for pair in by_source[source]
            ]

        with ThreadPoolExecutor(max_workers=self.config.max_workers or len(by_source)) as pool:
            batches = list(pool.map(send_from, sorted(by_source)))

        sent = {msg.pair: msg for batch in batches for msg in batch}
        missing = set(pairs) - set(sent)
        if missing:
            raise ProtocolViolation(f"sends did not report lanes {sorted(missing)}")
        return windows, sent

    def run(self, timeout: Optional[float] = None) -> ScenarioResult:
        """Drive the scenario to DONE, or raise the error that moved it to FAILED.

        ``timeout`` bounds the whole run; each polling phase is additionally
        bounded by its own timeout from the config.
        """
        if self.state is not ScenarioState.IDLE:
            raise RuntimeError(f"scenario already ran (state {self.state.name})")

        deadline = Deadline(timeout) if timeout is not None else None
        cfg = self.config
        try:
            self._transition(ScenarioState.SENDING)
            windows, sent = self._send_all()
            self.result = ScenarioResult(windows=windows, sent=sent)
            expected = self.result.expected_seq_nums

            self._transition(ScenarioState.AWAITING_COMMIT)
            self.result.commits = await_commits(
                self.chains,
                expected,
                windows,
                timeout=self._phase_timeout(cfg.commit_timeout, deadline),
                poll_interval=cfg.poll_interval,
                max_workers=cfg.max_workers,
            )

            if self.post_commit_checks:
                self._transition(ScenarioState.POST_COMMIT_CHECK)
                for check in self.post_commit_checks:
                    check(self.chains)

            self._transition(ScenarioState.AWAITING_EXECUTION)
            self.result.executions = await_executions(
                self.chains,
                expand_ranges(expected),
                windows,
                timeout=self._phase_timeout(cfg.exec_timeout, deadline),
                poll_interval=cfg.poll_interval,
                max_workers=cfg.max_workers,
            )
            if self.require_success:
                raise_for_failures(self.result.executions)
        except BaseException as e:
            if isinstance(e, TrackerError) and e.phase is None:
                e.phase = self.state
            self.error = e
            self._transition(ScenarioState.FAILED)
            raise

        self._transition(ScenarioState.DONE)
        return self.result


def run_scenario(
    chains: Mapping,
    template: Optional[MessageTemplate] = None,
    timeout: Optional[float] = None,
    config: Optional[TrackerConfig] = None,
    post_commit_checks: Iterable[PostCommitCheck] = (),
    require_success: bool = True,
) -> ScenarioResult:
    """Send on every lane of ``chains`` and wait for commit and execution"""
    scenario = Scenario(
        chains,
        template=template,
        config=config,
        post_commit_checks=post_commit_checks,
        require_success=require_success,
    )
    return scenario.run(timeout=timeout)


def confirm_request_on_source_and_dest(
    source: Chain,
    dest: Chain,
    expected_seq_num: int,
    message: Optional[EVM2AnyMessage] = None,
    config: Optional[TrackerConfig] = None,
) -> Tuple[SentMessage, CommitReport, ExecutionReceipt]:
    """Send one message on a single lane and follow it through commit and execution"""
    config = config or TrackerConfig()
    message = message or MessageTemplate().build(source, dest)

    window_start = dest.latest_block_height()
    sent = send_message(source, dest.selector, message)
    if sent.sequence_number != expected_seq_num:
        raise ProtocolViolation(
            f"expected sequence number {expected_seq_num} on {sent.pair}, "
            f"source assigned {sent.sequence_number}",
            chain=source,
            pair=sent.pair,
        )

    commit = confirm_commit_with_expected_range(
        dest, source.selector, window_start, sent.sequence_number,
        timeout=config.commit_timeout, poll_interval=config.poll_interval,
    )
    receipts = confirm_exec_with_seq_nums(
        dest, source.selector, window_start, [sent.sequence_number],
        timeout=config.exec_timeout, poll_interval=config.poll_interval,
    )
    return sent, commit, receipts[sent.sequence_number]
