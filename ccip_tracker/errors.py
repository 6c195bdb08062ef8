"""
Error taxonomy for the delivery tracker.

Every error carries enough context (chain, pair, phase) to diagnose a stuck
lane in a many-pair run. Polling timeouts carry the full set of pairs that
were still pending when the deadline hit, not just the first one.
"""

from contextlib import contextmanager


class TrackerError(Exception):
    """Base class for all tracker errors."""

    def __init__(self, message: str, chain=None, pair=None):
        super().__init__(message)
        self.chain = chain
        self.pair = pair
        # Set by the orchestrator when the error crosses a phase boundary
        self.phase = None

    def __str__(self):
        message = super().__str__()
        if self.phase is not None:
            return f"[{self.phase.value}] {message}"
        return message


class ConfigError(TrackerError, ValueError):
    """Invalid or missing configuration."""


class TransportError(TrackerError):
    """Underlying chain connection failure (network, RPC)."""

    def __init__(self, chain, operation: str, cause: Exception):
        super().__init__(
            f"{operation} failed on chain {chain}: {cause}", chain=chain
        )
        self.operation = operation


class SubmissionError(TrackerError):
    """Transaction rejected by the chain. Never retried."""


class ConfirmationTimeout(TrackerError):
    """Submitted transaction was not confirmed in time."""

    def __init__(self, chain, tx_hash: str, timeout: float):
        super().__init__(
            f"transaction {tx_hash} not confirmed on chain {chain} within {timeout}s",
            chain=chain,
        )
        self.tx_hash = tx_hash
        self.timeout = timeout


class ProtocolViolation(TrackerError):
    """An on-chain invariant the tracker relies on does not hold."""


class EventNotFound(ProtocolViolation):
    """Expected event missing after its transaction was confirmed."""


class DuplicateExecutionReceipt(ProtocolViolation):
    """A sequence number received more than one terminal execution receipt."""


class PollTimeout(TrackerError):
    """A polling phase ran out of time.

    ``pending`` maps every unconfirmed pair to what was still expected for it.
    """

    kind = "confirmation"

    def __init__(self, pending: dict, timeout: float):
        self.pending = dict(pending)
        self.timeout = timeout
        lanes = ", ".join(
            f"{pair} expecting {expected}"
            for pair, expected in sorted(self.pending.items())
        )
        super().__init__(
            f"timed out after {timeout:.1f}s waiting for {self.kind} of "
            f"{len(self.pending)} lane(s): {lanes}"
        )


class CommitTimeout(PollTimeout):
    kind = "commit reports"


class ExecutionTimeout(PollTimeout):
    kind = "execution receipts"


class ExecutionFailed(TrackerError):
    """Terminal FAILURE receipts seen when success was required."""

    def __init__(self, failures: dict):
        self.failures = dict(failures)
        detail = ", ".join(
            f"{pair} seqs {sorted(seqs)}" for pair, seqs in sorted(self.failures.items())
        )
        super().__init__(f"messages executed with failure state: {detail}")


class PostCommitCheckFailed(TrackerError):
    """A side-effect assertion made after commit did not hold."""


@contextmanager
def lane_context(pair):
    """Tag any tracker error raised inside the block with the lane it concerns"""
    try:
        yield
    except TrackerError as e:
        if e.pair is None:
            e.pair = pair
        raise
