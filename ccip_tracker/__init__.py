"""
CCIP delivery tracker.

Sends cross-chain messages across a topology of EVM chains and confirms that
every one of them is committed and executed on its destination.
"""

from .chain import Chain, TransactOpts, connect_chain, connect_topology, latest_blocks_by_chain
from .checks import TokenPriceCheck
from .commit import await_commits, confirm_commit_with_expected_range
from .config import ChainConfig, TrackerConfig, load_topology
from .errors import (
    CommitTimeout,
    ConfigError,
    ConfirmationTimeout,
    DuplicateExecutionReceipt,
    EventNotFound,
    ExecutionFailed,
    ExecutionTimeout,
    PostCommitCheckFailed,
    ProtocolViolation,
    SubmissionError,
    TrackerError,
    TransportError,
)
from .execution import await_executions, confirm_exec_with_seq_nums, raise_for_failures
from .orchestrator import (
    MessageTemplate,
    Scenario,
    ScenarioResult,
    ScenarioState,
    confirm_request_on_source_and_dest,
    run_scenario,
)
from .sender import send_message
from .types import (
    NATIVE_FEE_TOKEN,
    CommitReport,
    EVM2AnyMessage,
    ExecutionReceipt,
    ExecutionState,
    SentMessage,
    SeqNumRange,
    SourceDestPair,
    TokenAmount,
    make_evm_extra_args_v2,
    pad_receiver,
)
from .windows import ScanWindows, capture_scan_windows

__version__ = "0.1.0"
