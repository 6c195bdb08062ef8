"""
Core data model for cross-chain message tracking.

Lanes, sequence-number ranges, message payloads and the decoded on-chain
events (message sent, commit report accepted, execution state changed).
All types are immutable once built.
"""

from dataclasses import dataclass, field
from enum import Enum, IntEnum
from typing import Iterator, Tuple

from eth_abi import encode
from eth_utils import keccak, to_bytes, to_checksum_address
from hexbytes import HexBytes

# Fee paid in the chain's native currency
NATIVE_FEE_TOKEN = "0x0000000000000000000000000000000000000000"

# bytes4(keccak256("CCIP EVMExtraArgsV2"))
EVM_EXTRA_ARGS_V2_TAG = bytes.fromhex("181dcf10")


@dataclass(frozen=True, order=True)
class SourceDestPair:
    """One directed lane between two chains."""
    source: int
    dest: int

    def __post_init__(self):
        if self.source == self.dest:
            raise ValueError(f"source and destination must differ, got {self.source}")

    def __str__(self):
        return f"{self.source}->{self.dest}"


@dataclass(frozen=True, order=True)
class SeqNumRange:
    """Inclusive range of sequence numbers."""
    start: int
    end: int

    def __post_init__(self):
        if self.start < 1:
            raise ValueError(f"sequence numbers start at 1, got {self.start}")
        if self.end < self.start:
            raise ValueError(f"invalid range [{self.start}, {self.end}]")

    @classmethod
    def single(cls, seq_num: int) -> "SeqNumRange":
        return cls(seq_num, seq_num)

    @classmethod
    def coerce(cls, value) -> "SeqNumRange":
        if isinstance(value, cls):
            return value
        return cls.single(int(value))

    def contains(self, other: "SeqNumRange") -> bool:
        """True when ``other`` lies entirely inside this range, bounds included."""
        return self.start <= other.start and self.end >= other.end

    def overlaps(self, other: "SeqNumRange") -> bool:
        return self.start <= other.end and other.start <= self.end

    def __iter__(self) -> Iterator[int]:
        return iter(range(self.start, self.end + 1))

    def __len__(self):
        return self.end - self.start + 1

    def __str__(self):
        return f"[{self.start}, {self.end}]"


@dataclass(frozen=True)
class TokenAmount:
    token: str
    amount: int

    def as_abi(self) -> Tuple[str, int]:
        return (to_checksum_address(self.token), self.amount)


@dataclass(frozen=True)
class EVM2AnyMessage:
    """Payload handed to the source chain's router."""
    receiver: bytes
    data: bytes = b""
    token_amounts: Tuple[TokenAmount, ...] = ()
    fee_token: str = NATIVE_FEE_TOKEN
    extra_args: bytes = b""

    @property
    def pays_native_fee(self) -> bool:
        return int(self.fee_token, 16) == 0

    def as_abi(self) -> tuple:
        """Tuple in the field order of the router's message struct."""
        return (
            bytes(self.receiver),
            bytes(self.data),
            [amount.as_abi() for amount in self.token_amounts],
            to_checksum_address(self.fee_token),
            bytes(self.extra_args),
        )


def pad_receiver(address: str) -> bytes:
    """Left-pad a 20 byte EVM address to the 32 byte receiver encoding."""
    raw = to_bytes(hexstr=address)
    if len(raw) > 32:
        raise ValueError(f"receiver too long: {len(raw)} bytes")
    return raw.rjust(32, b"\x00")


def make_evm_extra_args_v2(gas_limit: int, allow_out_of_order: bool) -> bytes:
    """Extra args for an EVM destination: tag followed by abi-encoded (gasLimit, allowOOO)."""
    return EVM_EXTRA_ARGS_V2_TAG + encode(["uint256", "bool"], [gas_limit, allow_out_of_order])


class EventKind(Enum):
    MESSAGE_SENT = "CCIPMessageSent"
    COMMIT_REPORT_ACCEPTED = "CommitReportAccepted"
    EXECUTION_STATE_CHANGED = "ExecutionStateChanged"


class ExecutionState(IntEnum):
    UNTOUCHED = 0
    IN_PROGRESS = 1
    SUCCESS = 2
    FAILURE = 3

    @property
    def is_terminal(self) -> bool:
        return self in (ExecutionState.SUCCESS, ExecutionState.FAILURE)


@dataclass(frozen=True)
class SentMessage:
    """A message accepted by the source chain."""
    pair: SourceDestPair
    sequence_number: int
    message_id: HexBytes
    nonce: int
    sender: str
    receiver: bytes
    data_digest: HexBytes
    fee_token: str
    fee_amount: int
    block_number: int
    tx_hash: HexBytes

    @classmethod
    def from_event(cls, source: int, event) -> "SentMessage":
        args = event["args"]
        return cls(
            pair=SourceDestPair(source, args["destChainSelector"]),
            sequence_number=args["sequenceNumber"],
            message_id=HexBytes(args["messageId"]),
            nonce=args["nonce"],
            sender=args["sender"],
            receiver=bytes(args["receiver"]),
            data_digest=HexBytes(keccak(args["data"])),
            fee_token=args["feeToken"],
            fee_amount=args["feeTokenAmount"],
            block_number=event["blockNumber"],
            tx_hash=HexBytes(event["transactionHash"]),
        )


@dataclass(frozen=True)
class CommitReport:
    """A commit covering a contiguous sequence range for one lane."""
    pair: SourceDestPair
    seq_range: SeqNumRange
    merkle_root: HexBytes
    block_number: int
    tx_hash: HexBytes = field(default=HexBytes(b""), compare=False)
    log_index: int = 0

    @classmethod
    def from_event(cls, dest: int, event) -> "CommitReport":
        args = event["args"]
        return cls(
            pair=SourceDestPair(args["sourceChainSelector"], dest),
            seq_range=SeqNumRange(args["minSeqNr"], args["maxSeqNr"]),
            merkle_root=HexBytes(args["merkleRoot"]),
            block_number=event["blockNumber"],
            tx_hash=HexBytes(event["transactionHash"]),
            log_index=event["logIndex"],
        )


@dataclass(frozen=True)
class ExecutionReceipt:
    """Outcome of replaying one message on the destination chain."""
    pair: SourceDestPair
    sequence_number: int
    message_id: HexBytes
    state: ExecutionState
    block_number: int
    return_data: bytes = b""
    tx_hash: HexBytes = field(default=HexBytes(b""), compare=False)
    log_index: int = 0

    @property
    def succeeded(self) -> bool:
        return self.state == ExecutionState.SUCCESS

    @property
    def log_id(self) -> Tuple[bytes, int]:
        """Identity of the underlying log, stable across rescans."""
        return (bytes(self.tx_hash), self.log_index)

    @classmethod
    def from_event(cls, dest: int, event) -> "ExecutionReceipt":
        args = event["args"]
        return cls(
            pair=SourceDestPair(args["sourceChainSelector"], dest),
            sequence_number=args["sequenceNumber"],
            message_id=HexBytes(args["messageId"]),
            state=ExecutionState(args["state"]),
            block_number=event["blockNumber"],
            return_data=bytes(args["returnData"]),
            tx_hash=HexBytes(event["transactionHash"]),
            log_index=event["logIndex"],
        )

