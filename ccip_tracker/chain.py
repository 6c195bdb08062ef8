"""
Chain handle: read/write access to one chain of the topology.

Wraps a Web3 connection plus the lane contracts deployed on that chain and
exposes the four capabilities the tracker consumes: latest block height,
submit-and-confirm, event scans over a block range, and fee quotes.
"""

import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass, replace
from typing import Dict, Iterable, Iterator, Optional

from eth_utils import to_checksum_address
from hexbytes import HexBytes
from requests.exceptions import RequestException
from web3 import Web3
from web3.exceptions import ContractLogicError, TimeExhausted, Web3Exception

from .artifacts import FEE_QUOTER, OFFRAMP, ROUTER, load_abi
from .config import ChainConfig, TrackerConfig
from .errors import ConfirmationTimeout, SubmissionError, TransportError
from .types import EventKind, EVM2AnyMessage

logger = logging.getLogger(__name__)

# Errors raised by web3 and the HTTP stack when a node misbehaves
TRANSPORT_ERRORS = (Web3Exception, RequestException, OSError)


@dataclass(frozen=True)
class TransactOpts:
    """Transaction parameters for one submission."""
    sender: str
    value: Optional[int] = None
    gas: Optional[int] = None

    def as_tx_params(self) -> dict:
        params = {"from": self.sender}
        if self.value is not None:
            params["value"] = self.value
        if self.gas is not None:
            params["gas"] = self.gas
        return params


@dataclass(frozen=True)
class TxConfirmation:
    tx_hash: HexBytes
    block_number: int
    gas_used: int


class Chain:
    """One chain of the topology, identified by its chain selector."""

    def __init__(
        self,
        selector: int,
        w3: Web3,
        router,
        offramp,
        sender: str,
        private_key: Optional[str] = None,
        name: Optional[str] = None,
        receiver: Optional[str] = None,
        fee_quoter=None,
        link_token: Optional[str] = None,
        confirm_timeout: float = 120.0,
        max_block_range: Optional[int] = None,
    ):
        self.selector = selector
        self.w3 = w3
        self.router = router
        self.offramp = offramp
        self.private_key = private_key
        self.name = name or f"chain-{selector}"
        self.receiver = receiver
        self.fee_quoter = fee_quoter
        self.link_token = link_token
        self.confirm_timeout = confirm_timeout
        self.max_block_range = max_block_range

        self._opts = TransactOpts(sender=sender)
        # Sends from one account must reach the node in nonce order
        self._send_lock = threading.Lock()

    def __repr__(self):
        return f"Chain(name={self.name!r}, selector={self.selector})"

    def __str__(self):
        return f"{self.name} ({self.selector})"

    @property
    def opts(self) -> TransactOpts:
        return self._opts

    @contextmanager
    def attached_value(self, value: int) -> Iterator[TransactOpts]:
        """Transaction options carrying ``value`` for the duration of the block.

        The chain's own options are never modified, so the value cannot leak
        onto later sends from the same account, even when the block raises.
        """
        yield replace(self._opts, value=value)

    def _rpc(self, operation: str, fn, *args, **kwargs):
        try:
            return fn(*args, **kwargs)
        except ContractLogicError:
            raise
        except TRANSPORT_ERRORS as e:
            raise TransportError(self, operation, e) from e

    def latest_block_height(self) -> int:
        return self._rpc("read latest block", lambda: self.w3.eth.block_number)

    def get_fee(self, dest: int, message: EVM2AnyMessage) -> int:
        """Quote the fee for sending ``message`` to ``dest`` through the router"""
        call = self.router.functions.getFee(dest, message.as_abi())
        try:
            return self._rpc("get fee", call.call)
        except TransportError:
            raise
        except Exception as e:
            # Revert on the quote: the router rejects this destination or message
            raise SubmissionError(
                f"failed to get fee for {self.selector}->{dest}: {e}", chain=self
            ) from e

    def _submit(self, call, opts: TransactOpts) -> HexBytes:
        if self.private_key is None:
            # Node-managed account (eth-tester, local dev nodes)
            return call.transact(opts.as_tx_params())

        tx = call.build_transaction({
            **opts.as_tx_params(),
            "nonce": self.w3.eth.get_transaction_count(opts.sender, "pending"),
            "chainId": self.w3.eth.chain_id,
        })
        signed_tx = self.w3.eth.account.sign_transaction(tx, self.private_key)
        return self.w3.eth.send_raw_transaction(signed_tx.raw_transaction)

    def submit_and_confirm(self, call, opts: Optional[TransactOpts] = None) -> TxConfirmation:
        """Submit a contract call and block until it is mined successfully"""
        opts = opts or self._opts

        with self._send_lock:
            try:
                tx_hash = HexBytes(self._submit(call, opts))
            except (RequestException, OSError) as e:
                raise TransportError(self, "submit transaction", e) from e
            except Exception as e:
                raise SubmissionError(f"transaction rejected by {self}: {e}", chain=self) from e

        try:
            receipt = self.w3.eth.wait_for_transaction_receipt(
                tx_hash, timeout=self.confirm_timeout
            )
        except TimeExhausted as e:
            raise ConfirmationTimeout(self, tx_hash.hex(), self.confirm_timeout) from e
        except TRANSPORT_ERRORS as e:
            raise TransportError(self, "wait for receipt", e) from e

        if receipt["status"] != 1:
            raise SubmissionError(f"transaction {tx_hash.hex()} reverted on {self}", chain=self)

        logger.debug("Confirmed %s on %s in block %d", tx_hash.hex(), self, receipt["blockNumber"])
        return TxConfirmation(tx_hash, receipt["blockNumber"], receipt["gasUsed"])

    def _event(self, kind: EventKind):
        contract = self.router if kind is EventKind.MESSAGE_SENT else self.offramp
        return getattr(contract.events, kind.value)

    def scan_events(
        self,
        kind: EventKind,
        from_block: int,
        to_block: Optional[int] = None,
        argument_filters: Optional[Dict] = None,
    ) -> Iterator:
        """Yield matching events in block order.

        Scanning has no side effects, so the same range can be rescanned as
        often as needed. With ``max_block_range`` set the range is fetched in
        chunks to stay under node log-query limits.
        """
        if to_block is None:
            to_block = self.latest_block_height()

        event = self._event(kind)
        step = self.max_block_range or max(to_block - from_block + 1, 1)
        start = from_block
        while start <= to_block:
            end = min(start + step - 1, to_block)
            logs = self._rpc(
                f"scan {kind.value} [{start}, {end}]",
                event.get_logs,
                argument_filters=argument_filters,
                from_block=start,
                to_block=end,
            )
            yield from sorted(logs, key=lambda log: (log["blockNumber"], log["logIndex"]))
            start = end + 1


def connect_chain(
    chain_config: ChainConfig,
    private_key: Optional[str] = None,
    tracker_config: Optional[TrackerConfig] = None,
) -> Chain:
    """Connect to a configured chain and bind its lane contracts"""
    tracker_config = tracker_config or TrackerConfig()
    w3 = Web3(Web3.HTTPProvider(chain_config.rpc_url, request_kwargs={"timeout": 10}))

    try:
        connected = w3.is_connected()
    except TRANSPORT_ERRORS as e:
        raise TransportError(chain_config.name, "connect", e) from e
    if not connected:
        raise TransportError(
            chain_config.name, "connect", ConnectionError(f"Cannot connect to {chain_config.rpc_url}")
        )

    if private_key:
        sender = w3.eth.account.from_key(private_key).address
    else:
        accounts = w3.eth.accounts
        if not accounts:
            raise SubmissionError(f"No accounts available on {chain_config.name} and no private key configured")
        sender = accounts[0]

    fee_quoter = None
    if chain_config.fee_quoter:
        fee_quoter = w3.eth.contract(
            address=to_checksum_address(chain_config.fee_quoter), abi=load_abi(FEE_QUOTER)
        )

    return Chain(
        selector=chain_config.selector,
        w3=w3,
        router=w3.eth.contract(address=to_checksum_address(chain_config.router), abi=load_abi(ROUTER)),
        offramp=w3.eth.contract(address=to_checksum_address(chain_config.offramp), abi=load_abi(OFFRAMP)),
        sender=sender,
        private_key=private_key,
        name=chain_config.name,
        receiver=chain_config.receiver,
        fee_quoter=fee_quoter,
        link_token=chain_config.link_token,
        confirm_timeout=tracker_config.confirm_timeout,
        max_block_range=tracker_config.max_block_range,
    )


def connect_topology(
    chain_configs: Iterable[ChainConfig],
    private_key: Optional[str] = None,
    tracker_config: Optional[TrackerConfig] = None,
) -> Dict[int, Chain]:
    return {
        cfg.selector: connect_chain(cfg, private_key, tracker_config)
        for cfg in chain_configs
    }


def latest_blocks_by_chain(chains: Iterable[Chain]) -> Dict[int, int]:
    """Latest block height of every chain, keyed by selector"""
    return {chain.selector: chain.latest_block_height() for chain in chains}
