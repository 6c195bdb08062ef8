"""
Shared pytest fixtures for tracker testing.

Every simulated chain is its own EthereumTester with the lane contracts
(Router, OffRamp, FeeQuoter) deployed. A Relay plays the off-chain layer
between them: it picks up new CCIPMessageSent events on each source, commits
them on the destination OffRamp, refreshes the destination's link price and
executes each message.
"""

import threading
from collections import defaultdict

import pytest
from eth_tester import EthereumTester, PyEVMBackend
from web3 import Web3
from web3.providers.eth_tester import EthereumTesterProvider

from ccip_tracker.artifacts import FEE_QUOTER, LANE_CONTRACTS, OFFRAMP, ROUTER, compile_contract
from ccip_tracker.chain import Chain
from ccip_tracker.config import TrackerConfig
from ccip_tracker.types import SourceDestPair

# Chain selectors of the local topology in config/networks.json
SELECTOR_A = 909606746561742123
SELECTOR_B = 5548718428018410741
SELECTOR_C = 789068866484373046

BASE_FEE = 10**15
FEE_PER_BYTE = 10**12

# Price the relay reports for the link token on every commit
MOCK_LINK_PRICE = 500 * 10**18
LINK_TOKEN = Web3.to_checksum_address("0x" + "5a" * 20)


class SerializedEthereumTesterProvider(EthereumTesterProvider):
    """EthereumTesterProvider that lets one request at a time into the tester.

    The tracker polls several lanes from worker threads while the relay
    writes from its own thread; py-evm itself is not thread-safe.
    """

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self._request_lock = threading.RLock()

    def make_request(self, method, params):
        with self._request_lock:
            return super().make_request(method, params)


def deploy(w3, name, *args, sender):
    artifact = compile_contract(name)
    Contract = w3.eth.contract(abi=artifact['abi'], bytecode=artifact['bytecode'])
    tx_hash = Contract.constructor(*args).transact({'from': sender})
    tx_receipt = w3.eth.wait_for_transaction_receipt(tx_hash)
    return w3.eth.contract(address=tx_receipt.contractAddress, abi=artifact['abi'])


def make_chain(selector: int, name: str = None, with_fee_quoter: bool = True) -> Chain:
    """Fresh eth-tester chain with the lane contracts deployed"""
    w3 = Web3(SerializedEthereumTesterProvider(EthereumTester(backend=PyEVMBackend())))
    owner, transmitter, receiver = w3.eth.accounts[:3]

    router = deploy(w3, ROUTER, selector, BASE_FEE, FEE_PER_BYTE, sender=owner)
    offramp = deploy(w3, OFFRAMP, selector, sender=owner)
    offramp.functions.setTransmitter(transmitter, True).transact({'from': owner})

    fee_quoter = None
    if with_fee_quoter:
        fee_quoter = deploy(w3, FEE_QUOTER, sender=owner)
        fee_quoter.functions.setPriceUpdater(transmitter, True).transact({'from': owner})

    return Chain(
        selector=selector,
        w3=w3,
        router=router,
        offramp=offramp,
        sender=owner,
        name=name,
        receiver=receiver,
        fee_quoter=fee_quoter,
        link_token=LINK_TOKEN,
        confirm_timeout=10,
    )


def connect_lanes(chains: dict):
    """Enable every other chain of the topology as a destination on each router"""
    for chain in chains.values():
        for dest in chains:
            if dest != chain.selector:
                chain.router.functions.setDestChain(dest, True).transact({'from': chain.opts.sender})
    return chains


class Relay:
    """Stand-in for the off-chain commit and execution layer.

    Each pass reads new CCIPMessageSent events on every source router, then
    for every lane with pending messages commits them as one range on the
    destination and executes them. Lanes in ``blocked`` are never committed,
    lanes in ``commit_only`` are committed but never executed, and
    ``(pair, seq)`` entries in ``failing`` execute with FAILURE.
    """

    def __init__(self, chains: dict, interval: float = 0.05, link_price: int = MOCK_LINK_PRICE):
        self.chains = chains
        self.interval = interval
        self.link_price = link_price
        self.blocked = set()
        self.commit_only = set()
        self.failing = set()
        self.errors = []

        self._cursors = {selector: 0 for selector in chains}
        self._pending = defaultdict(list)
        self._lock = threading.Lock()
        self._stop = threading.Event()
        self._thread = None

    def collect(self):
        for selector, chain in self.chains.items():
            latest = chain.w3.eth.block_number
            start = self._cursors[selector]
            if start > latest:
                continue
            logs = chain.router.events.CCIPMessageSent.get_logs(from_block=start, to_block=latest)
            self._cursors[selector] = latest + 1
            for log in sorted(logs, key=lambda log: (log['blockNumber'], log['logIndex'])):
                pair = SourceDestPair(selector, log['args']['destChainSelector'])
                self._pending[pair].append((log['args']['sequenceNumber'], log['args']['messageId']))

    def deliver(self, pair: SourceDestPair, messages: list):
        dest = self.chains[pair.dest]
        tx = {'from': dest.w3.eth.accounts[1]}
        seq_nums = [seq_num for seq_num, _ in messages]
        merkle_root = Web3.keccak(b"".join(bytes(message_id) for _, message_id in messages))

        dest.offramp.functions.commit(pair.source, min(seq_nums), max(seq_nums), merkle_root).transact(tx)
        if dest.fee_quoter is not None:
            dest.fee_quoter.functions.updatePrice(dest.link_token, self.link_price).transact(tx)

        if pair in self.commit_only:
            return
        # Newest first: receipts within a range carry no ordering
        for seq_num, message_id in reversed(messages):
            success = (pair, seq_num) not in self.failing
            dest.offramp.functions.execute(pair.source, seq_num, message_id, success).transact(tx)

    def relay_once(self):
        with self._lock:
            self.collect()
            for pair in sorted(self._pending):
                messages = self._pending[pair]
                if not messages or pair in self.blocked:
                    continue
                self._pending[pair] = []
                self.deliver(pair, messages)

    def _run(self):
        while not self._stop.is_set():
            try:
                self.relay_once()
            except Exception as e:
                self.errors.append(e)
                return
            self._stop.wait(self.interval)

    def start(self):
        self._thread = threading.Thread(target=self._run, name="relay", daemon=True)
        self._thread.start()
        return self

    def stop(self):
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout=5)


@pytest.fixture(scope="session")
def lane_artifacts():
    """Compile the lane contracts once per test session"""
    return {name: compile_contract(name) for name in LANE_CONTRACTS}


@pytest.fixture
def chain_a(lane_artifacts):
    return make_chain(SELECTOR_A, "chain-a")


@pytest.fixture
def chain_b(lane_artifacts):
    return make_chain(SELECTOR_B, "chain-b")


@pytest.fixture
def chain_c(lane_artifacts):
    return make_chain(SELECTOR_C, "chain-c")


@pytest.fixture
def two_chains(chain_a, chain_b):
    """Topology A <-> B"""
    return connect_lanes({chain_a.selector: chain_a, chain_b.selector: chain_b})


@pytest.fixture
def three_chains(chain_a, chain_b, chain_c):
    """Topology with all six lanes between A, B and C"""
    return connect_lanes({
        chain_a.selector: chain_a,
        chain_b.selector: chain_b,
        chain_c.selector: chain_c,
    })


@pytest.fixture
def lane_ab():
    return SourceDestPair(SELECTOR_A, SELECTOR_B)


@pytest.fixture
def lane_ba():
    return SourceDestPair(SELECTOR_B, SELECTOR_A)


@pytest.fixture
def relay_factory():
    """Build relays that are stopped when the test ends"""
    relays = []

    def factory(chains, **kwargs):
        relay = Relay(chains, **kwargs)
        relays.append(relay)
        return relay

    yield factory
    for relay in relays:
        relay.stop()


@pytest.fixture
def fast_config():
    """Tracker config with short intervals for in-memory chains"""
    return TrackerConfig(poll_interval=0.05, commit_timeout=10, exec_timeout=10, confirm_timeout=10)


# Constants as fixtures
@pytest.fixture
def base_fee():
    return BASE_FEE


@pytest.fixture
def fee_per_byte():
    return FEE_PER_BYTE


@pytest.fixture
def mock_link_price():
    return MOCK_LINK_PRICE


@pytest.fixture
def unknown_selector():
    """Selector of a chain no router in the topology has enabled"""
    return 3734403246176062136
