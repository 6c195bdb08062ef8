#!/usr/bin/env python3
"""
CCIP Lane Monitor

Prints lane events (CCIPMessageSent, CommitReportAccepted,
ExecutionStateChanged) across every chain of a topology, either from a
given block or live as new blocks arrive.
"""

import argparse
import json
import os
import sys
import time

from dotenv import load_dotenv

from ccip_tracker import TrackerError, connect_topology, load_topology
from ccip_tracker.config import DEFAULT_CONFIG_PATH
from ccip_tracker.types import EventKind, ExecutionState

load_dotenv()


class LaneMonitor:
    def __init__(self, network: str = "local", config_path: str = str(DEFAULT_CONFIG_PATH)):
        self.network = network
        self.config_path = config_path
        self.chains = {}

    def connect(self):
        """Connect to every chain of the topology"""
        chain_configs = load_topology(self.network, self.config_path)
        self.chains = connect_topology(chain_configs, os.getenv("DEPLOYER_PRIVATE_KEY"))
        return True

    def get_historical_events(self, chain, from_block: int, to_block: int = None):
        """Lane events of one chain, in block order"""
        events = []
        for kind in EventKind:
            events.extend((kind, event) for event in chain.scan_events(kind, from_block, to_block))

        events.sort(key=lambda x: (x[1]['blockNumber'], x[1]['logIndex']))
        return events

    def print_event(self, chain, kind: EventKind, event):
        """Print a single event"""
        args = event['args']
        block = event['blockNumber']
        tx_hash = event['transactionHash'].hex()[:16] + "..."

        if kind is EventKind.EXECUTION_STATE_CHANGED and args['state'] != ExecutionState.SUCCESS:
            prefix = "[!]"
        elif kind is EventKind.EXECUTION_STATE_CHANGED:
            prefix = "[+]"
        else:
            prefix = "[*]"

        print(f"{prefix} {chain.name} block {block} | {kind.value}")
        print(f"    TX: {tx_hash}")

        if kind is EventKind.MESSAGE_SENT:
            print(f"    lane: {chain.selector} -> {args['destChainSelector']}")
            print(f"    seqNum: {args['sequenceNumber']} nonce: {args['nonce']}")
            print(f"    message id: {args['messageId'].hex()[:16]}...")
        elif kind is EventKind.COMMIT_REPORT_ACCEPTED:
            print(f"    lane: {args['sourceChainSelector']} -> {chain.selector}")
            print(f"    range: [{args['minSeqNr']}, {args['maxSeqNr']}]")
        else:
            print(f"    lane: {args['sourceChainSelector']} -> {chain.selector}")
            print(f"    seqNum: {args['sequenceNumber']} state: {ExecutionState(args['state']).name}")
            if args['returnData']:
                print(f"    return data: {args['returnData'].hex()}")

        print()

    def watch(self, poll_interval: int = 5):
        """Watch every chain for new lane events"""
        print(f"Watching for lane events on {self.network}...")
        print("Press Ctrl+C to stop")
        print()

        last_blocks = {selector: chain.latest_block_height() for selector, chain in self.chains.items()}

        while True:
            try:
                for selector, chain in self.chains.items():
                    current_block = chain.latest_block_height()
                    if current_block <= last_blocks[selector]:
                        continue

                    events = self.get_historical_events(chain, last_blocks[selector] + 1, current_block)
                    for kind, event in events:
                        self.print_event(chain, kind, event)
                    last_blocks[selector] = current_block

                time.sleep(poll_interval)

            except KeyboardInterrupt:
                print("\nStopping lane monitor...")
                break
            except TrackerError as e:
                print(f"[ERROR] {e}")
                time.sleep(poll_interval)


def event_as_json(chain, kind: EventKind, event) -> dict:
    return {
        "chain": chain.name,
        "selector": chain.selector,
        "event": kind.value,
        "block": event['blockNumber'],
        "tx_hash": event['transactionHash'].hex(),
        "args": {k: v.hex() if isinstance(v, bytes) else v for k, v in event['args'].items()},
    }


def main():
    parser = argparse.ArgumentParser(description="Monitor CCIP lane events across a topology")
    parser.add_argument("network", nargs="?", default="local", help="Network topology to monitor")
    parser.add_argument("--config", default=str(DEFAULT_CONFIG_PATH), help="Path to networks.json")
    parser.add_argument("--from-block", type=int, default=0, help="Start from specific block")
    parser.add_argument("--watch", "-w", action="store_true", help="Watch for new events")
    parser.add_argument("--interval", type=int, default=5, help="Polling interval in seconds when watching")
    parser.add_argument("--json", action="store_true", help="Output as JSON")

    args = parser.parse_args()

    monitor = LaneMonitor(args.network, args.config)

    try:
        monitor.connect()
    except TrackerError as e:
        print(f"[ERROR] {e}")
        sys.exit(1)

    if not args.json:
        print("=" * 50)
        print(f"CCIP Lane Monitor - {args.network}")
        for chain in monitor.chains.values():
            print(f"{chain}: router {chain.router.address}, offramp {chain.offramp.address}")
        print("=" * 50)
        print()

    if args.watch:
        monitor.watch(args.interval)
        return

    try:
        per_chain = [
            (chain, monitor.get_historical_events(chain, args.from_block))
            for chain in monitor.chains.values()
        ]
    except TrackerError as e:
        print(f"[ERROR] {e}")
        sys.exit(1)

    if args.json:
        output = [event_as_json(chain, kind, event) for chain, events in per_chain for kind, event in events]
        print(json.dumps(output, indent=2))
        return

    total = sum(len(events) for _, events in per_chain)
    if not total:
        print("No lane events found")
        return

    print(f"Found {total} events from block {args.from_block}:")
    print()
    for chain, events in per_chain:
        for kind, event in events:
            monitor.print_event(chain, kind, event)


if __name__ == "__main__":
    main()
