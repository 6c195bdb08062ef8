#!/usr/bin/env python3
"""
CCIP Scenario Runner

Sends one message on every lane of a configured topology and waits until
each of them is committed and executed on its destination chain.

Usage:
    python scripts/run_scenario.py local
    python scripts/run_scenario.py local --expected-link-price 500000000000000000000
    python scripts/run_scenario.py local --json --timeout 900

Environment:
    DEPLOYER_PRIVATE_KEY   signs sends (node-managed accounts otherwise)
    CCIP_POLL_INTERVAL, CCIP_COMMIT_TIMEOUT, CCIP_EXEC_TIMEOUT,
    CCIP_CONFIRM_TIMEOUT, CCIP_MAX_BLOCK_RANGE
"""

import argparse
import json
import logging
import os
import sys

from dotenv import load_dotenv

from ccip_tracker import (
    MessageTemplate,
    Scenario,
    TokenPriceCheck,
    TrackerConfig,
    TrackerError,
    connect_topology,
    latest_blocks_by_chain,
    load_topology,
)
from ccip_tracker.config import DEFAULT_CONFIG_PATH

load_dotenv()


def summarize(result) -> list:
    """One row per lane of a finished scenario"""
    rows = []
    for pair, sent in sorted(result.sent.items()):
        commit = result.commits.get(pair)
        receipts = result.executions.get(pair, {})
        receipt = receipts.get(sent.sequence_number)
        rows.append({
            "source": pair.source,
            "dest": pair.dest,
            "message_id": sent.message_id.hex(),
            "sequence_number": sent.sequence_number,
            "send_tx": sent.tx_hash.hex(),
            "commit_range": [commit.seq_range.start, commit.seq_range.end] if commit else None,
            "commit_block": commit.block_number if commit else None,
            "execution_state": receipt.state.name if receipt else None,
            "execution_block": receipt.block_number if receipt else None,
        })
    return rows


def print_summary(rows: list):
    for row in rows:
        state = row["execution_state"] or "PENDING"
        prefix = "[OK]" if state == "SUCCESS" else "[WARN]"
        print(f"{prefix} {row['source']} -> {row['dest']} seqNum {row['sequence_number']}")
        print(f"    message id: {row['message_id'][:18]}...")
        print(f"    send tx:    {row['send_tx'][:18]}...")
        if row["commit_range"]:
            print(f"    committed:  {row['commit_range']} in block {row['commit_block']}")
        print(f"    execution:  {state}" + (f" in block {row['execution_block']}" if row["execution_block"] else ""))
        print()


def main():
    parser = argparse.ArgumentParser(description="Send on every lane and confirm commit and execution")
    parser.add_argument("network", nargs="?", default="local", help="Network topology from config/networks.json")
    parser.add_argument("--config", default=str(DEFAULT_CONFIG_PATH), help="Path to networks.json")
    parser.add_argument("--timeout", type=float, help="Overall deadline for the scenario in seconds")
    parser.add_argument("--data", default="hello world", help="Message payload")
    parser.add_argument("--expected-link-price", type=int,
                        help="Check every fee quoter reports this link price after commit")
    parser.add_argument("--allow-failures", action="store_true",
                        help="Accept FAILURE execution receipts instead of failing the run")
    parser.add_argument("--json", action="store_true", help="Output as JSON")
    parser.add_argument("--verbose", "-v", action="store_true", help="Log tracker progress")

    args = parser.parse_args()

    if args.verbose:
        logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    try:
        config = TrackerConfig.from_env()
        chain_configs = load_topology(args.network, args.config)
        chains = connect_topology(chain_configs, os.getenv("DEPLOYER_PRIVATE_KEY"), config)
        heights = latest_blocks_by_chain(chains.values())
    except TrackerError as e:
        print(f"[ERROR] {e}")
        sys.exit(1)

    if not args.json:
        print("=" * 50)
        print(f"CCIP Scenario - {args.network}")
        print("=" * 50)
        for chain in chains.values():
            print(f"[OK] {chain} at block {heights[chain.selector]}")
        print()

    checks = []
    if args.expected_link_price is not None:
        checks.append(TokenPriceCheck(args.expected_link_price))

    scenario = Scenario(
        chains,
        template=MessageTemplate(data=args.data.encode()),
        config=config,
        post_commit_checks=checks,
        require_success=not args.allow_failures,
    )

    try:
        result = scenario.run(timeout=args.timeout)
    except TrackerError as e:
        if args.json:
            print(json.dumps({
                "state": scenario.state.value,
                "history": [state.value for state in scenario.history],
                "error": str(e),
                "lanes": summarize(scenario.result) if scenario.result else [],
            }, indent=2))
        else:
            print(f"[ERROR] {e}")
            print(f"        states: {' -> '.join(state.name for state in scenario.history)}")
        sys.exit(1)

    rows = summarize(result)
    if args.json:
        print(json.dumps({
            "state": scenario.state.value,
            "history": [state.value for state in scenario.history],
            "lanes": rows,
        }, indent=2))
        return

    print_summary(rows)
    print(f"[OK] {len(rows)} lane(s) committed and executed")


if __name__ == "__main__":
    main()
