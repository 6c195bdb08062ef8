"""
Message sender: submit one cross-chain message and recover the sequence
number the source chain assigned to it.
"""

import logging

from .chain import Chain
from .errors import EventNotFound, ProtocolViolation, lane_context
from .types import EventKind, EVM2AnyMessage, SentMessage, SourceDestPair

logger = logging.getLogger(__name__)


def send_message(chain: Chain, dest: int, message: EVM2AnyMessage) -> SentMessage:
    """Send ``message`` from ``chain`` to the chain with selector ``dest``.

    The fee is quoted first. When it is paid in native currency the exact
    amount is attached to this one submission only. After confirmation the
    confirming block is scanned for the router's CCIPMessageSent events
    emitted by this transaction; exactly one is expected.

    Raises SubmissionError, ConfirmationTimeout, EventNotFound,
    ProtocolViolation or TransportError, each tagged with the lane.
    """
    pair = SourceDestPair(chain.selector, dest)
    logger.info("Sending CCIP request from chain selector %d to chain selector %d", pair.source, pair.dest)

    with lane_context(pair):
        fee = chain.get_fee(dest, message)
        call = chain.router.functions.ccipSend(dest, message.as_abi())

        if message.pays_native_fee:
            with chain.attached_value(fee) as opts:
                confirmation = chain.submit_and_confirm(call, opts)
        else:
            confirmation = chain.submit_and_confirm(call)

        block = confirmation.block_number
        events = [
            event
            for event in chain.scan_events(
                EventKind.MESSAGE_SENT, block, block, argument_filters={"destChainSelector": dest}
            )
            if event["transactionHash"] == confirmation.tx_hash
        ]
        if not events:
            raise EventNotFound(
                f"no CCIPMessageSent for {pair} in block {block} (tx {confirmation.tx_hash.hex()})",
                chain=chain,
            )
        if len(events) > 1:
            raise ProtocolViolation(
                f"{len(events)} CCIPMessageSent events for {pair} in tx {confirmation.tx_hash.hex()}, expected one",
                chain=chain,
            )

    sent = SentMessage.from_event(chain.selector, events[0])
    logger.info(
        "CCIP message (id %s) sent from chain selector %d to chain selector %d tx %s seqNum %d nonce %d sender %s",
        sent.message_id.hex(),
        pair.source,
        pair.dest,
        sent.tx_hash.hex(),
        sent.sequence_number,
        sent.nonce,
        sent.sender,
    )
    return sent
