"""
Unit tests for sending messages and recovering their sequence numbers.
"""

import pytest
from eth_utils import keccak
from hexbytes import HexBytes

from ccip_tracker.errors import EventNotFound, ProtocolViolation, SubmissionError
from ccip_tracker.sender import send_message
from ccip_tracker.types import (
    EVM2AnyMessage,
    SourceDestPair,
    TokenAmount,
    make_evm_extra_args_v2,
    pad_receiver,
)


def hello(dest):
    return EVM2AnyMessage(receiver=pad_receiver(dest.receiver), data=b"hello world")


@pytest.mark.unit
class TestSendMessage:
    """Test send_message against an in-memory source chain"""

    def test_first_send_gets_sequence_one(self, two_chains, chain_a, chain_b, base_fee, fee_per_byte):
        sent = send_message(chain_a, chain_b.selector, hello(chain_b))

        assert sent.pair == SourceDestPair(chain_a.selector, chain_b.selector)
        assert sent.sequence_number == 1
        assert sent.nonce == 1
        assert sent.sender == chain_a.opts.sender
        assert sent.receiver == pad_receiver(chain_b.receiver)
        assert sent.data_digest == HexBytes(keccak(b"hello world"))
        assert sent.fee_amount == base_fee + fee_per_byte * len(b"hello world")
        assert sent.block_number == chain_a.latest_block_height()

    def test_sequence_numbers_strictly_increase(self, two_chains, chain_a, chain_b):
        seq_nums = [send_message(chain_a, chain_b.selector, hello(chain_b)).sequence_number for _ in range(4)]
        assert seq_nums == [1, 2, 3, 4]

    def test_sequence_numbers_are_per_destination(self, three_chains, chain_a, chain_b, chain_c):
        send_message(chain_a, chain_b.selector, hello(chain_b))
        send_message(chain_a, chain_b.selector, hello(chain_b))

        to_c = send_message(chain_a, chain_c.selector, hello(chain_c))
        assert to_c.sequence_number == 1

    def test_message_ids_are_distinct(self, two_chains, chain_a, chain_b):
        first = send_message(chain_a, chain_b.selector, hello(chain_b))
        second = send_message(chain_a, chain_b.selector, hello(chain_b))
        assert first.message_id != second.message_id

    def test_native_fee_does_not_leak(self, two_chains, chain_a, chain_b):
        send_message(chain_a, chain_b.selector, hello(chain_b))
        assert chain_a.opts.value is None

    def test_token_fee_sends_without_value(self, two_chains, chain_a, chain_b):
        message = EVM2AnyMessage(
            receiver=pad_receiver(chain_b.receiver),
            data=b"hello world",
            fee_token=chain_a.link_token,
        )
        sent = send_message(chain_a, chain_b.selector, message)

        assert sent.fee_token == chain_a.link_token
        assert chain_a.w3.eth.get_transaction(sent.tx_hash)['value'] == 0

    def test_extra_args_and_token_amounts(self, two_chains, chain_a, chain_b):
        message = EVM2AnyMessage(
            receiver=pad_receiver(chain_b.receiver),
            data=b"hello world",
            token_amounts=(TokenAmount(chain_a.link_token, 10**18),),
            extra_args=make_evm_extra_args_v2(200_000, False),
        )
        sent = send_message(chain_a, chain_b.selector, message)
        assert sent.sequence_number == 1

    def test_unsupported_destination(self, two_chains, chain_a, chain_b, unknown_selector):
        with pytest.raises(SubmissionError) as exc_info:
            send_message(chain_a, unknown_selector, hello(chain_b))
        assert exc_info.value.pair == SourceDestPair(chain_a.selector, unknown_selector)

    def test_missing_event_is_protocol_violation(self, two_chains, chain_a, chain_b, monkeypatch):
        monkeypatch.setattr(chain_a, "scan_events", lambda *args, **kwargs: iter(()))

        with pytest.raises(EventNotFound) as exc_info:
            send_message(chain_a, chain_b.selector, hello(chain_b))
        assert exc_info.value.pair == SourceDestPair(chain_a.selector, chain_b.selector)

    def test_two_send_events_is_protocol_violation(self, two_chains, chain_a, chain_b, monkeypatch):
        scan_events = chain_a.scan_events

        def each_event_twice(*args, **kwargs):
            for event in scan_events(*args, **kwargs):
                yield event
                yield event

        monkeypatch.setattr(chain_a, "scan_events", each_event_twice)

        with pytest.raises(ProtocolViolation, match="2 CCIPMessageSent events") as exc_info:
            send_message(chain_a, chain_b.selector, hello(chain_b))
        assert exc_info.value.pair == SourceDestPair(chain_a.selector, chain_b.selector)
