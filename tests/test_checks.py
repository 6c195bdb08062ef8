"""
Unit tests for post-commit checks.
"""

import pytest

from ccip_tracker.artifacts import FEE_QUOTER, load_abi
from ccip_tracker.checks import TokenPriceCheck
from ccip_tracker.errors import PostCommitCheckFailed
from ccip_tracker.sender import send_message
from ccip_tracker.types import EVM2AnyMessage, pad_receiver


def send_both_ways(chain_a, chain_b):
    for source, dest in ((chain_a, chain_b), (chain_b, chain_a)):
        message = EVM2AnyMessage(receiver=pad_receiver(dest.receiver), data=b"hello world")
        send_message(source, dest.selector, message)


@pytest.mark.unit
class TestTokenPriceCheck:
    """Test the link token price check"""

    def test_passes_after_commit(self, two_chains, chain_a, chain_b, relay_factory, mock_link_price):
        send_both_ways(chain_a, chain_b)
        relay_factory(two_chains).relay_once()

        TokenPriceCheck(mock_link_price)(two_chains)

    def test_fails_before_commit(self, two_chains, chain_a, chain_b, mock_link_price):
        with pytest.raises(PostCommitCheckFailed) as exc_info:
            TokenPriceCheck(mock_link_price)(two_chains)

        message = str(exc_info.value)
        assert f"chain {chain_a.selector}: price 0" in message
        assert f"chain {chain_b.selector}: price 0" in message

    def test_reports_wrong_price(self, two_chains, chain_a, chain_b, relay_factory, mock_link_price):
        send_both_ways(chain_a, chain_b)
        relay_factory(two_chains, link_price=mock_link_price // 2).relay_once()

        with pytest.raises(PostCommitCheckFailed, match=f"expected {mock_link_price}"):
            TokenPriceCheck(mock_link_price)(two_chains)

    def test_missing_fee_quoter(self, two_chains, chain_a, chain_b, relay_factory, mock_link_price):
        send_both_ways(chain_a, chain_b)
        relay_factory(two_chains).relay_once()
        chain_b.fee_quoter = None

        with pytest.raises(PostCommitCheckFailed, match="no fee quoter"):
            TokenPriceCheck(mock_link_price)(two_chains)

    def test_custom_token(self, two_chains, chain_a, chain_b, relay_factory, mock_link_price):
        send_both_ways(chain_a, chain_b)
        relay_factory(two_chains).relay_once()
        other_token = chain_a.w3.eth.accounts[5]

        with pytest.raises(PostCommitCheckFailed):
            TokenPriceCheck(mock_link_price, token=lambda chain: other_token)(two_chains)

    def test_fee_quoter_without_code(self, two_chains, chain_a, chain_b, relay_factory, mock_link_price):
        send_both_ways(chain_a, chain_b)
        relay_factory(two_chains).relay_once()
        chain_b.fee_quoter = chain_b.w3.eth.contract(address=chain_b.w3.eth.accounts[6], abi=load_abi(FEE_QUOTER))

        with pytest.raises(PostCommitCheckFailed, match=f"chain {chain_b.selector}: price read failed"):
            TokenPriceCheck(mock_link_price)(two_chains)
