"""
Post-commit checks: read-only assertions on side effects that only become
visible once commit reports have landed.
"""

import logging
from collections.abc import Mapping
from typing import Callable, Optional

from web3.exceptions import BadFunctionCallOutput, ContractLogicError

from .chain import TRANSPORT_ERRORS, Chain
from .errors import PostCommitCheckFailed, TransportError

logger = logging.getLogger(__name__)

# A check receives the topology (selector -> Chain) and raises on failure
PostCommitCheck = Callable[[Mapping], None]


class TokenPriceCheck:
    """Every chain's fee quoter reports ``expected_price`` for its link token."""

    def __init__(self, expected_price: int, token: Optional[Callable[[Chain], str]] = None):
        self.expected_price = expected_price
        self.token = token or (lambda chain: chain.link_token)

    def __repr__(self):
        return f"TokenPriceCheck(expected_price={self.expected_price})"

    def __call__(self, chains: Mapping) -> None:
        mismatches = {}
        for selector, chain in sorted(chains.items()):
            token = self.token(chain)
            if chain.fee_quoter is None or token is None:
                mismatches[selector] = "no fee quoter or token configured"
                continue

            try:
                price = chain.fee_quoter.functions.getTokenPrice(token).call()
            except (ContractLogicError, BadFunctionCallOutput) as e:
                # Reverted, or no fee quoter deployed at the configured address
                mismatches[selector] = f"price read failed: {e}"
                continue
            except TRANSPORT_ERRORS as e:
                raise TransportError(chain, "read token price", e) from e

            if price != self.expected_price:
                mismatches[selector] = f"price {price}, expected {self.expected_price}"
            else:
                logger.info("Token price on %s is %d as expected", chain, price)

        if mismatches:
            detail = "; ".join(f"chain {sel}: {why}" for sel, why in mismatches.items())
            raise PostCommitCheckFailed(f"token price check failed: {detail}")
