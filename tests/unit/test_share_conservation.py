"""Property tests for profit share conservation"""
import random

import pytest

from crowdfund.services import amounts
from crowdfund.services.lifecycle import PayoutRole
from crowdfund.services.registry import ProposalRegistry

from conftest import PROPOSER, START_TIME, scenario_params


def _investor(n: int) -> str:
    return "0x" + format(n + 1, "040x")


@pytest.mark.parametrize("seed", range(25))
def test_shares_sum_to_profit(seed):
    """Test investor shares plus proposer remainder equal the profit exactly"""
    rng = random.Random(seed)
    max_amount = rng.choice([10**3, 10**9, 10**24])
    share = rng.randint(1, 99)
    registry = ProposalRegistry(cooldown_seconds=0)
    proposal = registry.create_proposal(
        scenario_params(min_amount=1, max_amount=max_amount, investor_share_percent=share),
        PROPOSER,
        START_TIME,
    )

    investor_count = rng.randint(1, 12)
    for i in range(investor_count):
        remaining = max_amount - proposal.current_amount
        if remaining == 0:
            break
        proposal.invest(_investor(i), rng.randint(1, max(1, remaining // 3)))

    profit = rng.randint(0, 10**30)
    proposal.execute(PROPOSER, START_TIME)
    distribution = proposal.distribute(PROPOSER, profit, START_TIME)

    investor_payouts = [p for p in distribution.payouts if p.role == PayoutRole.INVESTOR]
    proposer_payout = distribution.payouts[-1]
    assert proposer_payout.role == PayoutRole.PROPOSER
    assert sum(p.amount for p in distribution.payouts) == profit
    assert sum(p.amount for p in investor_payouts) <= amounts.percent_of(profit, share)
    assert 0 <= distribution.dust < max(1, len(investor_payouts))
    assert proposer_payout.amount >= profit - distribution.investor_pool
    for payout in investor_payouts:
        contribution = proposal.ledger.contribution_of(payout.recipient)
        exact = distribution.investor_pool * contribution
        assert payout.amount * proposal.current_amount <= exact
