"""
Investment Ledger

Per-proposal record of who invested how much. Investors are kept in the order
of their first contribution; payouts and investor listings follow that order.
"""
from dataclasses import dataclass
from typing import Dict, List, Tuple

from crowdfund.services import amounts


@dataclass(frozen=True)
class ShareAllocation:
    """Profit split for one distribution"""
    investor_pool: int
    shares: List[Tuple[str, int]]  # (investor, amount) in first-contribution order

    @property
    def allocated(self) -> int:
        return sum(amount for _, amount in self.shares)

    @property
    def dust(self) -> int:
        """Rounding remainder of the investor pool that no investor receives"""
        return self.investor_pool - self.allocated


class InvestmentLedger:
    """Contributions of a single proposal"""

    def __init__(self):
        # dict preserves insertion order, which is first-contribution order
        self._contributions: Dict[str, int] = {}
        self._aggregate = 0

    @property
    def aggregate(self) -> int:
        return self._aggregate

    def record_contribution(self, investor: str, amount: int) -> int:
        """
        Add ``amount`` to ``investor``'s contribution.

        Args:
            investor: Normalised investor identity
            amount: Positive amount in minor units

        Returns:
            The investor's new total contribution
        """
        amounts.check_positive(amount)
        new_aggregate = amounts.add(self._aggregate, amount)
        new_total = amounts.add(self._contributions.get(investor, 0), amount)
        self._contributions[investor] = new_total
        self._aggregate = new_aggregate
        return new_total

    def contribution_of(self, investor: str) -> int:
        return self._contributions.get(investor, 0)

    def total_investors(self) -> int:
        return len(self._contributions)

    def all_investors(self) -> List[str]:
        return list(self._contributions)

    def contributions(self) -> List[Tuple[str, int]]:
        return list(self._contributions.items())

    def investor_pool(self, total_profit: int, investor_share_percent: int) -> int:
        """Part of ``total_profit`` reserved for investors, floored"""
        return amounts.percent_of(total_profit, investor_share_percent)

    def share_of(self, investor: str, total_profit: int, investor_share_percent: int) -> int:
        """
        Pro-rata profit share of one investor.

        ``floor(floor(total_profit * percent / 100) * contribution / aggregate)``.
        Flooring at each step keeps the sum of all shares within the pool.
        """
        pool = self.investor_pool(total_profit, investor_share_percent)
        return amounts.pro_rata(pool, self.contribution_of(investor), self._aggregate)

    def allocate(self, total_profit: int, investor_share_percent: int) -> ShareAllocation:
        """Compute every investor's share of ``total_profit``"""
        pool = self.investor_pool(total_profit, investor_share_percent)
        shares = [
            (investor, amounts.pro_rata(pool, contribution, self._aggregate))
            for investor, contribution in self._contributions.items()
        ]
        return ShareAllocation(investor_pool=pool, shares=shares)
