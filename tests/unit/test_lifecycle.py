"""Unit tests for the proposal lifecycle state machine"""
import pytest

from crowdfund.services.errors import (
    AmountError,
    CooldownNotElapsed,
    FundingCapExceeded,
    InvalidAmount,
    InvalidState,
    ProposalNotAcceptingInvestment,
    ThresholdNotReached,
    Unauthorized,
    ValidationError,
)
from crowdfund.services.lifecycle import PayoutRole, ProposalState

from conftest import (
    COOLDOWN, INVESTOR_1, INVESTOR_2, PROPOSER, START_TIME, STRANGER, TARGET, scenario_params,
)


@pytest.fixture
def proposal(registry):
    return registry.create_proposal(scenario_params(), PROPOSER, START_TIME)


@pytest.fixture
def funded(proposal):
    proposal.invest(INVESTOR_1, 300)
    proposal.invest(INVESTOR_2, 250)
    return proposal


@pytest.fixture
def executed(funded):
    funded.execute(PROPOSER, START_TIME + 100)
    return funded


class TestProposalParams:
    """Tests for creation parameter validation"""

    def test_valid_params_normalised(self):
        """Test target is lowercased and description trimmed"""
        params = scenario_params(target=TARGET.upper().replace("0X", "0x"), description="  long enough  ")
        validated = params.validated()
        assert validated.target == TARGET
        assert validated.description == "long enough"

    def test_largest_proposal_id(self):
        """Test the largest storable proposal id is accepted"""
        assert scenario_params(2**63 - 1).validated().proposal_id == 2**63 - 1

    @pytest.mark.parametrize("overrides", [
        {"min_amount": 0},
        {"max_amount": 500},
        {"max_amount": 400},
        {"investor_share_percent": 0},
        {"investor_share_percent": 100},
        {"proposal_id": 0},
        {"proposal_id": 2**63},
        {"target": "not-an-address"},
        {"description": "short"},
        {"description": "x" * 1001},
        {"min_amount": 1.5},
    ])
    def test_invalid_params(self, overrides):
        """Test each malformed parameter raises ValidationError"""
        with pytest.raises(ValidationError):
            scenario_params(**overrides).validated()


class TestInvestment:
    """Tests for investing"""

    def test_scenario_b_zero_investment(self, proposal):
        """Test a zero investment fails without touching the ledger"""
        with pytest.raises(InvalidAmount):
            proposal.invest(INVESTOR_1, 0)
        assert proposal.current_amount == 0
        assert proposal.ledger.total_investors() == 0

    def test_zero_investment_is_arithmetic_error(self, proposal):
        """Test the invalid amount is also an ArithmeticError"""
        with pytest.raises(ArithmeticError):
            proposal.invest(INVESTOR_1, 0)

    def test_scenario_d_cap_rejected_in_full(self, proposal):
        """Test an over-cap investment is rejected without partial fill"""
        proposal.invest(INVESTOR_1, 1900)
        with pytest.raises(FundingCapExceeded) as exc:
            proposal.invest(INVESTOR_2, 200)
        assert exc.value.extra["remaining_capacity"] == 100
        assert proposal.current_amount == 1900
        assert proposal.ledger.contribution_of(INVESTOR_2) == 0

    def test_reaching_cap_exactly(self, proposal):
        """Test the cap itself is a valid total"""
        proposal.invest(INVESTOR_1, 2000)
        assert proposal.current_amount == 2000

    def test_invest_after_execution_rejected(self, executed):
        """Test the amount is frozen after execution"""
        with pytest.raises(ProposalNotAcceptingInvestment):
            executed.invest(INVESTOR_1, 10)
        assert executed.current_amount == 550

    def test_invest_after_close_rejected(self, funded):
        """Test a closed funding window rejects investment"""
        funded.close_funding(PROPOSER)
        with pytest.raises(ProposalNotAcceptingInvestment):
            funded.invest(INVESTOR_1, 10)


class TestFundingWindow:
    """Tests for closing and reopening funding"""

    def test_close_requires_proposer(self, proposal):
        """Test only the proposer closes funding"""
        with pytest.raises(Unauthorized):
            proposal.close_funding(STRANGER)
        assert proposal.accepting_investment

    def test_close_twice(self, proposal):
        """Test closing a closed window fails"""
        proposal.close_funding(PROPOSER)
        with pytest.raises(InvalidState):
            proposal.close_funding(PROPOSER)

    def test_reopen_disabled(self, proposal):
        """Test reopening is refused when not allowed"""
        proposal.close_funding(PROPOSER)
        with pytest.raises(InvalidState):
            proposal.reopen_funding(PROPOSER, allowed=False)
        assert not proposal.accepting_investment

    def test_reopen_allowed(self, proposal):
        """Test reopening restores investment"""
        proposal.close_funding(PROPOSER)
        proposal.reopen_funding(PROPOSER, allowed=True)
        proposal.invest(INVESTOR_1, 10)
        assert proposal.current_amount == 10

    def test_closed_proposal_can_execute(self, funded):
        """Test execution does not require an open window"""
        funded.close_funding(PROPOSER)
        funded.execute(PROPOSER, START_TIME)
        assert funded.state == ProposalState.EXECUTED


class TestExecution:
    """Tests for execution"""

    def test_scenario_c_non_proposer(self, funded):
        """Test a non-proposer cannot execute"""
        with pytest.raises(Unauthorized):
            funded.execute(STRANGER, START_TIME)
        assert funded.state == ProposalState.ACTIVE
        assert funded.executed_at is None

    def test_below_threshold(self, proposal):
        """Test execution below the minimum reports the missing amount"""
        proposal.invest(INVESTOR_1, 499)
        with pytest.raises(ThresholdNotReached) as exc:
            proposal.execute(PROPOSER, START_TIME)
        assert exc.value.extra["missing_amount"] == 1
        assert proposal.state == ProposalState.ACTIVE

    def test_threshold_is_inclusive(self, proposal):
        """Test execution at exactly the minimum"""
        proposal.invest(INVESTOR_1, 500)
        assert proposal.execute(PROPOSER, START_TIME) == 500

    def test_execute_sets_state(self, executed):
        """Test execution moves to EXECUTED and closes funding"""
        assert executed.state == ProposalState.EXECUTED
        assert executed.executed_at == START_TIME + 100
        assert not executed.accepting_investment

    def test_execute_twice(self, executed):
        """Test a second execution fails"""
        with pytest.raises(InvalidState):
            executed.execute(PROPOSER, START_TIME + 200)
        assert executed.executed_at == START_TIME + 100


class TestDistribution:
    """Tests for profit distribution"""

    def test_scenario_a(self, executed):
        """Test the reference split of 1000 profit"""
        distribution = executed.distribute(PROPOSER, 1000, START_TIME + 100 + COOLDOWN)
        paid = {(p.recipient, p.role): p.amount for p in distribution.payouts}
        assert paid[(INVESTOR_1, PayoutRole.INVESTOR)] == 81
        assert paid[(INVESTOR_2, PayoutRole.INVESTOR)] == 68
        assert paid[(PROPOSER, PayoutRole.PROPOSER)] == 851
        assert distribution.investor_pool == 150
        assert distribution.dust == 1
        assert executed.state == ProposalState.DISTRIBUTED
        assert executed.distributed_at == START_TIME + 100 + COOLDOWN

    def test_payout_order(self, executed):
        """Test investors are paid in contribution order, proposer last"""
        distribution = executed.distribute(PROPOSER, 1000, START_TIME + 100 + COOLDOWN)
        assert [p.recipient for p in distribution.payouts] == [INVESTOR_1, INVESTOR_2, PROPOSER]

    def test_cooldown_boundary(self, executed):
        """Test distribution one second early fails and on time succeeds"""
        ends_at = START_TIME + 100 + COOLDOWN
        with pytest.raises(CooldownNotElapsed) as exc:
            executed.distribute(PROPOSER, 1000, ends_at - 1)
        assert exc.value.remaining_seconds == 1
        assert executed.state == ProposalState.EXECUTED
        assert executed.distribution is None

        executed.distribute(PROPOSER, 1000, ends_at)
        assert executed.state == ProposalState.DISTRIBUTED

    def test_double_distribution(self, executed):
        """Test the second distribution fails with InvalidState"""
        now = START_TIME + 100 + COOLDOWN
        first = executed.distribute(PROPOSER, 1000, now)
        with pytest.raises(InvalidState):
            executed.distribute(PROPOSER, 1000, now + 1)
        assert executed.distribution == first

    def test_distribute_before_execution(self, funded):
        """Test Distributed is only reachable via Executed"""
        with pytest.raises(InvalidState):
            funded.distribute(PROPOSER, 1000, START_TIME + COOLDOWN * 2)
        assert funded.state == ProposalState.ACTIVE

    def test_distribute_requires_proposer(self, executed):
        """Test a non-proposer cannot distribute"""
        with pytest.raises(Unauthorized):
            executed.distribute(INVESTOR_1, 1000, START_TIME + 100 + COOLDOWN)

    def test_zero_profit(self, executed):
        """Test a zero profit distribution completes with zero payouts"""
        distribution = executed.distribute(PROPOSER, 0, START_TIME + 100 + COOLDOWN)
        assert all(p.amount == 0 for p in distribution.payouts)
        assert executed.state == ProposalState.DISTRIBUTED

    def test_negative_profit(self, executed):
        """Test a negative profit amount is rejected"""
        with pytest.raises(AmountError):
            executed.distribute(PROPOSER, -1, START_TIME + 100 + COOLDOWN)

    def test_partial_payments_resume(self, executed):
        """Test payments recorded one by one complete the same plan"""
        now = START_TIME + 100 + COOLDOWN
        plan = executed.prepare_distribution(PROPOSER, 1000, now)
        assert executed.distribution is None

        executed.record_payout(plan, INVESTOR_1, PayoutRole.INVESTOR, "ref-1")
        assert executed.distribution.paid_amount == 81
        with pytest.raises(InvalidState):
            executed.complete_distribution(now)

        resumed = executed.prepare_distribution(PROPOSER, 1000, now + 5)
        assert [p.recipient for p in resumed.pending] == [INVESTOR_2, PROPOSER]
        with pytest.raises(InvalidState):
            executed.prepare_distribution(PROPOSER, 999, now + 5)
        with pytest.raises(InvalidState):
            executed.record_payout(resumed, INVESTOR_1, PayoutRole.INVESTOR)

    def test_snapshot_is_immutable_copy(self, funded):
        """Test a snapshot does not follow later mutations"""
        snapshot = funded.snapshot()
        funded.invest(INVESTOR_1, 100)
        assert snapshot.current_amount == 550
        assert snapshot.contribution_of(INVESTOR_1) == 300
        assert funded.snapshot().current_amount == 650
