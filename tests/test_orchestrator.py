"""
Tests for orchestrator.py
"""
from dataclasses import replace

import pytest
from unittest.mock import AsyncMock, MagicMock
from solders.keypair import Keypair

from multiwallet_trader.errors import TransportError, ValidationError
from multiwallet_trader.orchestrator import (
    BatchOrchestrator,
    FixedAmount,
    MaxMinusBuffer,
    OutcomeStatus,
    PerWallet,
    Percent,
    SellAll,
    sell_amount_for_percent,
)
from multiwallet_trader.router import RouteResult, RouteState, Side, Venue
from multiwallet_trader.submission import SubmissionPath, SubmissionResult
from multiwallet_trader.utils import LAMPORTS_PER_SOL


def built(venue=Venue.CURVE):
    return RouteResult(state=RouteState.BUILT, venue=venue, transaction=MagicMock(name="swap_tx"))


def failed(error="no route"):
    return RouteResult(state=RouteState.FAILED, venue=Venue.NONE, error=error)


class TestSellAmount:

    def test_percent_truncated_to_three_decimals(self):
        assert sell_amount_for_percent(1_000_000, 33.3333) == 333_330
        assert sell_amount_for_percent(1_000_000, 100) == 1_000_000
        assert sell_amount_for_percent(7, 50) == 3
        assert sell_amount_for_percent(10, 0.001) == 0


class TestBatchOrchestrator:
    """Tests for batch operations over the session's sub-wallets."""

    @pytest.fixture
    def solana(self, mock_solana_client, blockhash):
        mock_solana_client.get_latest_blockhash.return_value = blockhash
        mock_solana_client.get_mint_decimals.return_value = 6
        return mock_solana_client

    @pytest.fixture
    def router(self):
        router = MagicMock()
        router.route = AsyncMock(side_effect=lambda *args: built())
        return router

    @pytest.fixture
    def pipeline(self):
        pipeline = MagicMock()
        pipeline.submit = AsyncMock(
            side_effect=lambda txs, blockhash, force_direct=False: SubmissionResult(
                path=SubmissionPath.DIRECT if force_direct else SubmissionPath.BUNDLE,
                identifiers=[f"id{i}" for i in range(len(txs))]
            )
        )
        return pipeline

    @pytest.fixture
    def orchestrator(self, session, solana, router, pipeline):
        return BatchOrchestrator(session, solana, router, pipeline)

    # Buy

    @pytest.mark.asyncio
    async def test_buy_invalid_mint_rejected_before_network(self, orchestrator, solana, router):
        with pytest.raises(ValidationError, match="mint"):
            await orchestrator.buy("not-a-mint", [1, 2], FixedAmount(0.01))

        solana.get_latest_blockhash.assert_not_awaited()
        solana.get_mint_decimals.assert_not_awaited()
        router.route.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_buy_invalid_amount(self, orchestrator, token_mint, solana):
        with pytest.raises(ValidationError):
            await orchestrator.buy(str(token_mint), [1], FixedAmount(0))
        solana.get_latest_blockhash.assert_not_awaited()

    @pytest.mark.asyncio
    @pytest.mark.parametrize("sol", [float("inf"), float("nan")])
    async def test_buy_non_finite_amount_rejected_before_network(self, orchestrator, solana, token_mint, sol):
        with pytest.raises(ValidationError):
            await orchestrator.buy(str(token_mint), [1], FixedAmount(sol))

        solana.get_mint_decimals.assert_not_awaited()
        solana.get_latest_blockhash.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_buy_per_wallet_infinite_amount_fails_one_wallet(self, orchestrator, router, token_mint):
        report = await orchestrator.buy(str(token_mint), [1, 2], PerWallet({1: float("inf"), 2: 0.01}))

        assert [o.status for o in report.outcomes] == [OutcomeStatus.FAILED, OutcomeStatus.BUILT]
        assert router.route.await_count == 1

    @pytest.mark.asyncio
    async def test_buy_fixed_amount(self, orchestrator, session, router, pipeline, token_mint, blockhash):
        report = await orchestrator.buy(str(token_mint), [3, 1, 2], FixedAmount(0.01))

        router.begin_operation.assert_called_once()
        calls = router.route.await_args_list
        assert [c.args[1].index for c in calls] == [1, 2, 3]
        assert all(c.args[0] == Side.BUY and c.args[3] == 10_000_000 and c.args[4] == blockhash for c in calls)
        assert all(c.args[2] == token_mint for c in calls)

        pipeline.submit.assert_awaited_once()
        txs, batch_hash = pipeline.submit.await_args.args
        assert len(txs) == 3 and batch_hash == blockhash
        assert report.count(OutcomeStatus.BUILT) == 3
        assert report.identifiers == ["id0", "id1", "id2"]
        assert report.path == SubmissionPath.BUNDLE

    @pytest.mark.asyncio
    async def test_buy_failure_isolated(self, orchestrator, router, pipeline, token_mint):
        router.route.side_effect = [built(), failed("Jupiter quote failed"), built(Venue.AGGREGATOR)]

        report = await orchestrator.buy(str(token_mint), [1, 2, 3], FixedAmount(0.01))

        assert [o.status for o in report.outcomes] == [OutcomeStatus.BUILT, OutcomeStatus.FAILED, OutcomeStatus.BUILT]
        assert report.outcomes[1].error_detail == "Jupiter quote failed"
        assert report.outcomes[2].venue == Venue.AGGREGATOR
        assert len(pipeline.submit.await_args.args[0]) == 2

    @pytest.mark.asyncio
    async def test_buy_max_skips_below_minimum(self, orchestrator, session, solana, router, token_mint):
        balances = {
            session.wallet(1).pubkey: 1 * LAMPORTS_PER_SOL,
            # 0.0031 SOL - 0.003 buffer = 0.0001 SOL < 0.0005 minimum
            session.wallet(2).pubkey: 3_100_000,
            session.wallet(3).pubkey: 0,
        }
        solana.get_balance.side_effect = lambda pubkey: balances[pubkey]

        report = await orchestrator.buy(str(token_mint), [1, 2, 3], MaxMinusBuffer())

        assert [o.status for o in report.outcomes] == [OutcomeStatus.BUILT, OutcomeStatus.SKIPPED, OutcomeStatus.SKIPPED]
        assert router.route.await_count == 1
        assert router.route.await_args.args[3] == LAMPORTS_PER_SOL - 3_000_000

    @pytest.mark.asyncio
    async def test_buy_per_wallet(self, orchestrator, solana, router, token_mint):
        solana.get_balance.return_value = 50_000_000

        report = await orchestrator.buy(str(token_mint), [1, 2, 3], PerWallet({1: 0, 2: "max", 3: 0.02}))

        assert report.outcomes[0].status == OutcomeStatus.SKIPPED
        assert [c.args[3] for c in router.route.await_args_list] == [47_000_000, 20_000_000]

    @pytest.mark.asyncio
    async def test_buy_per_wallet_invalid_amount(self, orchestrator, router, token_mint):
        report = await orchestrator.buy(str(token_mint), [1, 2], PerWallet({1: None, 2: 0.01}))

        assert report.outcomes[0].status == OutcomeStatus.FAILED
        assert report.outcomes[1].status == OutcomeStatus.BUILT

    @pytest.mark.asyncio
    async def test_buy_balance_error_isolated(self, orchestrator, solana, token_mint):
        solana.get_balance.side_effect = [TransportError("rpc down"), 1 * LAMPORTS_PER_SOL]

        report = await orchestrator.buy(str(token_mint), [1, 2], MaxMinusBuffer())

        assert [o.status for o in report.outcomes] == [OutcomeStatus.FAILED, OutcomeStatus.BUILT]

    @pytest.mark.asyncio
    async def test_buy_nothing_built_not_submitted(self, orchestrator, router, pipeline, token_mint):
        router.route.side_effect = lambda *args: failed()

        report = await orchestrator.buy(str(token_mint), [1, 2], FixedAmount(0.01))

        pipeline.submit.assert_not_awaited()
        assert report.identifiers == []
        assert report.path == SubmissionPath.NONE

    @pytest.mark.asyncio
    async def test_invalid_selection(self, orchestrator, token_mint):
        with pytest.raises(ValidationError):
            await orchestrator.buy(str(token_mint), [], FixedAmount(0.01))
        with pytest.raises(ValidationError):
            await orchestrator.buy(str(token_mint), [0, 1], FixedAmount(0.01))
        with pytest.raises(ValidationError):
            await orchestrator.buy(str(token_mint), [4], FixedAmount(0.01))

    # Sell

    @pytest.mark.asyncio
    async def test_sell_percent(self, orchestrator, solana, router, token_mint):
        solana.get_token_balance.side_effect = [1_000_000, 0, 2]

        report = await orchestrator.sell(str(token_mint), [1, 2, 3], Percent(33.3333))

        assert [o.status for o in report.outcomes] == [
            OutcomeStatus.BUILT, OutcomeStatus.SKIPPED, OutcomeStatus.SKIPPED
        ]
        assert report.outcomes[1].note == "0 tokens"
        assert report.outcomes[2].note == "computed 0"
        router.route.assert_awaited_once()
        assert router.route.await_args.args[0] == Side.SELL
        assert router.route.await_args.args[3] == 333_330

    @pytest.mark.asyncio
    async def test_sell_all(self, orchestrator, solana, router, token_mint):
        solana.get_token_balance.return_value = 123_456_789

        await orchestrator.sell(str(token_mint), [1, 2], SellAll())

        assert [c.args[3] for c in router.route.await_args_list] == [123_456_789, 123_456_789]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("pct", [0, -1, 100.5])
    async def test_sell_invalid_percent(self, orchestrator, solana, token_mint, pct):
        with pytest.raises(ValidationError):
            await orchestrator.sell(str(token_mint), [1], Percent(pct))
        solana.get_token_balance.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_sell_per_wallet(self, orchestrator, solana, router, token_mint):
        solana.get_token_balance.return_value = 1_000

        report = await orchestrator.sell(str(token_mint), [1, 2, 3], PerWallet({1: 50, 3: 250}))

        assert [o.status for o in report.outcomes] == [
            OutcomeStatus.BUILT, OutcomeStatus.SKIPPED, OutcomeStatus.FAILED
        ]
        assert router.route.await_args.args[3] == 500

    # Funding

    @pytest.mark.asyncio
    async def test_fund_equal_split(self, orchestrator, session, solana, pipeline):
        solana.get_balance.return_value = 1 * LAMPORTS_PER_SOL

        report = await orchestrator.fund_equal_split([1, 2, 3], reserve_sol=0.1)

        txs = pipeline.submit.await_args.args[0]
        assert pipeline.submit.await_args.kwargs["force_direct"] is True
        assert len(txs) == 3
        assert all(tx.message.account_keys[0] == session.treasury.pubkey for tx in txs)
        assert [tx.message.account_keys[1] for tx in txs] == [w.pubkey for w in session.sub_wallets]
        assert all(o.amount == 300_000_000 for o in report.outcomes)
        assert report.path == SubmissionPath.DIRECT

    @pytest.mark.asyncio
    async def test_fund_equal_split_nothing_to_distribute(self, orchestrator, solana, pipeline):
        solana.get_balance.return_value = 50_000_000

        report = await orchestrator.fund_equal_split([1, 2], reserve_sol=0.1)

        pipeline.submit.assert_not_awaited()
        assert all(o.status == OutcomeStatus.SKIPPED for o in report.outcomes)

    @pytest.mark.asyncio
    async def test_fund_fixed(self, orchestrator, solana, pipeline):
        solana.get_balance.return_value = 0

        report = await orchestrator.fund_fixed([2, 3], 0.02)

        assert len(pipeline.submit.await_args.args[0]) == 2
        assert [o.wallet_index for o in report.outcomes] == [2, 3]
        assert all(o.amount == 20_000_000 for o in report.outcomes)

    @pytest.mark.asyncio
    async def test_funding_non_finite_amounts_rejected_before_network(self, orchestrator, solana, pipeline):
        with pytest.raises(ValidationError):
            await orchestrator.fund_fixed([1, 2], float("inf"))
        with pytest.raises(ValidationError):
            await orchestrator.fund_equal_split([1, 2], reserve_sol=float("inf"))
        with pytest.raises(ValidationError):
            await orchestrator.fund_single(1, float("nan"))
        with pytest.raises(ValidationError):
            await orchestrator.sweep_to_main([1], keep_sol=float("inf"))

        solana.get_balance.assert_not_awaited()
        solana.get_latest_blockhash.assert_not_awaited()
        pipeline.submit.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_fund_single(self, orchestrator, session, pipeline):
        report = await orchestrator.fund_single(2, 0.5)

        (tx,) = pipeline.submit.await_args.args[0]
        assert tx.message.account_keys[1] == session.wallet(2).pubkey
        assert report.outcomes[0].amount == 500_000_000

    @pytest.mark.asyncio
    async def test_fund_single_bad_index(self, orchestrator):
        with pytest.raises(ValidationError):
            await orchestrator.fund_single(9, 0.5)

    @pytest.mark.asyncio
    async def test_sweep_to_main(self, orchestrator, session, solana, pipeline):
        balances = {
            session.wallet(1).pubkey: 10_000_000,
            session.wallet(2).pubkey: 2_000_000,
            session.wallet(3).pubkey: 4_000_000,
        }
        solana.get_balance.side_effect = lambda pubkey: balances[pubkey]

        report = await orchestrator.sweep_to_main([1, 2, 3], keep_sol=0.003)

        txs = pipeline.submit.await_args.args[0]
        assert [tx.message.account_keys[0] for tx in txs] == [session.wallet(1).pubkey, session.wallet(3).pubkey]
        assert all(tx.message.account_keys[1] == session.treasury.pubkey for tx in txs)
        assert [o.wallet_index for o in report.outcomes] == [1, 2, 3]
        assert [o.amount for o in report.outcomes] == [7_000_000, 0, 1_000_000]
        assert report.outcomes[1].status == OutcomeStatus.SKIPPED

    @pytest.mark.asyncio
    async def test_withdraw_requires_external_wallet(self, orchestrator, solana):
        with pytest.raises(ValidationError, match="EXTERNAL_WALLET"):
            await orchestrator.withdraw_to_external()
        solana.get_balance.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_withdraw_to_external(self, session, solana, router, pipeline):
        external = Keypair().pubkey()
        configured = replace(session, config=replace(session.config, external_wallet=str(external)))
        solana.get_balance.return_value = 1 * LAMPORTS_PER_SOL
        orchestrator = BatchOrchestrator(configured, solana, router, pipeline)

        report = await orchestrator.withdraw_to_external()

        (tx,) = pipeline.submit.await_args.args[0]
        assert tx.message.account_keys[1] == external
        assert report.outcomes[0].amount == LAMPORTS_PER_SOL - 500_000
        assert pipeline.submit.await_args.kwargs["force_direct"] is True

    @pytest.mark.asyncio
    async def test_balances(self, orchestrator, session, solana):
        solana.get_balance.return_value = 7

        result = await orchestrator.balances()

        assert [index for index, _, _ in result] == [0, 1, 2, 3]
        assert result[0][1] == session.treasury.pubkey
        assert all(lamports == 7 for _, _, lamports in result)
