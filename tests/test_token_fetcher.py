"""
Tests for SPL token candidate extraction.
"""

import asyncio
from decimal import Decimal

import pytest

from solbooks.core.errors import RpcError
from solbooks.core.fetch_utils import cache_key
from solbooks.core.models import Direction, WalletConfig
from solbooks.core.rpc_client import LedgerTransaction, SignatureInfo, TokenAccount
from solbooks.core.token_fetcher import BalanceSnapshotStrategy, InstructionTransferStrategy, TokenFetcher
from solbooks.core.tokens import JUP_MINT, USDC_MINT, placeholder_descriptor

from tests.conftest import BLOCK_TIME, TOKEN_ACCOUNT, WALLET_A, SleepRecorder, fast_settings, make_context

WALLET = WalletConfig(address=WALLET_A, name="Main")
UNKNOWN_MINT = "Fz8wPmiHdMNfb5oAmvkKsGmGuGUY2mWWmHjCPSi5JEoj"
COUNTERPARTY = "5Q544fKrFoe6tsEbD7S8EmxGTJYAKtTVhAW5Q5pge4j1"
JUP_ACCOUNT = "BQcdHdAQW1hczDbBi9hiegXAR7A98Q9jx3X3iBBBDiq4"


def transfer_ix(source, destination, amount, checked=False, decimals=6):
    if checked:
        info = {
            "source": source,
            "destination": destination,
            "mint": USDC_MINT,
            "tokenAmount": {"amount": str(amount), "decimals": decimals},
        }
        kind = "transferChecked"
    else:
        info = {"source": source, "destination": destination, "amount": str(amount)}
        kind = "transfer"
    return {"program": "spl-token", "parsed": {"type": kind, "info": info}}


def token_balance(index, mint, owner, amount, decimals=6):
    return {
        "accountIndex": index,
        "mint": mint,
        "owner": owner,
        "uiTokenAmount": {"amount": str(amount), "decimals": decimals},
    }


def add_token_tx(rpc, signature, instructions=(), pre=(), post=(), accounts=None, err=None):
    rpc.signatures.setdefault(TOKEN_ACCOUNT, []).append(SignatureInfo(signature, block_time=BLOCK_TIME))
    rpc.transactions[signature] = LedgerTransaction(
        signature=signature,
        accounts=accounts or [WALLET_A, TOKEN_ACCOUNT, COUNTERPARTY],
        parsed_instructions=list(instructions),
        pre_token_balances=list(pre),
        post_token_balances=list(post),
        block_time=BLOCK_TIME,
        err=err,
    )


def run_fetch(rpc, mint=USDC_MINT, decimals=6, **settings):
    rpc.token_accounts[WALLET_A] = [TokenAccount(TOKEN_ACCOUNT, mint, decimals)]
    ctx = make_context(rpc, settings=fast_settings(**settings))
    sleep = SleepRecorder()
    records = asyncio.run(TokenFetcher(ctx, sleep=sleep).fetch(WALLET))
    return ctx, sleep, records


class TestInstructionStrategy:

    def test_incoming_transfer(self, rpc):
        add_token_tx(rpc, "sigIn", instructions=[transfer_ix(COUNTERPARTY, TOKEN_ACCOUNT, 2_500_000)])
        _, _, records = run_fetch(rpc)

        assert len(records) == 1
        record = records[0]
        assert record.direction == Direction.INFLOW
        assert record.amount == Decimal("2.5")
        assert record.asset.symbol == "USDC"
        assert record.id == f"sigIn-{USDC_MINT}"
        assert record.description == "USDC Received - Main"

    def test_outgoing_transfer_checked(self, rpc):
        add_token_tx(rpc, "sigOut", instructions=[transfer_ix(TOKEN_ACCOUNT, COUNTERPARTY, 1_000_000, checked=True)])
        _, _, records = run_fetch(rpc)
        assert records[0].direction == Direction.OUTFLOW
        assert records[0].amount == Decimal("1")

    def test_unrelated_instructions_defer_to_next_strategy(self):
        tx = LedgerTransaction(
            signature="s",
            parsed_instructions=[transfer_ix(COUNTERPARTY, "Other111111111111111111111111111111111111", 5)],
        )
        account = TokenAccount(TOKEN_ACCOUNT, USDC_MINT, 6)
        asset = placeholder_descriptor(USDC_MINT, 6, 18)
        assert InstructionTransferStrategy().extract(tx, account, WALLET_A, asset) is None


class TestBalanceStrategy:

    def test_balance_diff_when_no_transfer_instruction(self, rpc):
        add_token_tx(
            rpc,
            "sigSwap",
            pre=[token_balance(1, USDC_MINT, WALLET_A, 10_000_000)],
            post=[token_balance(1, USDC_MINT, WALLET_A, 7_000_000)],
        )
        _, _, records = run_fetch(rpc)
        assert records[0].direction == Direction.OUTFLOW
        assert records[0].amount == Decimal("3")

    def test_missing_pre_balance_counts_as_zero(self, rpc):
        add_token_tx(rpc, "sigNew", post=[token_balance(1, USDC_MINT, WALLET_A, 4_000_000)])
        _, _, records = run_fetch(rpc)
        assert records[0].direction == Direction.INFLOW
        assert records[0].amount == Decimal("4")

    def test_matches_by_mint_and_owner_without_index(self):
        tx = LedgerTransaction(
            signature="s",
            accounts=[WALLET_A],
            pre_token_balances=[token_balance(7, USDC_MINT, WALLET_A, 1_000_000)],
            post_token_balances=[token_balance(7, USDC_MINT, WALLET_A, 3_000_000)],
        )
        account = TokenAccount(TOKEN_ACCOUNT, USDC_MINT, 6)
        asset = placeholder_descriptor(USDC_MINT, 6, 18)
        assert BalanceSnapshotStrategy().extract(tx, account, WALLET_A, asset) == Decimal("2")

    def test_no_balances_means_no_record(self, rpc):
        add_token_tx(rpc, "sigNothing")
        ctx, _, records = run_fetch(rpc)
        assert records == []
        assert ctx.signature_cache.has(cache_key("sigNothing", USDC_MINT))


class TestTokenFetcher:

    def test_unknown_mint_gets_placeholder(self, rpc):
        add_token_tx(rpc, "sig1", instructions=[transfer_ix(COUNTERPARTY, TOKEN_ACCOUNT, 1_000_000_000)])
        _, _, records = run_fetch(rpc, mint=UNKNOWN_MINT, decimals=9)

        asset = records[0].asset
        assert asset.symbol == "FZ8W"
        assert asset.name == "Unknown Token (Fz8wPmiH...)"
        assert asset.decimals == 9
        assert records[0].amount == Decimal("1")

    def test_placeholder_decimals_default_and_clamp(self):
        assert placeholder_descriptor(UNKNOWN_MINT, None, 18).decimals == 6
        assert placeholder_descriptor(UNKNOWN_MINT, 40, 18).decimals == 18

    def test_implausible_amount_rejected_but_marked_seen(self, rpc):
        add_token_tx(rpc, "sigHuge", instructions=[transfer_ix(COUNTERPARTY, TOKEN_ACCOUNT, 2 * 10 ** 15)])
        ctx, _, records = run_fetch(rpc)
        assert records == []
        assert ctx.signature_cache.has(cache_key("sigHuge", USDC_MINT))

    def test_dust_discarded(self, rpc):
        add_token_tx(rpc, "sigDust", instructions=[transfer_ix(COUNTERPARTY, TOKEN_ACCOUNT, 1)])
        _, _, records = run_fetch(rpc, mint=UNKNOWN_MINT, decimals=9)
        assert records == []

    def test_token_accounts_capped(self, rpc):
        rpc.token_accounts[WALLET_A] = [TokenAccount(f"acct{i}", USDC_MINT, 6) for i in range(8)]
        ctx = make_context(rpc, settings=fast_settings(token_accounts_max=5))
        asyncio.run(TokenFetcher(ctx, sleep=SleepRecorder()).fetch(WALLET))
        assert rpc.count("list_signatures") == 5

    def test_native_and_token_cache_keys_are_independent(self, rpc):
        add_token_tx(rpc, "shared", instructions=[transfer_ix(COUNTERPARTY, TOKEN_ACCOUNT, 1_000_000)])
        ctx = make_context(rpc)
        ctx.signature_cache.record(cache_key("shared", "native"))
        rpc.token_accounts[WALLET_A] = [TokenAccount(TOKEN_ACCOUNT, USDC_MINT, 6)]

        records = asyncio.run(TokenFetcher(ctx, sleep=SleepRecorder()).fetch(WALLET))
        assert len(records) == 1

    def test_batches_with_delay_between(self, rpc):
        for i in range(6):
            add_token_tx(rpc, f"sig{i}", instructions=[transfer_ix(COUNTERPARTY, TOKEN_ACCOUNT, 1_000_000)])
        _, sleep, records = run_fetch(rpc, token_batch_size=5, token_batch_delay=0.3)
        assert len(records) == 6
        assert sleep.calls == [0.3]

    def test_transaction_errors_are_skipped_and_not_marked(self, rpc):
        for signature in ("boom", "slow", "fine"):
            add_token_tx(rpc, signature, instructions=[transfer_ix(COUNTERPARTY, TOKEN_ACCOUNT, 1_000_000)])
        rpc.transactions["boom"] = RpcError("node unavailable")
        rpc.transactions["slow"] = asyncio.TimeoutError()

        ctx, _, records = run_fetch(rpc)

        assert [r.id for r in records] == [f"fine-{USDC_MINT}"]
        assert ctx.signature_cache.get_entry(cache_key("boom", USDC_MINT)) is None
        assert ctx.signature_cache.get_entry(cache_key("slow", USDC_MINT)) is None
        assert ctx.signature_cache.has(cache_key("fine", USDC_MINT))


class TestTokenAccountFailures:

    def test_failing_account_does_not_hide_siblings(self, rpc):
        add_token_tx(rpc, "goodsig", instructions=[transfer_ix(COUNTERPARTY, TOKEN_ACCOUNT, 5_000_000)])
        rpc.signature_failures[JUP_ACCOUNT] = 100
        rpc.token_accounts[WALLET_A] = [
            TokenAccount(JUP_ACCOUNT, JUP_MINT, 6),
            TokenAccount(TOKEN_ACCOUNT, USDC_MINT, 6),
        ]
        ctx = make_context(rpc)

        records = asyncio.run(TokenFetcher(ctx, sleep=SleepRecorder()).fetch(WALLET))

        assert [(r.id, r.amount) for r in records] == [(f"goodsig-{USDC_MINT}", Decimal("5"))]
        assert ctx.signature_cache.has(cache_key("goodsig", USDC_MINT))

    def test_every_account_failing_raises(self, rpc):
        rpc.signature_failures[JUP_ACCOUNT] = 100
        rpc.signature_failures[TOKEN_ACCOUNT] = 100
        rpc.token_accounts[WALLET_A] = [
            TokenAccount(JUP_ACCOUNT, JUP_MINT, 6),
            TokenAccount(TOKEN_ACCOUNT, USDC_MINT, 6),
        ]
        ctx = make_context(rpc)
        with pytest.raises(RpcError):
            asyncio.run(TokenFetcher(ctx, sleep=SleepRecorder()).fetch(WALLET))

    def test_no_token_accounts_is_not_an_error(self, rpc):
        ctx = make_context(rpc)
        assert asyncio.run(TokenFetcher(ctx, sleep=SleepRecorder()).fetch(WALLET)) == []
