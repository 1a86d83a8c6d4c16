"""
Tests for authorization.py - one-time signer authorization transfer.
"""
import pytest
from unittest.mock import AsyncMock
from solders.hash import Hash
from solders.keypair import Keypair
from solders.signature import Signature
from solders.system_program import ID as SYSTEM_PROGRAM_ID

from roundtrip_arb.authorization import (
    ALREADY_AUTHORIZED,
    BELOW_RESERVE,
    DISABLED,
    TRANSFERRED,
    ZERO_BALANCE,
    AuthorizationChecker
)
from roundtrip_arb.errors import ServiceError, SubmissionError


@pytest.fixture
def authorization_account():
    return str(Keypair().pubkey())


@pytest.fixture
def solana():
    client = AsyncMock()
    client.get_latest_blockhash = AsyncMock(return_value=Hash(bytes([1] * 32)))
    client.send_and_confirm_transaction = AsyncMock(return_value="authsig")
    return client


class TestAuthorizationChecker:
    """Tests for AuthorizationChecker.ensure_authorized()."""

    @pytest.mark.asyncio
    async def test_disabled_without_account(self, keypair, solana):
        checker = AuthorizationChecker(None)

        outcome = await checker.ensure_authorized(keypair, solana)

        assert outcome.status == DISABLED
        assert checker.enabled is False
        solana.get_balance.assert_not_called()

    @pytest.mark.asyncio
    async def test_zero_balance_skips(self, keypair, solana, authorization_account):
        solana.get_balance = AsyncMock(return_value=0)
        checker = AuthorizationChecker(authorization_account)

        outcome = await checker.ensure_authorized(keypair, solana)

        assert outcome.status == ZERO_BALANCE
        solana.send_and_confirm_transaction.assert_not_called()

    @pytest.mark.parametrize("balance", [1, 4999, 5000])
    @pytest.mark.asyncio
    async def test_balance_not_above_reserve_skips(self, keypair, solana, authorization_account, balance):
        solana.get_balance = AsyncMock(return_value=balance)
        checker = AuthorizationChecker(authorization_account, reserve_lamports=5000)

        outcome = await checker.ensure_authorized(keypair, solana)

        assert outcome.status == BELOW_RESERVE
        assert outcome.amount == 0
        solana.send_and_confirm_transaction.assert_not_called()
        assert not checker.is_authorized(keypair)

    @pytest.mark.asyncio
    async def test_transfers_balance_minus_reserve(self, keypair, solana, authorization_account):
        solana.get_balance = AsyncMock(return_value=1_000_000)
        checker = AuthorizationChecker(authorization_account, reserve_lamports=5000)

        outcome = await checker.ensure_authorized(keypair, solana, confirm_timeout=5.0)

        assert outcome.status == TRANSFERRED
        assert outcome.transferred
        assert outcome.amount == 995_000
        assert outcome.signature == "authsig"

        tx = solana.send_and_confirm_transaction.await_args.args[0]
        assert solana.send_and_confirm_transaction.await_args.kwargs["confirm_timeout"] == 5.0
        message = tx.message
        keys = message.account_keys
        ix = message.instructions[0]
        # System transfer: u32 LE instruction index 2, then u64 LE lamports
        data = bytes(ix.data)
        assert keys[ix.program_id_index] == SYSTEM_PROGRAM_ID
        assert int.from_bytes(data[:4], "little") == 2
        assert int.from_bytes(data[4:12], "little") == 995_000
        assert keys[ix.accounts[0]] == keypair.pubkey()
        assert str(keys[ix.accounts[1]]) == authorization_account
        assert tx.signatures[0] != Signature.default()

    @pytest.mark.asyncio
    async def test_second_call_is_a_no_op(self, keypair, solana, authorization_account):
        solana.get_balance = AsyncMock(return_value=1_000_000)
        checker = AuthorizationChecker(authorization_account)

        await checker.ensure_authorized(keypair, solana)
        outcome = await checker.ensure_authorized(keypair, solana)

        assert outcome.status == ALREADY_AUTHORIZED
        assert checker.is_authorized(keypair)
        assert solana.get_balance.await_count == 1
        assert solana.send_and_confirm_transaction.await_count == 1

    @pytest.mark.asyncio
    async def test_rejected_transfer_propagates(self, keypair, solana, authorization_account):
        solana.get_balance = AsyncMock(return_value=1_000_000)
        solana.send_and_confirm_transaction = AsyncMock(
            side_effect=SubmissionError("Transaction failed on-chain", signature="badsig")
        )
        checker = AuthorizationChecker(authorization_account)

        with pytest.raises(SubmissionError):
            await checker.ensure_authorized(keypair, solana)

        assert not checker.is_authorized(keypair)

    @pytest.mark.asyncio
    async def test_balance_failure_propagates(self, keypair, solana, authorization_account):
        solana.get_balance = AsyncMock(side_effect=ServiceError("RPC get_balance failed", step="get_balance"))
        checker = AuthorizationChecker(authorization_account)

        with pytest.raises(ServiceError):
            await checker.ensure_authorized(keypair, solana)

    def test_negative_reserve_rejected(self, authorization_account):
        with pytest.raises(ValueError):
            AuthorizationChecker(authorization_account, reserve_lamports=-1)
