"""
Pytest configuration and fixtures for the round-trip arbitrage bot tests.
"""
import base64

import pytest
from unittest.mock import AsyncMock, MagicMock
from solders.hash import Hash
from solders.keypair import Keypair
from solders.message import MessageV0
from solders.system_program import TransferParams, transfer
from solders.transaction import VersionedTransaction

from roundtrip_arb.config import BotConfig
from roundtrip_arb.context import BotContext
from roundtrip_arb.jupiter_client import (
    JupiterQuote,
    JupiterSwapInstructionsResponse,
    SwapAccountMeta,
    SwapInstruction
)
from roundtrip_arb.transaction_builder import TransactionPlan

SOL_MINT = "So11111111111111111111111111111111111111112"
USDC_MINT = "EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v"


@pytest.fixture
def sol_mint():
    """SOL mint address."""
    return SOL_MINT


@pytest.fixture
def usdc_mint():
    """USDC mint address."""
    return USDC_MINT


@pytest.fixture
def keypair():
    """Fresh signer keypair."""
    return Keypair()


@pytest.fixture
def bot_config():
    """Live-mode config with the reference constants and no delays."""
    return BotConfig(
        mode='live',
        loop_interval_seconds=0.0,
        failure_backoff_seconds=0.0,
        jupiter_requests_per_second=0.0
    )


@pytest.fixture
def mock_ctx(bot_config, keypair):
    """BotContext with mocked service handles."""
    return BotContext(
        config=bot_config,
        signer=keypair,
        jupiter=AsyncMock(),
        solana=AsyncMock(),
        jito=AsyncMock()
    )


def make_quote(input_mint, output_mint, in_amount, out_amount, other_amount_threshold=None):
    """JupiterQuote with a one-hop route plan."""
    return JupiterQuote(
        input_mint=input_mint,
        in_amount=in_amount,
        output_mint=output_mint,
        out_amount=out_amount,
        other_amount_threshold=out_amount if other_amount_threshold is None else other_amount_threshold,
        price_impact_pct="0.001",
        route_plan=[{
            'swapInfo': {
                'ammKey': '675kPX9MHTjS2zt1qfr1NYHuzeLXfQM9H24wFSUt1Mp8',
                'inputMint': input_mint,
                'outputMint': output_mint,
                'inAmount': str(in_amount),
                'outAmount': str(out_amount)
            },
            'percent': 100
        }]
    )


def make_swap_instructions(payer_pubkey, setup_count=1, alt_addresses=None):
    """Swap-instructions response with `setup_count` setup instructions and one swap instruction."""
    setup = []
    for i in range(setup_count):
        setup.append(SwapInstruction(
            program_id=str(Keypair().pubkey()),
            accounts=[
                SwapAccountMeta(pubkey=str(payer_pubkey), is_signer=True, is_writable=True),
                SwapAccountMeta(pubkey=str(Keypair().pubkey()), is_signer=False, is_writable=True)
            ],
            data=base64.b64encode(bytes([1, i])).decode()
        ))
    swap = SwapInstruction(
        program_id=str(Keypair().pubkey()),
        accounts=[
            SwapAccountMeta(pubkey=str(payer_pubkey), is_signer=True, is_writable=True),
            SwapAccountMeta(pubkey=str(Keypair().pubkey()), is_signer=False, is_writable=True),
            SwapAccountMeta(pubkey=str(Keypair().pubkey()), is_signer=False, is_writable=False)
        ],
        data=base64.b64encode(b"swap-data").decode()
    )
    return JupiterSwapInstructionsResponse(
        compute_unit_limit=250_000,
        setup_instructions=setup,
        swap_instruction=swap,
        address_lookup_table_addresses=alt_addresses or []
    )


def make_plan(keypair, tip_lamports=750, blockhash=None):
    """Minimal signed TransactionPlan (tip transfer only) for submission tests."""
    blockhash = blockhash or Hash(bytes([3] * 32))
    tip_ix = transfer(TransferParams(
        from_pubkey=keypair.pubkey(),
        to_pubkey=Keypair().pubkey(),
        lamports=tip_lamports
    ))
    message = MessageV0.try_compile(keypair.pubkey(), [tip_ix], [], blockhash)
    return TransactionPlan(
        compute_budget_instructions=[],
        setup_instructions=[],
        swap_instructions=[],
        tip_instruction=tip_ix,
        lookup_tables=[],
        blockhash=blockhash,
        transaction=VersionedTransaction(message, [keypair]),
        tip_lamports=tip_lamports
    )


@pytest.fixture
def http_response():
    """Factory for mocked httpx responses."""
    def _make(json_data=None, status_code=200):
        response = MagicMock()
        response.status_code = status_code
        response.json.return_value = json_data
        response.raise_for_status = MagicMock()
        return response
    return _make
