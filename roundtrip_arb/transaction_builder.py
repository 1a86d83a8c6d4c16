"""
Atomic round-trip transaction assembly.
"""
import base64
import binascii
import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, List, Optional

from solders.address_lookup_table_account import AddressLookupTableAccount
from solders.compute_budget import set_compute_unit_limit, set_compute_unit_price
from solders.hash import Hash
from solders.instruction import AccountMeta, Instruction
from solders.message import MessageV0
from solders.pubkey import Pubkey
from solders.system_program import TransferParams, transfer
from solders.transaction import VersionedTransaction

from .authorization import AuthorizationChecker
from .errors import BuildError, ParseError
from .jupiter_client import JupiterQuote, SwapInstruction, merge_quotes
from .utils import get_terminal_colors

if TYPE_CHECKING:
    from .context import BotContext

colors = get_terminal_colors()
logger = logging.getLogger(__name__)

# Solana raw transaction size limit
MAX_TRANSACTION_SIZE = 1232


@dataclass
class TransactionPlan:
    """
    A fully signed round-trip transaction, ready for one-shot submission.

    Instruction order is fixed: compute budget, setup, swap, tip.
    After submission the plan is consumed and must not be reused.
    """
    compute_budget_instructions: List[Instruction]
    setup_instructions: List[Instruction]
    swap_instructions: List[Instruction]
    tip_instruction: Instruction
    lookup_tables: List[AddressLookupTableAccount]
    blockhash: Hash
    transaction: VersionedTransaction
    tip_lamports: int
    submitted: bool = field(default=False)

    @property
    def instruction_groups(self) -> List[List[Instruction]]:
        return [
            list(self.compute_budget_instructions),
            list(self.setup_instructions),
            list(self.swap_instructions),
            [self.tip_instruction],
        ]

    @property
    def instructions(self) -> List[Instruction]:
        return [ix for group in self.instruction_groups for ix in group]

    @property
    def signature(self) -> str:
        return str(self.transaction.signatures[0])

    def mark_submitted(self):
        self.submitted = True


def to_solana_instruction(swap_instr: SwapInstruction) -> Instruction:
    """
    Convert an instruction descriptor from Jupiter API to a Solana Instruction.

    Raises:
        ParseError: invalid pubkey or non-base64 data
    """
    try:
        program_id = Pubkey.from_string(swap_instr.program_id)
        accounts = [
            AccountMeta(
                pubkey=Pubkey.from_string(account_meta.pubkey),
                is_signer=account_meta.is_signer,
                is_writable=account_meta.is_writable
            )
            for account_meta in swap_instr.accounts
        ]
    except ValueError as e:
        raise ParseError(f"Invalid pubkey in instruction for program {swap_instr.program_id}: {e}",
                         step="build") from e

    try:
        data = base64.b64decode(swap_instr.data, validate=True)
    except (binascii.Error, TypeError, ValueError) as e:
        raise ParseError(f"Failed to decode instruction data from base64: {e}", step="build") from e

    return Instruction(program_id=program_id, accounts=accounts, data=data)


class TransactionBuilder:
    """Builds the signed versioned transaction for a profitable round trip."""

    def __init__(self, authorizer: AuthorizationChecker):
        self.authorizer = authorizer

    async def build(
        self,
        ctx: "BotContext",
        quote0: JupiterQuote,
        quote1: JupiterQuote,
        tip_lamports: int
    ) -> TransactionPlan:
        """
        Assemble, compile and sign the round-trip transaction.

        Raises:
            ValueError: non-positive tip
            ServiceError / ParseError: routing service or RPC failure
            SubmissionError: authorization transfer rejected
            BuildError: message compilation failed or transaction too large
        """
        if tip_lamports <= 0:
            raise ValueError(f"tip_lamports must be > 0, got {tip_lamports}")

        config = ctx.config
        signer = ctx.signer
        payer = signer.pubkey()

        # 1) Authorization (no-op once authorized)
        await self.authorizer.ensure_authorized(signer, ctx.solana, confirm_timeout=config.confirm_timeout_seconds)

        # 2) Swap instructions for the merged round trip
        merged_quote = merge_quotes(quote0, quote1, tip_lamports)
        instructions_resp = await ctx.jupiter.get_swap_instructions(
            merged_quote,
            user_public_key=str(payer),
            compute_unit_price_micro_lamports=config.compute_unit_price_micro_lamports
        )

        # 3) Instruction groups, in order
        compute_budget_instructions = [set_compute_unit_limit(instructions_resp.compute_unit_limit)]
        if config.compute_unit_price_micro_lamports > 0:
            compute_budget_instructions.append(set_compute_unit_price(config.compute_unit_price_micro_lamports))
        setup_instructions = [to_solana_instruction(ix) for ix in instructions_resp.setup_instructions]
        swap_instructions = [to_solana_instruction(instructions_resp.swap_instruction)]
        tip_instruction = transfer(TransferParams(
            from_pubkey=payer,
            to_pubkey=Pubkey.from_string(config.tip_account),
            lamports=tip_lamports
        ))
        all_instructions = compute_budget_instructions + setup_instructions + swap_instructions + [tip_instruction]

        logger.debug(
            f"Instruction counts: {len(compute_budget_instructions)} compute budget, "
            f"{len(setup_instructions)} setup, {len(swap_instructions)} swap, 1 tip"
        )

        # 4) Lookup tables
        alt_accounts = await ctx.solana.get_address_lookup_table_accounts(
            instructions_resp.address_lookup_table_addresses
        )

        # 5) Blockhash right before compile
        blockhash = await ctx.solana.get_latest_blockhash()

        # 6) Compile and sign
        try:
            message = MessageV0.try_compile(
                payer=payer,
                instructions=all_instructions,
                address_lookup_table_accounts=alt_accounts,
                recent_blockhash=blockhash
            )
            transaction = VersionedTransaction(message, [signer])
        except Exception as e:
            raise BuildError(
                f"Failed to compile VersionedTransaction: {e} "
                f"({len(all_instructions)} instructions, {len(alt_accounts)} ALTs)",
                step="build"
            ) from e

        raw_len = len(bytes(transaction))
        if raw_len > MAX_TRANSACTION_SIZE:
            raise BuildError(
                f"Transaction too large: {raw_len} bytes (max {MAX_TRANSACTION_SIZE}), "
                f"{len(all_instructions)} instructions, {len(alt_accounts)} ALTs",
                step="build"
            )

        plan = TransactionPlan(
            compute_budget_instructions=compute_budget_instructions,
            setup_instructions=setup_instructions,
            swap_instructions=swap_instructions,
            tip_instruction=tip_instruction,
            lookup_tables=alt_accounts,
            blockhash=blockhash,
            transaction=transaction,
            tip_lamports=tip_lamports
        )

        logger.info(
            f"{colors['GREEN']}VersionedTransaction built (v0):{colors['RESET']} "
            f"{colors['GREEN']}{len(all_instructions)}{colors['RESET']} instructions, "
            f"{colors['GREEN']}{len(alt_accounts)}{colors['RESET']} ALTs, "
            f"size={colors['GREEN']}{raw_len}{colors['RESET']}/{MAX_TRANSACTION_SIZE} bytes, "
            f"signature: {colors['CYAN']}{plan.signature}{colors['RESET']}"
        )
        return plan
