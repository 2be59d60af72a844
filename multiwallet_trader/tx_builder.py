"""
Versioned transaction assembly and single-signer signing.
"""
import logging
from typing import Optional, Sequence

from solders.hash import Hash
from solders.instruction import Instruction
from solders.keypair import Keypair
from solders.message import Message, MessageV0
from solders.pubkey import Pubkey
from solders.system_program import TransferParams, transfer
from solders.transaction import VersionedTransaction

from .errors import ValidationError

logger = logging.getLogger(__name__)


def build_transaction(
    payer: Keypair,
    instructions: Sequence[Instruction],
    blockhash: Hash
) -> VersionedTransaction:
    """
    Compile instructions into a v0 transaction signed by the payer only.

    Raises:
        ValidationError: If the instruction set is empty or does not compile
    """
    if not instructions:
        raise ValidationError("Cannot build a transaction without instructions")
    try:
        message = MessageV0.try_compile(payer.pubkey(), list(instructions), [], blockhash)
        return VersionedTransaction(message, [payer])
    except Exception as e:
        raise ValidationError(f"Invalid instruction set: {e}") from e


def build_transfer(
    sender: Keypair,
    recipient: Pubkey,
    lamports: int,
    blockhash: Hash
) -> VersionedTransaction:
    """System transfer of lamports, paid and signed by the sender."""
    if lamports <= 0:
        raise ValidationError(f"Transfer amount must be positive, got {lamports}")
    ix = transfer(TransferParams(from_pubkey=sender.pubkey(), to_pubkey=recipient, lamports=lamports))
    return build_transaction(sender, [ix], blockhash)


def _rebind_blockhash(message, blockhash: Hash):
    if isinstance(message, MessageV0):
        return MessageV0(
            message.header,
            message.account_keys,
            blockhash,
            message.instructions,
            message.address_table_lookups
        )
    header = message.header
    return Message.new_with_compiled_instructions(
        header.num_required_signatures,
        header.num_readonly_signed_accounts,
        header.num_readonly_unsigned_accounts,
        message.account_keys,
        blockhash,
        message.instructions
    )


def sign_prebuilt(
    unsigned: VersionedTransaction,
    payer: Keypair,
    blockhash: Optional[Hash] = None
) -> VersionedTransaction:
    """
    Sign a transaction built elsewhere (aggregator swap).

    When a blockhash is given the message is re-bound to it, so every
    transaction in a batch shares the batch blockhash.

    Raises:
        ValidationError: If the transaction needs more than one signer or the
            payer is not the fee payer
    """
    message = unsigned.message
    if message.header.num_required_signatures != 1:
        raise ValidationError(
            f"Expected a single-signer transaction, got {message.header.num_required_signatures} signers"
        )
    if message.account_keys[0] != payer.pubkey():
        raise ValidationError(f"Fee payer {message.account_keys[0]} does not match signer {payer.pubkey()}")

    if blockhash is not None:
        message = _rebind_blockhash(message, blockhash)
    return VersionedTransaction(message, [payer])
