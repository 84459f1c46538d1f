"""
Treasury -> player SPL token transfers.

Instructions are assembled by hand (the token and associated-token programs
have stable layouts) and signed with the treasury keypair, which is both fee
payer and the only required signer.
"""
import base64
import json
from dataclasses import dataclass
from typing import List

import base58
from solders.hash import Hash
from solders.instruction import AccountMeta, Instruction
from solders.keypair import Keypair
from solders.message import Message
from solders.pubkey import Pubkey
from solders.transaction import Transaction

from slot_hub.errors import TreasuryAccountMissing, TreasuryInsufficientFunds
from slot_hub.logging_config import get_logger

logger = get_logger(__name__)

TOKEN_PROGRAM_ID = Pubkey.from_string("TokenkegQfeZyiNwAJbNbGKPFXCWuBvf9Ss623VQ5DA")
ASSOCIATED_TOKEN_PROGRAM_ID = Pubkey.from_string("ATokenGPvbdGVxr1b2hvZbsiqW5xWH25efTNsLJA8knL")
SYSTEM_PROGRAM_ID = Pubkey.from_string("11111111111111111111111111111111")

# token program instruction tags
TRANSFER_TAG = 3
CREATE_ATA_TAG = 0


@dataclass
class SignedTransfer:
    transaction: str  # base64 wire format
    signature: str
    amount: int
    last_valid_block_height: int
    create_destination: bool


def parse_treasury_keypair(secret: str) -> Keypair:
    """
    Accept either a JSON array of the 64 secret-key bytes or the base58 form
    wallets export.
    """
    secret = secret.strip()
    if secret.startswith("["):
        key_bytes = json.loads(secret)
        if not isinstance(key_bytes, list) or len(key_bytes) != 64:
            raise ValueError("Private key array must have 64 elements")
        return Keypair.from_bytes(bytes(key_bytes))
    return Keypair.from_bytes(base58.b58decode(secret))


def derive_ata(owner: Pubkey, mint: Pubkey) -> Pubkey:
    return Pubkey.find_program_address(
        [bytes(owner), bytes(TOKEN_PROGRAM_ID), bytes(mint)],
        ASSOCIATED_TOKEN_PROGRAM_ID,
    )[0]


def build_create_ata_ix(payer: Pubkey, ata: Pubkey, owner: Pubkey, mint: Pubkey) -> Instruction:
    metas = [
        AccountMeta(pubkey=payer, is_signer=True, is_writable=True),
        AccountMeta(pubkey=ata, is_signer=False, is_writable=True),
        AccountMeta(pubkey=owner, is_signer=False, is_writable=False),
        AccountMeta(pubkey=mint, is_signer=False, is_writable=False),
        AccountMeta(pubkey=SYSTEM_PROGRAM_ID, is_signer=False, is_writable=False),
        AccountMeta(pubkey=TOKEN_PROGRAM_ID, is_signer=False, is_writable=False),
    ]
    return Instruction(program_id=ASSOCIATED_TOKEN_PROGRAM_ID, data=bytes([CREATE_ATA_TAG]), accounts=metas)


def build_transfer_ix(source: Pubkey, dest: Pubkey, authority: Pubkey, amount: int) -> Instruction:
    data = bytes([TRANSFER_TAG]) + amount.to_bytes(8, "little")
    metas = [
        AccountMeta(pubkey=source, is_signer=False, is_writable=True),
        AccountMeta(pubkey=dest, is_signer=False, is_writable=True),
        AccountMeta(pubkey=authority, is_signer=True, is_writable=False),
    ]
    return Instruction(program_id=TOKEN_PROGRAM_ID, data=data, accounts=metas)


def build_payout_instructions(
    treasury: Pubkey,
    recipient: Pubkey,
    mint: Pubkey,
    amount: int,
    create_destination: bool,
) -> List[Instruction]:
    treasury_ata = derive_ata(treasury, mint)
    recipient_ata = derive_ata(recipient, mint)
    instructions: List[Instruction] = []
    if create_destination:
        instructions.append(build_create_ata_ix(treasury, recipient_ata, recipient, mint))
    instructions.append(build_transfer_ix(treasury_ata, recipient_ata, treasury, amount))
    return instructions


def sign_and_serialize(instructions: List[Instruction], signer: Keypair, blockhash: str) -> tuple[str, str]:
    """Sign as fee payer and return (base64 transaction, signature)."""
    recent_blockhash = Hash.from_string(blockhash)
    message = Message.new_with_blockhash(instructions, signer.pubkey(), recent_blockhash)
    tx = Transaction([signer], message, recent_blockhash)
    return base64.b64encode(bytes(tx)).decode(), str(tx.signatures[0])


async def prepare_payout(ledger, treasury: Keypair, recipient: Pubkey, mint: Pubkey, amount: int) -> SignedTransfer:
    """
    Resolve both token accounts, check the treasury can cover `amount` and
    return the signed transfer. Raises a TreasuryUnavailable subclass when the
    treasury account is missing or short.
    """
    treasury_pubkey = treasury.pubkey()
    treasury_ata = derive_ata(treasury_pubkey, mint)
    recipient_ata = derive_ata(recipient, mint)

    create_destination = not await ledger.account_exists(str(recipient_ata))
    treasury_balance = await ledger.get_token_balance(str(treasury_ata))
    if treasury_balance is None:
        logger.error("Treasury token account missing: treasury=%s ata=%s", treasury_pubkey, treasury_ata)
        raise TreasuryAccountMissing(
            "Treasury token account not found",
            treasuryWallet=str(treasury_pubkey),
            treasuryTokenAccount=str(treasury_ata),
        )
    if treasury_balance < amount:
        logger.error(
            "Treasury insufficient funds: ata=%s have=%s need=%s",
            treasury_ata,
            treasury_balance,
            amount,
        )
        raise TreasuryInsufficientFunds(
            "Treasury has insufficient funds",
            treasuryTokenAccount=str(treasury_ata),
            treasuryBalance=treasury_balance,
            requiredAmount=amount,
        )

    instructions = build_payout_instructions(treasury_pubkey, recipient, mint, amount, create_destination)
    latest = await ledger.get_latest_blockhash()
    transaction, signature = sign_and_serialize(instructions, treasury, latest.blockhash)
    return SignedTransfer(
        transaction=transaction,
        signature=signature,
        amount=amount,
        last_valid_block_height=latest.last_valid_block_height,
        create_destination=create_destination,
    )
