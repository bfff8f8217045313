"""
Solana SPL-token operations for the game token.

This is the on-chain ledger the settlement logic talks to. The house wallet
(ADMIN_WALLET_PRIVATE_KEY) pays network fees for every transaction, is the
counterparty of every bet and is the mint authority for test tokens.
"""
import asyncio
import logging
from typing import Optional, Tuple
from solana.rpc.async_api import AsyncClient
from solana.rpc.commitment import Confirmed
from solana.rpc.types import TxOpts
from solders.keypair import Keypair
from solders.pubkey import Pubkey
from solders.transaction import Transaction
from spl.token.constants import TOKEN_PROGRAM_ID
from spl.token.instructions import (
    MintToCheckedParams,
    TransferCheckedParams,
    create_idempotent_associated_token_account,
    get_associated_token_address,
    mint_to_checked,
    transfer_checked,
)
import base58

from config import HOUSE_IDENTIFIER
from utils.formatting import to_token_amount

logger = logging.getLogger(__name__)


def keypair_from_base58(secret: str) -> Keypair:
    """Create keypair from base58 secret key."""
    secret_bytes = base58.b58decode(secret)
    if len(secret_bytes) != 64:
        raise ValueError("Decoded secret key must be 64 bytes long")
    return Keypair.from_bytes(secret_bytes)


def generate_wallet() -> Tuple[str, str]:
    """Generate a new Solana wallet.

    Returns:
        Tuple of (public_key, base58_secret_key)
    """
    kp = Keypair()
    pubkey = str(kp.pubkey())
    secret = base58.b58encode(bytes(kp)).decode('utf-8')
    return pubkey, secret


class TokenLedger:
    """Moves the game token between custodial wallets and the house.

    Wallet identifiers are either a base58 secret key or HOUSE_IDENTIFIER.
    Amounts are in user-facing units; conversion to raw units happens here.
    """

    max_retries = 3

    def __init__(self, rpc_url: str, house_secret: str, token_mint: str, decimals: int):
        self.rpc_url = rpc_url
        self.house = keypair_from_base58(house_secret)
        self.mint = Pubkey.from_string(token_mint)
        self.decimals = decimals

    def _resolve(self, identifier: str) -> Keypair:
        if identifier == HOUSE_IDENTIFIER:
            return self.house
        return keypair_from_base58(identifier)

    def _ata(self, owner: Pubkey) -> Pubkey:
        return get_associated_token_address(owner, self.mint)

    async def _send(self, client: AsyncClient, instructions: list, signers: list) -> str:
        blockhash_resp = await client.get_latest_blockhash(Confirmed)
        recent_blockhash = blockhash_resp.value.blockhash

        tx = Transaction.new_signed_with_payer(
            instructions,
            self.house.pubkey(),
            signers,
            recent_blockhash
        )

        resp = await client.send_raw_transaction(bytes(tx), TxOpts(skip_preflight=False, preflight_commitment=Confirmed))
        signature = resp.value
        await client.confirm_transaction(signature, Confirmed)
        return str(signature)

    async def transfer(self, from_identifier: str, to_identifier: str, amount: float) -> bool:
        """Transfer game tokens.

        Returns:
            True once the transaction is confirmed. Raises on failure.
        """
        raw_amount = to_token_amount(amount, self.decimals)
        if raw_amount <= 0:
            raise ValueError(f"Transfer amount must be greater than 0 (got {amount})")

        sender = self._resolve(from_identifier)
        recipient = self._resolve(to_identifier)
        source = self._ata(sender.pubkey())
        dest = self._ata(recipient.pubkey())

        signers = [self.house]
        if sender.pubkey() != self.house.pubkey():
            signers.append(sender)

        last_error: Optional[Exception] = None
        for attempt in range(self.max_retries):
            try:
                logger.info(f"[TRANSFER] Attempt {attempt + 1}: {amount} tokens ({raw_amount} raw) {sender.pubkey()} -> {recipient.pubkey()}")

                async with AsyncClient(self.rpc_url) as client:
                    balance_resp = await client.get_token_account_balance(source, Confirmed)
                    if int(balance_resp.value.amount) < raw_amount:
                        raise ValueError("Sender does not have enough tokens")

                    instructions = [
                        create_idempotent_associated_token_account(
                            self.house.pubkey(), recipient.pubkey(), self.mint
                        ),
                        transfer_checked(
                            TransferCheckedParams(
                                program_id=TOKEN_PROGRAM_ID,
                                source=source,
                                mint=self.mint,
                                dest=dest,
                                owner=sender.pubkey(),
                                amount=raw_amount,
                                decimals=self.decimals,
                            )
                        ),
                    ]
                    tx_sig = await self._send(client, instructions, signers)

                logger.info(f"[TRANSFER] Confirmed: {tx_sig}")
                return True

            except ValueError:
                raise
            except Exception as e:
                last_error = e
                logger.warning(f"[TRANSFER] Attempt {attempt + 1}/{self.max_retries} failed: {e}")
                if attempt < self.max_retries - 1:
                    await asyncio.sleep(1)

        logger.error(f"[TRANSFER] All retries failed: {last_error}")
        raise Exception(f"Transfer failed after {self.max_retries} attempts: {last_error}")

    async def mint_to(self, owner_secret: str, amount: float) -> bool:
        """Mint test tokens to a wallet (house is the mint authority)."""
        raw_amount = to_token_amount(amount, self.decimals)
        owner = keypair_from_base58(owner_secret)
        dest = self._ata(owner.pubkey())

        async with AsyncClient(self.rpc_url) as client:
            instructions = [
                create_idempotent_associated_token_account(self.house.pubkey(), owner.pubkey(), self.mint),
                mint_to_checked(
                    MintToCheckedParams(
                        program_id=TOKEN_PROGRAM_ID,
                        mint=self.mint,
                        dest=dest,
                        mint_authority=self.house.pubkey(),
                        amount=raw_amount,
                        decimals=self.decimals,
                    )
                ),
            ]
            tx_sig = await self._send(client, instructions, [self.house])

        logger.info(f"[MINT] Minted {amount} tokens ({raw_amount} raw) to {owner.pubkey()}: {tx_sig}")
        return True
