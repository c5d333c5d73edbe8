from __future__ import annotations

import base64
import logging
import uuid
from dataclasses import dataclass, field
from typing import Any

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class SignedBundle:
    transactions: list[str]
    signature: str
    tip_lamports: int
    tip_account: str = ""
    meta: dict[str, Any] = field(default_factory=dict)


class KeypairSigner:
    """Signs venue-built swap transactions and a tip transfer with a local keypair."""

    def __init__(self, secret_key: str):
        if not str(secret_key or "").strip():
            raise RuntimeError("A base58 wallet secret is required for live signing (SENTIBOT_PRIVATE_KEY)")
        self._solders = self._load_solders()
        self._keypair = self._solders["Keypair"].from_base58_string(str(secret_key).strip())

    @staticmethod
    def _load_solders() -> dict[str, Any]:
        try:
            from solders.keypair import Keypair
            from solders.message import MessageV0
            from solders.pubkey import Pubkey
            from solders.system_program import TransferParams, transfer
            from solders.transaction import VersionedTransaction
        except Exception as exc:
            raise RuntimeError(
                "solders package is required for live transaction signing. "
                "Install with: pip install solders"
            ) from exc
        return {
            "Keypair": Keypair,
            "MessageV0": MessageV0,
            "Pubkey": Pubkey,
            "TransferParams": TransferParams,
            "transfer": transfer,
            "VersionedTransaction": VersionedTransaction,
        }

    @property
    def public_key(self) -> str:
        return str(self._keypair.pubkey())

    def build_bundle(self, unsigned_transaction: str, tip_lamports: int, tip_account: str) -> SignedBundle:
        lib = self._solders
        versioned = lib["VersionedTransaction"].from_bytes(base64.b64decode(unsigned_transaction))
        message = versioned.message
        swap_tx = lib["VersionedTransaction"](message, [self._keypair])

        instruction = lib["transfer"](
            lib["TransferParams"](
                from_pubkey=self._keypair.pubkey(),
                to_pubkey=lib["Pubkey"].from_string(tip_account),
                lamports=int(tip_lamports),
            )
        )
        tip_message = lib["MessageV0"].try_compile(
            self._keypair.pubkey(),
            [instruction],
            [],
            message.recent_blockhash,
        )
        tip_tx = lib["VersionedTransaction"](tip_message, [self._keypair])
        signature = str(swap_tx.signatures[0])
        logger.debug("signed swap %s with %s lamport tip to %s", signature, tip_lamports, tip_account)
        return SignedBundle(
            transactions=[
                base64.b64encode(bytes(swap_tx)).decode("ascii"),
                base64.b64encode(bytes(tip_tx)).decode("ascii"),
            ],
            signature=signature,
            tip_lamports=int(tip_lamports),
            tip_account=tip_account,
        )


class PaperSigner:
    """Stands in for a wallet when trading against the paper backend."""

    public_key = "paper-wallet"

    def build_bundle(self, unsigned_transaction: str, tip_lamports: int, tip_account: str) -> SignedBundle:
        return SignedBundle(
            transactions=[unsigned_transaction],
            signature=f"paper-{uuid.uuid4().hex[:16]}",
            tip_lamports=int(tip_lamports),
            tip_account=tip_account,
        )
