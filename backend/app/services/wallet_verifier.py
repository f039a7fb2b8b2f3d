from __future__ import annotations

from typing import Protocol

from app.core.logging import get_logger
from app.core.settings import Settings

logger = get_logger(__name__)


class WalletSignatureVerifier(Protocol):
    """Checks that ``signature`` over ``message`` was produced by the wallet.

    The signing scheme depends on the wallet type (plain Sui keypairs,
    zkLogin, ...) and lives outside this service.
    """

    async def verify(
        self,
        *,
        wallet_address: str,
        message: str,
        signature: str,
        wallet_type: str,
    ) -> bool: ...


class RejectingVerifier:
    """Fails closed. Used until a real verifier is wired in."""

    async def verify(self, *, wallet_address: str, message: str, signature: str, wallet_type: str) -> bool:
        logger.warning(
            "Wallet signature rejected: no verifier configured",
            wallet_address=wallet_address,
            wallet_type=wallet_type,
        )
        return False


class UnverifiedWalletVerifier:
    """Accepts any non-empty signature. Development only."""

    async def verify(self, *, wallet_address: str, message: str, signature: str, wallet_type: str) -> bool:
        logger.warning(
            "Wallet signature accepted without verification",
            wallet_address=wallet_address,
            wallet_type=wallet_type,
        )
        return bool(signature)


def build_wallet_verifier(settings: Settings) -> WalletSignatureVerifier:
    if settings.allow_unverified_wallets:
        return UnverifiedWalletVerifier()
    return RejectingVerifier()
