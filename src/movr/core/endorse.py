"""Endorsements, tips and endorser registration."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from movr.core.errors import ValidationError
from movr.core.models import EndorserRecord, RegistryStats, TransactionResult
from movr.core.registry import ENDORSER_FEE, check_balance, format_apt
from movr.core.wallet import WalletManager

logger = logging.getLogger(__name__)


@dataclass
class ActionOutcome:
    """Result of a single paid registry action."""
    action: str
    success: bool
    message: str
    name: Optional[str] = None
    version: Optional[str] = None
    transaction: Optional[TransactionResult] = None
    not_found: bool = False

    @property
    def pending(self) -> bool:
        return bool(self.transaction and self.transaction.pending)

    def to_dict(self) -> dict:
        return {
            "action": self.action,
            "success": self.success,
            "message": self.message,
            "name": self.name,
            "version": self.version,
            "transaction": self.transaction.to_dict() if self.transaction else None,
            "not_found": self.not_found,
            "pending": self.pending,
        }


def _describe(action: str, target: str, result: TransactionResult) -> tuple[bool, str]:
    if result.pending:
        return False, f"{action} of {target} submitted, confirmation pending ({result.transaction_id})"
    if result.success:
        return True, f"{action} of {target} confirmed ({result.transaction_id})"
    return False, f"{action} of {target} failed: {result.status_message}"


class EndorsementService:
    def __init__(self, registry, wallets: WalletManager):
        self.registry = registry
        self.wallets = wallets

    async def _resolve(self, action: str, name: str, version: Optional[str]):
        metadata = await self.registry.get_package_metadata(name, version)
        if metadata is None:
            label = f"{name}@{version}" if version else name
            logger.warning("%s: package %s not found", action, label)
            return None, ActionOutcome(
                action, False, f"Package '{name}' not found",
                name=name, version=version, not_found=True,
            )
        return metadata, None

    async def endorse(
        self, name: str, version: Optional[str] = None, wallet: Optional[str] = None
    ) -> ActionOutcome:
        signer = self.wallets.signer(wallet)
        metadata, missing = await self._resolve("endorse", name, version)
        if missing:
            return missing

        result = await self.registry.endorse_package(signer, metadata.name, metadata.version)
        success, message = _describe("Endorsement", f"{metadata.name}@{metadata.version}", result)
        logger.info(message)
        return ActionOutcome(
            "endorse", success, message,
            name=metadata.name, version=metadata.version, transaction=result,
        )

    async def tip(
        self,
        name: str,
        amount: int,
        version: Optional[str] = None,
        wallet: Optional[str] = None,
    ) -> ActionOutcome:
        """Send *amount* octas to the publisher of *name*."""
        if amount <= 0:
            raise ValidationError("Tip amount must be positive", {"amount": amount})
        signer = self.wallets.signer(wallet)
        metadata, missing = await self._resolve("tip", name, version)
        if missing:
            return missing

        shortfall = await check_balance(self.registry, signer.address, amount)
        if shortfall:
            logger.warning("Tip to %s aborted: %s", name, shortfall)
            return ActionOutcome(
                "tip", False, shortfall, name=metadata.name, version=metadata.version
            )

        result = await self.registry.tip_package(
            signer, metadata.name, metadata.version, amount
        )
        success, message = _describe(
            f"Tip of {format_apt(amount)} APT", f"{metadata.name}@{metadata.version}", result
        )
        logger.info(message)
        return ActionOutcome(
            "tip", success, message,
            name=metadata.name, version=metadata.version, transaction=result,
        )

    async def register(self, stake_amount: int, wallet: Optional[str] = None) -> ActionOutcome:
        """Become an endorser: pays the registration fee plus *stake_amount*."""
        if stake_amount < 0:
            raise ValidationError("Stake amount cannot be negative", {"stake": stake_amount})
        signer = self.wallets.signer(wallet)

        shortfall = await check_balance(
            self.registry, signer.address, ENDORSER_FEE + stake_amount
        )
        if shortfall:
            logger.warning("Endorser registration aborted: %s", shortfall)
            return ActionOutcome("register", False, shortfall)

        result = await self.registry.register_endorser(signer, stake_amount)
        success, message = _describe(
            "Endorser registration", f"{signer.address} ({format_apt(stake_amount)} APT stake)", result
        )
        logger.info(message)
        return ActionOutcome("register", success, message, transaction=result)

    async def endorser_info(self, address: str) -> Optional[EndorserRecord]:
        return await self.registry.get_endorser_info(address)

    async def registry_stats(self) -> Optional[RegistryStats]:
        return await self.registry.get_registry_stats()
