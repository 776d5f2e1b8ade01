"""Wallets — Ed25519 key pairs stored in the config document."""
from __future__ import annotations

import hashlib
import logging
from dataclasses import dataclass
from typing import Optional, Protocol

from nacl.exceptions import CryptoError
from nacl.signing import SigningKey

from movr.core.config import ConfigStore
from movr.core.errors import ConfigError, MovrError, ValidationError
from movr.core.models import NetworkProfile, WalletRecord

logger = logging.getLogger(__name__)

# Single-key Ed25519 authentication scheme byte
ED25519_SCHEME = b"\x00"
PRIVATE_KEY_PREFIX = "ed25519-priv-"
FAUCET_GRANT = 100_000_000


def _strip_hex(value: str) -> str:
    value = value.strip()
    if value.startswith(PRIVATE_KEY_PREFIX):
        value = value[len(PRIVATE_KEY_PREFIX):]
    if value.startswith(("0x", "0X")):
        value = value[2:]
    return value


class Signer:
    """An account that can sign: private key, public key and derived address."""

    def __init__(self, signing_key: SigningKey):
        self._key = signing_key

    @classmethod
    def generate(cls) -> "Signer":
        return cls(SigningKey.generate())

    @classmethod
    def from_private_key(cls, key_material: str) -> "Signer":
        raw = _strip_hex(key_material)
        try:
            seed = bytes.fromhex(raw)
        except ValueError:
            raise ValidationError("Private key must be hex encoded")
        if len(seed) != 32:
            raise ValidationError(
                f"Private key must be 32 bytes, got {len(seed)}"
            )
        try:
            return cls(SigningKey(seed))
        except CryptoError as e:
            raise ValidationError(f"Invalid private key: {e}")

    @property
    def public_key(self) -> bytes:
        return bytes(self._key.verify_key)

    @property
    def public_key_hex(self) -> str:
        return "0x" + self.public_key.hex()

    @property
    def private_key_hex(self) -> str:
        return "0x" + bytes(self._key).hex()

    @property
    def address(self) -> str:
        return derive_address(self.public_key)

    def sign(self, message: bytes) -> bytes:
        return self._key.sign(message).signature


def derive_address(public_key: bytes) -> str:
    """Authentication key of a single Ed25519 key: sha3-256(pubkey || 0x00)."""
    return "0x" + hashlib.sha3_256(public_key + ED25519_SCHEME).hexdigest()


class Faucet(Protocol):
    async def fund_account(self, address: str, amount: int = FAUCET_GRANT) -> None: ...


@dataclass
class WalletCreation:
    record: WalletRecord
    funded: bool
    funding_error: Optional[str] = None


class WalletManager:
    """Create, import, list, select and fund wallets on top of a ConfigStore."""

    def __init__(self, config: ConfigStore, faucet: Optional[Faucet] = None,
                 network: Optional[NetworkProfile] = None):
        self.config = config
        self.faucet = faucet
        self.network = network

    @property
    def _network(self) -> NetworkProfile:
        return self.network or self.config.current_network

    async def create(self, name: str) -> WalletCreation:
        """Generate a key pair, persist it, then ask the faucet for funds.

        Funding only happens off the production network. A faucet failure is
        reported on the result; the wallet is kept either way.
        """
        if not name:
            raise ValidationError("Wallet name is required")

        signer = Signer.generate()
        record = self.config.add_wallet(WalletRecord(
            name=name,
            address=signer.address,
            private_key=signer.private_key_hex,
        ))
        logger.info("Wallet %s created (%s)", name, record.address)

        if self._network.is_production or self.faucet is None:
            return WalletCreation(record=record, funded=False)

        try:
            await self.faucet.fund_account(record.address, FAUCET_GRANT)
        except MovrError as e:
            logger.warning("Funding wallet %s failed: %s", name, e.message)
            return WalletCreation(record=record, funded=False, funding_error=e.message)
        return WalletCreation(record=record, funded=True)

    def import_key(self, name: str, key_material: str) -> WalletRecord:
        if not name:
            raise ValidationError("Wallet name is required")
        if not key_material:
            raise ValidationError("Private key is required")

        signer = Signer.from_private_key(key_material)
        record = self.config.add_wallet(WalletRecord(
            name=name,
            address=signer.address,
            private_key=signer.private_key_hex,
        ))
        logger.info("Wallet %s imported (%s)", name, record.address)
        return record

    def list(self) -> list[WalletRecord]:
        return self.config.wallets()

    def show(self, name: Optional[str] = None) -> WalletRecord:
        if name:
            wallet = self.config.get_wallet(name)
            if wallet is None:
                raise ConfigError(f"Wallet '{name}' not found", {"wallet": name})
            return wallet
        wallet = self.config.get_default_wallet()
        if wallet is None:
            raise ConfigError("No default wallet found")
        return wallet

    def remove(self, name: str) -> None:
        self.config.remove_wallet(name)

    def use(self, name: str) -> None:
        self.config.set_default_wallet(name)

    def signer(self, name: Optional[str] = None) -> Signer:
        """Key pair for *name*, or for the default wallet."""
        wallet = self.show(name)
        if not wallet.private_key:
            raise ConfigError(
                f"Wallet '{wallet.name}' has no private key",
                {"wallet": wallet.name},
            )
        return Signer.from_private_key(wallet.private_key)
