"""Config store — the single JSON document holding networks, wallets and
storage credentials."""
from __future__ import annotations

import copy
import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Optional

from movr.core.errors import ConfigError, FileSystemError
from movr.core.models import NetworkProfile, StorageCredentials, WalletRecord

logger = logging.getLogger(__name__)

CONFIG_VERSION = "1.0.0"
REGISTRY_CONTRACT = "0xba495e6bb22cdbdf25d0be1dd900eb508e3132598d87b3d98ae705cae36aba34"

# Storage credential key -> environment fallback
STORAGE_ENV = {
    "api_key": "PINATA_API_KEY",
    "secret_key": "PINATA_SECRET_KEY",
    "gateway_url": "PINATA_GATEWAY_URL",
    "jwt": "PINATA_JWT",
}


def default_config_path() -> Path:
    override = os.environ.get("MOVR_CONFIG")
    if override:
        return Path(override).expanduser()
    return Path.home() / ".movr" / "config.json"


def default_document() -> dict:
    return {
        "version": CONFIG_VERSION,
        "current_network": "testnet",
        "networks": {
            "devnet": {
                "name": "devnet",
                "rpc_url": "https://fullnode.devnet.aptoslabs.com/v1",
                "registry_address": REGISTRY_CONTRACT,
                "faucet_url": "https://faucet.devnet.aptoslabs.com",
            },
            "testnet": {
                "name": "testnet",
                "rpc_url": "https://fullnode.testnet.aptoslabs.com/v1",
                "registry_address": REGISTRY_CONTRACT,
                "faucet_url": "https://faucet.testnet.aptoslabs.com",
            },
            "mainnet": {
                "name": "mainnet",
                "rpc_url": "https://fullnode.mainnet.aptoslabs.com/v1",
                "registry_address": REGISTRY_CONTRACT,
                "faucet_url": None,
            },
        },
        "storage": StorageCredentials().to_dict(),
        "wallets": [],
        "default_wallet": None,
        "registry_contract": REGISTRY_CONTRACT,
    }


class ConfigStore:
    """Owns the on-disk configuration and every wallet/network record in it.

    Callers get copies back; mutations go through the methods below and are
    persisted immediately.
    """

    def __init__(self, path: Optional[Path] = None):
        self.path = Path(path) if path is not None else default_config_path()
        self._doc = default_document()

    # -----------------------------------------------------------------------
    # Persistence
    # -----------------------------------------------------------------------

    def load(self) -> "ConfigStore":
        """Merge the on-disk document over the defaults and validate it.

        A missing file leaves the defaults in place. Raises ConfigError if the
        file is unreadable or the merged document is invalid; the in-memory
        state is left on the defaults in that case.
        """
        if not self.path.exists():
            self._doc = default_document()
            return self

        try:
            data = json.loads(self.path.read_text())
        except (OSError, ValueError) as e:
            raise ConfigError(
                f"Failed to load configuration: {e}", {"path": str(self.path)}
            )
        if not isinstance(data, dict):
            raise ConfigError(
                "Configuration must be a JSON object", {"path": str(self.path)}
            )

        merged = {**default_document(), **data}
        self._validate(merged)
        self._doc = merged
        logger.debug("Configuration loaded from %s", self.path)
        return self

    def load_or_init(self) -> "ConfigStore":
        """Load, or fall back to the defaults and persist them."""
        try:
            return self.load()
        except ConfigError as e:
            logger.warning("%s; using defaults", e.message)
            self._doc = default_document()
            self.save()
            return self

    def save(self) -> None:
        """Write the whole document atomically (temp file, then replace)."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(
            prefix=".config-", suffix=".json", dir=str(self.path.parent)
        )
        try:
            with os.fdopen(fd, "w") as fh:
                json.dump(self._doc, fh, indent=2)
                fh.flush()
                os.fsync(fh.fileno())
            os.replace(tmp_name, self.path)
        except (OSError, TypeError, ValueError) as e:
            Path(tmp_name).unlink(missing_ok=True)
            raise FileSystemError(
                f"Failed to save configuration: {e}", {"path": str(self.path)}
            )
        logger.debug("Configuration saved to %s", self.path)

    @staticmethod
    def _validate(doc: dict) -> None:
        if not doc.get("version"):
            raise ConfigError("Configuration missing version")
        if not doc.get("current_network"):
            raise ConfigError("Configuration missing current network")
        networks = doc.get("networks")
        if not isinstance(networks, dict) or not networks:
            raise ConfigError("Configuration missing network definitions")
        if not isinstance(doc.get("storage"), dict):
            raise ConfigError("Configuration missing storage settings")
        if doc["current_network"] not in networks:
            raise ConfigError(
                f"Current network '{doc['current_network']}' not defined"
            )
        if not isinstance(doc.get("wallets", []), list):
            raise ConfigError("Configuration wallets must be a list")

    def document(self) -> dict:
        return copy.deepcopy(self._doc)

    # -----------------------------------------------------------------------
    # Networks
    # -----------------------------------------------------------------------

    def networks(self) -> list[NetworkProfile]:
        return [NetworkProfile.from_dict(n) for n in self._doc["networks"].values()]

    def get_network(self, name: str) -> NetworkProfile:
        data = self._doc["networks"].get(name)
        if data is None:
            raise ConfigError(f"Network '{name}' not found", {"network": name})
        return NetworkProfile.from_dict(data)

    @property
    def current_network(self) -> NetworkProfile:
        return self.get_network(self._doc["current_network"])

    def set_current_network(self, name: str) -> None:
        if name not in self._doc["networks"]:
            raise ConfigError(f"Network '{name}' not found", {"network": name})
        self._doc["current_network"] = name
        self.save()
        logger.info("Current network changed to %s", name)

    def set_network(self, profile: NetworkProfile) -> None:
        self._doc["networks"][profile.name] = profile.to_dict()
        self.save()
        logger.info("Network %s set to %s", profile.name, profile.rpc_url)

    def registry_address(self, network: Optional[NetworkProfile] = None) -> str:
        network = network or self.current_network
        return network.registry_address or self._doc["registry_contract"]

    # -----------------------------------------------------------------------
    # Storage credentials
    # -----------------------------------------------------------------------

    @property
    def storage(self) -> StorageCredentials:
        stored = self._doc.get("storage") or {}
        values = {}
        for key, env_name in STORAGE_ENV.items():
            values[key] = stored.get(key) or os.environ.get(env_name, "")
        return StorageCredentials(**values)

    def set_storage(self, credentials: StorageCredentials) -> None:
        self._doc["storage"] = credentials.to_dict()
        self.save()
        logger.info("Storage settings updated (gateway %s)", credentials.gateway_url)

    # -----------------------------------------------------------------------
    # Wallets
    # -----------------------------------------------------------------------

    def wallets(self) -> list[WalletRecord]:
        return [WalletRecord.from_dict(w) for w in self._doc["wallets"]]

    def get_wallet(self, name: str) -> Optional[WalletRecord]:
        for w in self._doc["wallets"]:
            if w["name"] == name:
                return WalletRecord.from_dict(w)
        return None

    def get_default_wallet(self) -> Optional[WalletRecord]:
        pointer = self._doc.get("default_wallet")
        if pointer:
            wallet = self.get_wallet(pointer)
            if wallet is not None:
                return wallet
        for w in self._doc["wallets"]:
            if w.get("is_default"):
                return WalletRecord.from_dict(w)
        return None

    def add_wallet(self, record: WalletRecord) -> WalletRecord:
        if self.get_wallet(record.name) is not None:
            raise ConfigError(
                f"Wallet '{record.name}' already exists", {"wallet": record.name}
            )

        entry = record.to_dict()
        if not self._doc["wallets"] or record.is_default:
            for w in self._doc["wallets"]:
                w["is_default"] = False
            entry["is_default"] = True
            self._doc["default_wallet"] = record.name
        else:
            entry["is_default"] = False

        self._doc["wallets"].append(entry)
        self.save()
        logger.info(
            "Wallet %s added (%s, default=%s)",
            record.name, record.address, entry["is_default"],
        )
        return WalletRecord.from_dict(entry)

    def remove_wallet(self, name: str) -> None:
        wallets = self._doc["wallets"]
        index = next((i for i, w in enumerate(wallets) if w["name"] == name), None)
        if index is None:
            raise ConfigError(f"Wallet '{name}' not found", {"wallet": name})

        removed = wallets.pop(index)
        was_default = removed.get("is_default") or self._doc.get("default_wallet") == name
        if not wallets:
            self._doc["default_wallet"] = None
        elif was_default:
            for w in wallets:
                w["is_default"] = False
            wallets[0]["is_default"] = True
            self._doc["default_wallet"] = wallets[0]["name"]

        self.save()
        logger.info("Wallet %s removed", name)

    def set_default_wallet(self, name: str) -> None:
        target = next((w for w in self._doc["wallets"] if w["name"] == name), None)
        if target is None:
            raise ConfigError(f"Wallet '{name}' not found", {"wallet": name})

        for w in self._doc["wallets"]:
            w["is_default"] = False
        target["is_default"] = True
        self._doc["default_wallet"] = name
        self.save()
        logger.info("Default wallet set to %s", name)
