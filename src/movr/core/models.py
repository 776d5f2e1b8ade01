"""Core types shared by the pipelines and the registry/storage wrappers."""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional


PRODUCTION_NETWORK = "mainnet"


class PackageKind(int, Enum):
    LIBRARY = 0
    TEMPLATE = 1

    @classmethod
    def from_label(cls, label: str) -> "PackageKind":
        return cls.TEMPLATE if label.lower() == "template" else cls.LIBRARY

    @property
    def label(self) -> str:
        return self.name.lower()


@dataclass
class NetworkProfile:
    name: str
    rpc_url: str
    registry_address: Optional[str] = None
    faucet_url: Optional[str] = None

    @property
    def is_production(self) -> bool:
        return self.name == PRODUCTION_NETWORK

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "rpc_url": self.rpc_url,
            "registry_address": self.registry_address,
            "faucet_url": self.faucet_url,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "NetworkProfile":
        return cls(
            name=data["name"],
            rpc_url=data.get("rpc_url", ""),
            registry_address=data.get("registry_address"),
            faucet_url=data.get("faucet_url"),
        )


@dataclass
class WalletRecord:
    """A stored key pair. ``private_key`` is absent for watch-only entries."""
    name: str
    address: str
    private_key: Optional[str] = None
    is_default: bool = False

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "address": self.address,
            "private_key": self.private_key,
            "is_default": self.is_default,
        }

    def public_view(self) -> dict:
        return {
            "name": self.name,
            "address": self.address,
            "is_default": self.is_default,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "WalletRecord":
        return cls(
            name=data["name"],
            address=data["address"],
            private_key=data.get("private_key"),
            is_default=bool(data.get("is_default", False)),
        )


@dataclass
class StorageCredentials:
    api_key: str = ""
    secret_key: str = ""
    gateway_url: str = ""
    jwt: str = ""

    def to_dict(self) -> dict:
        return {
            "api_key": self.api_key,
            "secret_key": self.secret_key,
            "gateway_url": self.gateway_url,
            "jwt": self.jwt,
        }


@dataclass
class PackageMetadata:
    name: str
    version: str
    publisher: str
    content_address: str
    endorsements: list[str] = field(default_factory=list)
    timestamp_seconds: int = 0
    package_kind: PackageKind = PackageKind.LIBRARY
    download_count: int = 0
    total_tips: int = 0
    tags: list[str] = field(default_factory=list)
    description: str = ""
    homepage: Optional[str] = None
    repository: Optional[str] = None
    license: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "version": self.version,
            "publisher": self.publisher,
            "content_address": self.content_address,
            "endorsements": list(self.endorsements),
            "timestamp_seconds": self.timestamp_seconds,
            "package_kind": self.package_kind.label,
            "download_count": self.download_count,
            "total_tips": self.total_tips,
            "tags": list(self.tags),
            "description": self.description,
            "homepage": self.homepage,
            "repository": self.repository,
            "license": self.license,
        }


@dataclass
class TransactionResult:
    """Outcome of one ledger write after confirmation (or after giving up)."""
    transaction_id: str
    success: bool
    status_message: str
    pending: bool = False

    def to_dict(self) -> dict:
        return {
            "transaction_id": self.transaction_id,
            "success": self.success,
            "status_message": self.status_message,
            "pending": self.pending,
        }


@dataclass
class RegistryStats:
    total_packages: int
    total_endorsers: int
    total_downloads: int
    total_tips: int

    def to_dict(self) -> dict:
        return {
            "total_packages": self.total_packages,
            "total_endorsers": self.total_endorsers,
            "total_downloads": self.total_downloads,
            "total_tips": self.total_tips,
        }


@dataclass
class EndorserRecord:
    address: str
    stake_amount: int
    is_active: bool
    reputation: int
    packages_endorsed: int
    registered_at: int

    def to_dict(self) -> dict:
        return {
            "address": self.address,
            "stake_amount": self.stake_amount,
            "is_active": self.is_active,
            "reputation": self.reputation,
            "packages_endorsed": self.packages_endorsed,
            "registered_at": self.registered_at,
        }


@dataclass
class UploadResult:
    content_address: str
    size: int
    timestamp: str

    def to_dict(self) -> dict:
        return {
            "content_address": self.content_address,
            "size": self.size,
            "timestamp": self.timestamp,
        }
