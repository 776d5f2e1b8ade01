"""Publish pipeline — validate, archive, upload, pay and register a package.

The pipeline is a linear state machine:

    validating -> archiving -> uploading -> fee_check
      -> awaiting_user_confirmation -> submitting
      -> awaiting_ledger_confirmation -> verifying -> done

Any state can fall through to ``failed``. A ledger confirmation that does not
arrive in time ends in ``pending``: the transaction was submitted but its fate
is unknown. Temporary copies and archives are removed on every exit path.
"""
from __future__ import annotations

import logging
import re
import shutil
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Awaitable, Callable, Optional, Union

import tomli

from movr.core.archive import build_archive, copy_to_staging
from movr.core.errors import (
    FileSystemError,
    InvalidPackageError,
    MovrError,
    ValidationError,
)
from movr.core.models import PackageKind, PackageMetadata, TransactionResult
from movr.core.registry import PUBLISH_FEE, check_balance, format_apt
from movr.core.wallet import WalletManager

logger = logging.getLogger(__name__)

MANIFEST_FILE = "Move.toml"
DEFAULT_VERSION = "1.0.0"
VERSION_PATTERN = re.compile(r"^\d+\.\d+\.\d+$")

Confirm = Callable[[str], Awaitable[bool]]


class PublishState(str, Enum):
    VALIDATING = "validating"
    ARCHIVING = "archiving"
    UPLOADING = "uploading"
    FEE_CHECK = "fee_check"
    AWAITING_USER_CONFIRMATION = "awaiting_user_confirmation"
    SUBMITTING = "submitting"
    AWAITING_LEDGER_CONFIRMATION = "awaiting_ledger_confirmation"
    VERIFYING = "verifying"
    DONE = "done"
    FAILED = "failed"
    PENDING = "pending"


TERMINAL_STATES = {PublishState.DONE, PublishState.FAILED, PublishState.PENDING}


@dataclass
class PublishRequest:
    package_path: Path
    version: Optional[str] = None
    tags: Union[str, list[str], None] = None
    description: Optional[str] = None
    wallet: Optional[str] = None
    package_kind: PackageKind = PackageKind.LIBRARY


@dataclass
class PublishOutcome:
    """Where the pipeline stopped, and everything it learned on the way."""
    state: PublishState
    name: Optional[str] = None
    version: Optional[str] = None
    publisher: Optional[str] = None
    content_address: Optional[str] = None
    size: Optional[int] = None
    transaction: Optional[TransactionResult] = None
    failed_at: Optional[PublishState] = None
    cancelled: bool = False
    message: str = ""
    error: Optional[MovrError] = None
    warnings: list[str] = field(default_factory=list)
    history: list[PublishState] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return self.state == PublishState.DONE

    def to_dict(self) -> dict:
        return {
            "state": self.state.value,
            "success": self.success,
            "name": self.name,
            "version": self.version,
            "publisher": self.publisher,
            "content_address": self.content_address,
            "size": self.size,
            "transaction": self.transaction.to_dict() if self.transaction else None,
            "failed_at": self.failed_at.value if self.failed_at else None,
            "cancelled": self.cancelled,
            "message": self.message,
            "error": self.error.to_dict() if self.error else None,
            "warnings": list(self.warnings),
            "history": [s.value for s in self.history],
        }


# ---------------------------------------------------------------------------
# Validation helpers
# ---------------------------------------------------------------------------

def validate_version(version: Optional[str]) -> str:
    if version is None or version == "":
        return DEFAULT_VERSION
    if not isinstance(version, str):
        raise ValidationError(
            f"Invalid version {version!r}: expected MAJOR.MINOR.PATCH",
            {"version": version},
        )
    version = version.strip()
    if not VERSION_PATTERN.match(version):
        raise ValidationError(
            f"Invalid version '{version}': expected MAJOR.MINOR.PATCH",
            {"version": version},
        )
    return version


def parse_tags(tags: Union[str, list[str], None]) -> list[str]:
    """'defi, token,,' -> ['defi', 'token']"""
    if not tags:
        return []
    if isinstance(tags, str):
        items = tags.split(",")
    elif isinstance(tags, (list, tuple)) and all(isinstance(t, str) for t in tags):
        items = tags
    else:
        raise ValidationError(
            "Tags must be a comma-separated string or a list of strings",
            {"tags": tags},
        )
    return [t.strip() for t in items if t.strip()]


def read_manifest(package_dir: Path) -> dict:
    """Parse the package manifest and return its ``[package]`` table."""
    package_dir = Path(package_dir)
    if not package_dir.is_dir():
        raise FileSystemError(
            f"Package directory not found: {package_dir}", {"path": str(package_dir)}
        )
    manifest_path = package_dir / MANIFEST_FILE
    if not manifest_path.is_file():
        raise InvalidPackageError(
            f"{MANIFEST_FILE} not found in {package_dir}", {"path": str(package_dir)}
        )
    try:
        data = tomli.loads(manifest_path.read_text())
    except (tomli.TOMLDecodeError, UnicodeDecodeError) as e:
        raise InvalidPackageError(
            f"Could not parse {MANIFEST_FILE}: {e}", {"path": str(manifest_path)}
        )
    package = data.get("package")
    if not isinstance(package, dict) or not package.get("name"):
        raise InvalidPackageError(
            f"Package name not found in {MANIFEST_FILE}", {"path": str(manifest_path)}
        )
    return package


async def _decline(prompt: str) -> bool:
    return False


class PublishPipeline:
    """Runs one publish from a package directory to a confirmed registry entry.

    ``registry`` and ``storage`` are the RegistryClient and StorageClient (or
    anything shaped like them). ``confirm`` is awaited once, right before any
    funds are spent; a False answer cancels the publish.
    """

    def __init__(
        self,
        registry,
        storage,
        wallets: WalletManager,
        confirm: Optional[Confirm] = None,
    ):
        self.registry = registry
        self.storage = storage
        self.wallets = wallets
        self.confirm = confirm or _decline

    def _enter(self, outcome: PublishOutcome, state: PublishState) -> None:
        outcome.state = state
        outcome.history.append(state)
        logger.debug("publish %s: %s", outcome.name or "?", state.value)

    def _fail(self, outcome: PublishOutcome, message: str, cancelled: bool = False) -> PublishOutcome:
        outcome.failed_at = outcome.state
        outcome.cancelled = cancelled
        outcome.message = message
        self._enter(outcome, PublishState.FAILED)
        return outcome

    async def _verify(self, outcome: PublishOutcome, content_address: str) -> list[str]:
        """Read the new entry back. The write is already confirmed, so every
        problem found here is a warning."""
        try:
            onchain = await self.registry.get_package_metadata(outcome.name, outcome.version)
        except MovrError as e:
            if not e.is_operational:
                raise
            return [f"Could not verify registry entry: {e.message}"]
        if onchain is None:
            return ["Package not yet visible in the registry"]
        if onchain.content_address != content_address:
            return [
                f"Registry content address {onchain.content_address} "
                f"does not match upload {content_address}"
            ]
        return []

    async def run(self, request: PublishRequest) -> PublishOutcome:
        outcome = PublishOutcome(state=PublishState.VALIDATING)
        staging_root: Optional[Path] = None
        archive: Optional[Path] = None

        try:
            # Validating
            self._enter(outcome, PublishState.VALIDATING)
            package = read_manifest(Path(request.package_path))
            outcome.name = str(package["name"])
            outcome.version = validate_version(request.version)
            signer = self.wallets.signer(request.wallet)
            outcome.publisher = signer.address
            tags = parse_tags(request.tags)
            description = request.description or str(package.get("description", ""))

            # Archiving
            self._enter(outcome, PublishState.ARCHIVING)
            staged = copy_to_staging(Path(request.package_path))
            staging_root = staged.parent
            archive = build_archive(staged)

            # Uploading
            self._enter(outcome, PublishState.UPLOADING)
            upload = await self.storage.upload_file(archive, {
                "name": f"{outcome.name}-{outcome.version}.zip",
                "keyvalues": {"package": outcome.name, "version": outcome.version},
            })
            outcome.content_address = upload.content_address
            outcome.size = upload.size

            # FeeCheck
            self._enter(outcome, PublishState.FEE_CHECK)
            shortfall = await check_balance(self.registry, signer.address, PUBLISH_FEE)
            if shortfall:
                logger.warning("Publish of %s aborted: %s", outcome.name, shortfall)
                return self._fail(outcome, shortfall)

            # AwaitingUserConfirmation
            self._enter(outcome, PublishState.AWAITING_USER_CONFIRMATION)
            prompt = (
                f"Publish {outcome.name}@{outcome.version} for "
                f"{format_apt(PUBLISH_FEE)} APT?"
            )
            if not await self.confirm(prompt):
                logger.info("Publish of %s cancelled by user", outcome.name)
                return self._fail(outcome, "Publish cancelled", cancelled=True)

            # Submitting
            self._enter(outcome, PublishState.SUBMITTING)
            metadata = PackageMetadata(
                name=outcome.name,
                version=outcome.version,
                publisher=signer.address,
                content_address=upload.content_address,
                package_kind=request.package_kind,
                tags=tags,
                description=description,
            )
            tx_hash = await self.registry.submit(signer, self.registry.publish_call(metadata))

            # AwaitingLedgerConfirmation
            self._enter(outcome, PublishState.AWAITING_LEDGER_CONFIRMATION)
            result = await self.registry.wait_for_transaction(tx_hash)
            outcome.transaction = result
            if result.pending:
                outcome.message = f"Transaction {tx_hash} submitted, confirmation pending"
                self._enter(outcome, PublishState.PENDING)
                return outcome
            if not result.success:
                return self._fail(outcome, f"Transaction failed: {result.status_message}")

            # Verifying
            self._enter(outcome, PublishState.VERIFYING)
            outcome.warnings.extend(await self._verify(outcome, upload.content_address))
            for warning in outcome.warnings:
                logger.warning("Verifying %s: %s", outcome.name, warning)

            outcome.message = f"Published {outcome.name}@{outcome.version}"
            self._enter(outcome, PublishState.DONE)
            logger.info("%s (%s)", outcome.message, result.transaction_id)
            return outcome

        except MovrError as e:
            if not e.is_operational:
                raise
            outcome.error = e
            logger.error("Publish failed at %s: %s", outcome.state.value, e.message)
            return self._fail(outcome, e.message)

        finally:
            if archive is not None:
                archive.unlink(missing_ok=True)
            if staging_root is not None:
                shutil.rmtree(staging_root, ignore_errors=True)
