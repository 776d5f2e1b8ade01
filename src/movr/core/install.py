"""Install pipeline — resolve a package in the registry, download and unpack it."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Optional

from movr.core.errors import MovrError, PackageNotFoundError
from movr.core.models import PackageMetadata

logger = logging.getLogger(__name__)

DEFAULT_PACKAGES_DIR = "packages"


class InstallStatus(str, Enum):
    INSTALLED = "installed"
    NOT_FOUND = "not_found"
    RESOLVE_FAILED = "resolve_failed"
    DOWNLOAD_FAILED = "download_failed"


@dataclass
class InstallOutcome:
    """Result of one install. Only ``installed`` means files were written."""
    status: InstallStatus
    name: str
    version: Optional[str] = None
    package: Optional[PackageMetadata] = None
    output_dir: Optional[Path] = None
    files: list[str] = field(default_factory=list)
    error: Optional[MovrError] = None

    @property
    def success(self) -> bool:
        return self.status == InstallStatus.INSTALLED

    @property
    def message(self) -> str:
        if self.status == InstallStatus.INSTALLED:
            return f"Installed {self.name}@{self.version} into {self.output_dir}"
        if self.status == InstallStatus.NOT_FOUND:
            return self.error.message if self.error else f"Package '{self.name}' not found"
        stage = "resolve" if self.status == InstallStatus.RESOLVE_FAILED else "download"
        return f"Could not {stage} {self.name}: {self.error.message if self.error else 'unknown error'}"

    def to_dict(self) -> dict:
        return {
            "status": self.status.value,
            "success": self.success,
            "name": self.name,
            "version": self.version,
            "package": self.package.to_dict() if self.package else None,
            "output_dir": str(self.output_dir) if self.output_dir else None,
            "files": list(self.files),
            "message": self.message,
            "error": self.error.to_dict() if self.error else None,
        }


class InstallPipeline:
    """resolve -> download -> extract. Failures come back as outcomes."""

    def __init__(self, registry, storage):
        self.registry = registry
        self.storage = storage

    async def resolve(self, name: str, version: Optional[str] = None) -> PackageMetadata:
        metadata = await self.registry.get_package_metadata(name, version)
        if metadata is None:
            context = {"version": version} if version else {}
            raise PackageNotFoundError(name, context)
        return metadata

    async def run(
        self,
        name: str,
        version: Optional[str] = None,
        output_dir: Optional[Path] = None,
    ) -> InstallOutcome:
        try:
            metadata = await self.resolve(name, version)
        except PackageNotFoundError as e:
            logger.warning("%s", e.message)
            return InstallOutcome(InstallStatus.NOT_FOUND, name, version, error=e)
        except MovrError as e:
            if not e.is_operational:
                raise
            logger.error("Resolving %s failed: %s", name, e.message)
            return InstallOutcome(InstallStatus.RESOLVE_FAILED, name, version, error=e)

        target = Path(output_dir) if output_dir else Path.cwd() / DEFAULT_PACKAGES_DIR / name
        logger.info(
            "Installing %s@%s from %s", name, metadata.version, metadata.content_address
        )
        try:
            files = await self.storage.download_package(metadata.content_address, target)
        except MovrError as e:
            if not e.is_operational:
                raise
            logger.error("Downloading %s failed: %s", name, e.message)
            return InstallOutcome(
                InstallStatus.DOWNLOAD_FAILED, name, metadata.version,
                package=metadata, output_dir=target, error=e,
            )

        return InstallOutcome(
            InstallStatus.INSTALLED, name, metadata.version,
            package=metadata, output_dir=target, files=files,
        )
