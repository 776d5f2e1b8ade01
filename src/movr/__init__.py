"""movr: publish, discover and install Move packages."""

__version__ = "0.1.0"

from movr.core.errors import (
    MovrError,
    NetworkError,
    BlockchainError,
    StorageError,
    ConfigError,
    FileSystemError,
    ValidationError,
    PackageNotFoundError,
    InvalidPackageError,
    InvariantError,
)
from movr.core.models import (
    PackageKind,
    PackageMetadata,
    NetworkProfile,
    WalletRecord,
    TransactionResult,
)
from movr.core.config import ConfigStore
from movr.core.wallet import WalletManager, Signer
from movr.core.registry import RegistryClient, PUBLISH_FEE, ENDORSER_FEE
from movr.core.storage import StorageClient
from movr.core.archive import build_archive, extract_archive, inspect_archive
from movr.core.publish import PublishPipeline, PublishRequest, PublishState
from movr.core.install import InstallPipeline, InstallStatus
from movr.core.search import CatalogSearch, SearchFilters
from movr.core.endorse import EndorsementService
