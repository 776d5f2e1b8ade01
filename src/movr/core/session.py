"""Client wiring — one aiohttp session shared by the registry and storage clients."""
from __future__ import annotations

from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator, Optional

import aiohttp

from movr.core.config import ConfigStore
from movr.core.models import NetworkProfile
from movr.core.registry import RegistryClient
from movr.core.storage import StorageClient
from movr.core.wallet import WalletManager


@dataclass
class Clients:
    config: ConfigStore
    network: NetworkProfile
    registry: RegistryClient
    storage: StorageClient
    wallets: WalletManager


@asynccontextmanager
async def connect(
    config: ConfigStore,
    network: Optional[str] = None,
    timeout: float = 120.0,
) -> AsyncIterator[Clients]:
    """Open clients for *network* (or the configured current network)."""
    profile = config.get_network(network) if network else config.current_network
    async with aiohttp.ClientSession(
        timeout=aiohttp.ClientTimeout(total=timeout)
    ) as session:
        registry = RegistryClient(
            profile, session=session,
            registry_address=config.registry_address(profile),
        )
        storage = StorageClient(config.storage, session=session)
        yield Clients(
            config=config,
            network=profile,
            registry=registry,
            storage=storage,
            wallets=WalletManager(config, faucet=registry, network=profile),
        )
