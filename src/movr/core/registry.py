"""Registry client — reads and writes against the on-chain package registry.

Reads are view-function calls and never sign anything. Writes follow one
protocol: build the call, sign it, submit it, then poll the node until the
transaction reaches a terminal state or the confirmation window runs out.

All traffic goes through the full node's REST API:

    POST /view                              read-only Move function
    GET  /accounts/{address}                sequence number
    GET  /estimate_gas_price
    POST /transactions/encode_submission    bytes to sign
    POST /transactions                      submit signed transaction
    GET  /transactions/by_hash/{hash}       confirmation polling
"""
from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Any, Optional

import aiohttp

from movr.core.errors import (
    BlockchainError,
    ConfigError,
    InvariantError,
    ValidationError,
)
from movr.core.models import (
    EndorserRecord,
    NetworkProfile,
    PackageKind,
    PackageMetadata,
    RegistryStats,
    TransactionResult,
)
from movr.core.wallet import FAUCET_GRANT, Signer

logger = logging.getLogger(__name__)

MODULE_NAME = "registry"
APTOS_COIN = "0x1::aptos_coin::AptosCoin"
OCTAS_PER_APT = 100_000_000

# Platform fees in octas
PUBLISH_FEE = 100_000_000
ENDORSER_FEE = 100_000_000

PENDING_STATUS = "confirmation pending"


def format_apt(octas: int) -> str:
    """1_50000000 -> '1.5'."""
    text = f"{Decimal(octas) / OCTAS_PER_APT:.8f}"
    return text.rstrip("0").rstrip(".") if "." in text else text


def parse_apt(amount: str) -> int:
    """'1.5' -> 150000000 octas."""
    try:
        value = Decimal(str(amount))
    except InvalidOperation:
        raise ValidationError(f"Invalid amount: {amount!r}")
    if not value.is_finite() or value <= 0:
        raise ValidationError("Amount must be positive")
    octas = value * OCTAS_PER_APT
    if octas != octas.to_integral_value():
        raise ValidationError("Amount has more than 8 decimal places")
    return int(octas)


# ---------------------------------------------------------------------------
# Value parsing
# ---------------------------------------------------------------------------

def parse_move_value(value: Any) -> Any:
    """Unwrap the JSON encoding of Move values into plain Python values.

    Options arrive as ``{"vec": [x]}`` and some vectors as ``{"values": [...]}``.
    Integers stay strings here; callers convert the fields they know are numeric.
    """
    if isinstance(value, dict):
        if set(value) == {"vec"}:
            inner = value["vec"]
            return parse_move_value(inner[0]) if inner else None
        if set(value) == {"values"}:
            return [parse_move_value(v) for v in value["values"]]
        if set(value) == {"value"}:
            return parse_move_value(value["value"])
        return {k: parse_move_value(v) for k, v in value.items()}
    if isinstance(value, list):
        return [parse_move_value(v) for v in value]
    return value


def _to_int(value: Any, field_name: str) -> int:
    value = parse_move_value(value)
    if value is None:
        return 0
    try:
        return int(value)
    except (TypeError, ValueError):
        raise BlockchainError(
            f"Malformed registry value for {field_name}: {value!r}",
            {"field": field_name},
        )


def _to_str_list(value: Any) -> list[str]:
    value = parse_move_value(value)
    if value is None:
        return []
    if not isinstance(value, list):
        raise BlockchainError(f"Expected a vector, got {value!r}")
    return [str(v) for v in value]


def _optional_str(value: Any) -> Optional[str]:
    value = parse_move_value(value)
    return str(value) if value not in (None, "") else None


def parse_package_metadata(raw: dict) -> PackageMetadata:
    kind_value = _to_int(raw.get("package_type"), "package_type")
    try:
        kind = PackageKind(kind_value)
    except ValueError:
        kind = PackageKind.LIBRARY
    return PackageMetadata(
        name=str(parse_move_value(raw.get("name")) or ""),
        version=str(parse_move_value(raw.get("version")) or ""),
        publisher=str(parse_move_value(raw.get("publisher")) or ""),
        content_address=str(parse_move_value(raw.get("ipfs_hash")) or ""),
        endorsements=_to_str_list(raw.get("endorsements")),
        timestamp_seconds=_to_int(raw.get("timestamp"), "timestamp"),
        package_kind=kind,
        download_count=_to_int(raw.get("download_count"), "download_count"),
        total_tips=_to_int(raw.get("total_tips"), "total_tips"),
        tags=_to_str_list(raw.get("tags")),
        description=str(parse_move_value(raw.get("description")) or ""),
        homepage=_optional_str(raw.get("homepage")),
        repository=_optional_str(raw.get("repository")),
        license=_optional_str(raw.get("license")),
    )


def _catalog_entry(raw: Any) -> PackageMetadata:
    """Parse one search entry; an unreadable entry becomes a blank record.

    Blank records have no name or version, so search ranking counts them as
    skipped instead of losing them.
    """
    if isinstance(raw, dict):
        try:
            return parse_package_metadata(raw)
        except BlockchainError as e:
            logger.debug("Unreadable registry entry %r: %s", raw, e.message)
    else:
        logger.debug("Registry entry is not a struct: %r", raw)
    return PackageMetadata(name="", version="", publisher="", content_address="")


def _struct_values(result: list, expected: int, what: str) -> list:
    """Positional values of a view result, whether returned as a tuple or a struct."""
    values: Any = result
    if len(result) == 1 and isinstance(result[0], (dict, list)):
        values = result[0]
    if isinstance(values, dict):
        values = list(values.values())
    if len(values) < expected:
        raise BlockchainError(f"Invalid {what} response")
    return values


def parse_registry_stats(result: list) -> RegistryStats:
    values = _struct_values(result, 4, "registry stats")
    return RegistryStats(
        total_packages=_to_int(values[0], "total_packages"),
        total_endorsers=_to_int(values[1], "total_endorsers"),
        total_downloads=_to_int(values[2], "total_downloads"),
        total_tips=_to_int(values[3], "total_tips"),
    )


def parse_endorser_info(result: list) -> EndorserRecord:
    values = _struct_values(result, 6, "endorser info")
    return EndorserRecord(
        address=str(parse_move_value(values[0])),
        stake_amount=_to_int(values[1], "stake_amount"),
        is_active=bool(parse_move_value(values[2])),
        reputation=_to_int(values[3], "reputation"),
        packages_endorsed=_to_int(values[4], "packages_endorsed"),
        registered_at=_to_int(values[5], "registered_at"),
    )


def _is_absence(body: Any) -> bool:
    """Node error bodies that mean 'nothing there' rather than 'broken'."""
    if not isinstance(body, dict):
        return False
    code = str(body.get("error_code", ""))
    if code in {"vm_error", "account_not_found", "resource_not_found",
                "transaction_not_found"}:
        return True
    return "abort" in str(body.get("message", "")).lower()


def _error_message(body: Any) -> str:
    if isinstance(body, dict):
        return str(body.get("message") or body.get("error_code") or body)
    return str(body)


# ---------------------------------------------------------------------------
# Calls
# ---------------------------------------------------------------------------

@dataclass
class EntryFunctionCall:
    """An unsigned entry-function call; arguments in the registry's order."""
    function: str
    arguments: list = field(default_factory=list)
    type_arguments: list = field(default_factory=list)

    def payload(self) -> dict:
        return {
            "type": "entry_function_payload",
            "function": self.function,
            "type_arguments": list(self.type_arguments),
            "arguments": list(self.arguments),
        }


class RegistryClient:
    """Typed access to the registry contract on one network."""

    def __init__(
        self,
        network: NetworkProfile,
        session: Optional[aiohttp.ClientSession] = None,
        registry_address: Optional[str] = None,
        confirmation_timeout: float = 60.0,
        poll_interval: float = 0.5,
        max_poll_interval: float = 4.0,
        max_gas_amount: int = 200_000,
        expiration_secs: int = 600,
        request_timeout: float = 30.0,
    ):
        self.network = network
        self.registry_address = registry_address or network.registry_address
        if not self.registry_address:
            raise ConfigError(
                f"Network '{network.name}' has no registry address",
                {"network": network.name},
            )
        self.confirmation_timeout = confirmation_timeout
        self.poll_interval = poll_interval
        self.max_poll_interval = max_poll_interval
        self.max_gas_amount = max_gas_amount
        self.expiration_secs = expiration_secs
        self.request_timeout = request_timeout
        self._session = session
        self._owns_session = False

    async def __aenter__(self) -> "RegistryClient":
        if self._session is None:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.request_timeout)
            )
            self._owns_session = True
        return self

    async def __aexit__(self, *exc) -> None:
        if self._owns_session and self._session is not None:
            await self._session.close()
            self._session = None
            self._owns_session = False

    def function(self, name: str) -> str:
        return f"{self.registry_address}::{MODULE_NAME}::{name}"

    async def _request(
        self,
        method: str,
        url: str,
        *,
        json: Any = None,
        params: Optional[dict] = None,
    ) -> tuple[int, Any]:
        if self._session is None:
            raise InvariantError("RegistryClient used outside 'async with'")
        if not url.startswith("http"):
            url = self.network.rpc_url.rstrip("/") + url
        try:
            async with self._session.request(
                method, url, json=json, params=params
            ) as resp:
                body = await resp.json(content_type=None)
                return resp.status, body
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise BlockchainError(
                f"Ledger request failed: {e or type(e).__name__}",
                {"url": url, "network": self.network.name},
            )
        except ValueError as e:
            raise BlockchainError(
                f"Ledger returned a malformed response: {e}", {"url": url}
            )

    # -----------------------------------------------------------------------
    # Reads
    # -----------------------------------------------------------------------

    async def view(
        self,
        function: str,
        arguments: list,
        type_arguments: Optional[list] = None,
    ) -> Optional[list]:
        """Run a view function. Returns None when the call aborts (absence)."""
        status, body = await self._request("POST", "/view", json={
            "function": function,
            "type_arguments": type_arguments or [],
            "arguments": arguments,
        })
        if status == 200:
            if not isinstance(body, list):
                raise BlockchainError(
                    f"Malformed view response from {function}", {"function": function}
                )
            return body
        if _is_absence(body):
            logger.debug("View %s found nothing: %s", function, _error_message(body))
            return None
        raise BlockchainError(
            f"View {function} failed (HTTP {status}): {_error_message(body)}",
            {"function": function, "status": status},
        )

    async def get_package_versions(self, name: str) -> list[str]:
        result = await self.view(self.function("get_package_versions"), [name])
        if not result:
            return []
        return _to_str_list(result[0])

    async def get_package_metadata(
        self, name: str, version: Optional[str] = None
    ) -> Optional[PackageMetadata]:
        """Metadata for *name* at *version*, or at the latest version.

        "Latest" is the last entry of the registry's version list, in the order
        the registry returns it. No semantic-version sorting is applied.
        """
        if not version:
            versions = await self.get_package_versions(name)
            if not versions:
                logger.debug("No versions found for package %s", name)
                return None
            version = versions[-1]
            logger.debug("No version given for %s, using %s", name, version)

        result = await self.view(
            self.function("get_package_metadata"), [name, version]
        )
        if not result or not isinstance(result[0], dict):
            return None
        return parse_package_metadata(result[0])

    async def search_packages(self, query: str) -> list[PackageMetadata]:
        result = await self.view(self.function("search_packages"), [query])
        if not result:
            return []
        entries = parse_move_value(result[0])
        if not isinstance(entries, list):
            raise BlockchainError("Malformed search_packages response")
        return [_catalog_entry(e) for e in entries]

    async def get_all_packages(self) -> list[PackageMetadata]:
        """Every package in the registry, in one read call."""
        return await self.search_packages("")

    async def get_registry_stats(self) -> Optional[RegistryStats]:
        """Aggregate counters, or None when the registry is not initialized."""
        result = await self.view(self.function("get_registry_stats"), [])
        if not result:
            return None
        return parse_registry_stats(result)

    async def get_endorser_info(self, address: str) -> Optional[EndorserRecord]:
        result = await self.view(self.function("get_endorser_info"), [address])
        if not result:
            return None
        return parse_endorser_info(result)

    async def get_account_balance(self, address: str) -> int:
        """Spendable balance in octas; an account with no coin store has 0."""
        result = await self.view("0x1::coin::balance", [address], [APTOS_COIN])
        if not result:
            return 0
        return _to_int(result[0], "balance")

    async def get_account_info(self, address: str) -> Optional[dict]:
        status, body = await self._request("GET", f"/accounts/{address}")
        if status == 200 and isinstance(body, dict):
            return body
        if status == 404 or _is_absence(body):
            return None
        raise BlockchainError(
            f"Failed to get account info for {address}: {_error_message(body)}",
            {"address": address, "status": status},
        )

    async def fund_account(self, address: str, amount: int = FAUCET_GRANT) -> None:
        if self.network.is_production:
            raise ConfigError("Cannot fund accounts on the production network")
        if not self.network.faucet_url:
            raise ConfigError(
                f"Network '{self.network.name}' has no faucet",
                {"network": self.network.name},
            )
        url = self.network.faucet_url.rstrip("/") + "/mint"
        status, body = await self._request(
            "POST", url, params={"amount": str(amount), "address": address}
        )
        if status >= 300:
            raise BlockchainError(
                f"Faucet refused to fund {address}: {_error_message(body)}",
                {"address": address, "status": status},
            )
        logger.info("Account %s funded with %s APT", address, format_apt(amount))

    # -----------------------------------------------------------------------
    # Writes
    # -----------------------------------------------------------------------

    def publish_call(self, metadata: PackageMetadata) -> EntryFunctionCall:
        return EntryFunctionCall(self.function("publish_package"), [
            metadata.name,
            metadata.version,
            metadata.content_address,
            int(metadata.package_kind),
            list(metadata.tags),
            metadata.description or "",
        ])

    def endorse_call(self, name: str, version: str) -> EntryFunctionCall:
        return EntryFunctionCall(self.function("endorse_package"), [name, version])

    def tip_call(self, name: str, version: str, amount: int) -> EntryFunctionCall:
        return EntryFunctionCall(
            self.function("tip_package"), [name, version, str(amount)]
        )

    def register_endorser_call(self, stake_amount: int) -> EntryFunctionCall:
        return EntryFunctionCall(
            self.function("register_endorser"), [str(stake_amount)]
        )

    def initialize_registry_call(self) -> EntryFunctionCall:
        return EntryFunctionCall(self.function("initialize_registry"), [])

    async def _gas_price(self) -> int:
        status, body = await self._request("GET", "/estimate_gas_price")
        if status != 200 or not isinstance(body, dict) or "gas_estimate" not in body:
            raise BlockchainError(f"Gas price unavailable: {_error_message(body)}")
        return int(body["gas_estimate"])

    async def submit(self, signer: Signer, call: EntryFunctionCall) -> str:
        """Build, sign and submit *call*. Returns the pending transaction hash."""
        account = await self.get_account_info(signer.address)
        if account is None:
            raise BlockchainError(
                f"Account {signer.address} does not exist on {self.network.name}",
                {"address": signer.address},
            )
        txn = {
            "sender": signer.address,
            "sequence_number": str(account["sequence_number"]),
            "max_gas_amount": str(self.max_gas_amount),
            "gas_unit_price": str(await self._gas_price()),
            "expiration_timestamp_secs": str(int(time.time()) + self.expiration_secs),
            "payload": call.payload(),
        }

        status, body = await self._request(
            "POST", "/transactions/encode_submission", json=txn
        )
        if status != 200 or not isinstance(body, str):
            raise BlockchainError(
                f"Could not encode {call.function}: {_error_message(body)}",
                {"function": call.function, "status": status},
            )
        message = bytes.fromhex(body[2:] if body.startswith("0x") else body)
        txn["signature"] = {
            "type": "ed25519_signature",
            "public_key": signer.public_key_hex,
            "signature": "0x" + signer.sign(message).hex(),
        }

        status, body = await self._request("POST", "/transactions", json=txn)
        if status not in (200, 202) or not isinstance(body, dict) or "hash" not in body:
            raise BlockchainError(
                f"Submission of {call.function} rejected: {_error_message(body)}",
                {"function": call.function, "status": status},
            )
        logger.info("Submitted %s as %s", call.function, body["hash"])
        return body["hash"]

    async def wait_for_transaction(self, tx_hash: str) -> TransactionResult:
        """Poll until the transaction is committed or the window closes.

        A reverted transaction is a normal result with success=False. Running
        out of time yields pending=True instead of blocking forever.
        """
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.confirmation_timeout
        delay = self.poll_interval

        while True:
            status, body = await self._request("GET", f"/transactions/by_hash/{tx_hash}")
            if status == 200 and isinstance(body, dict):
                if body.get("type") != "pending_transaction":
                    result = TransactionResult(
                        transaction_id=tx_hash,
                        success=bool(body.get("success")),
                        status_message=str(body.get("vm_status", "")),
                    )
                    logger.info(
                        "Transaction %s committed (success=%s, %s)",
                        tx_hash, result.success, result.status_message,
                    )
                    return result
            elif status != 404:
                raise BlockchainError(
                    f"Could not poll transaction {tx_hash}: {_error_message(body)}",
                    {"transaction_id": tx_hash, "status": status},
                )

            remaining = deadline - loop.time()
            if remaining <= 0:
                logger.warning("Transaction %s still pending, giving up waiting", tx_hash)
                return TransactionResult(
                    transaction_id=tx_hash,
                    success=False,
                    status_message=PENDING_STATUS,
                    pending=True,
                )
            await asyncio.sleep(min(delay, remaining))
            delay = min(delay * 2, self.max_poll_interval)

    async def execute(self, signer: Signer, call: EntryFunctionCall) -> TransactionResult:
        tx_hash = await self.submit(signer, call)
        return await self.wait_for_transaction(tx_hash)

    async def publish_package(
        self, signer: Signer, metadata: PackageMetadata
    ) -> TransactionResult:
        return await self.execute(signer, self.publish_call(metadata))

    async def endorse_package(
        self, signer: Signer, name: str, version: str
    ) -> TransactionResult:
        return await self.execute(signer, self.endorse_call(name, version))

    async def tip_package(
        self, signer: Signer, name: str, version: str, amount: int
    ) -> TransactionResult:
        return await self.execute(signer, self.tip_call(name, version, amount))

    async def register_endorser(
        self, signer: Signer, stake_amount: int
    ) -> TransactionResult:
        return await self.execute(signer, self.register_endorser_call(stake_amount))

    async def initialize_registry(self, signer: Signer) -> TransactionResult:
        return await self.execute(signer, self.initialize_registry_call())


async def check_balance(registry: RegistryClient, address: str, required: int) -> Optional[str]:
    """Preflight: None when *address* can cover *required* octas, else the shortfall."""
    balance = await registry.get_account_balance(address)
    if balance >= required:
        return None
    return (
        f"Insufficient balance: need {format_apt(required)} APT, "
        f"have {format_apt(balance)} APT "
        f"(short by {format_apt(required - balance)} APT)"
    )
