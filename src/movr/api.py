"""HTTP API — every CLI verb as a JSON route on aiohttp.web.

Requests carry ``{...args, "options": {"network": ..., "verbose": ...}}``.
Responses are ``{"success": true, "data": ...}`` or
``{"success": false, "error": ...}`` with status 200, 400 (bad input) or 500.
"""
from __future__ import annotations

import functools
import json
import logging
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import Any, Optional

from aiohttp import web

from movr.core.config import ConfigStore
from movr.core.errors import MovrError, ValidationError, error_handler
from movr.core.models import PackageKind
from movr.core.registry import format_apt, parse_apt
from movr.core.session import connect

logger = logging.getLogger(__name__)

_Handler = Callable[[web.Request], Awaitable[web.StreamResponse]]

CONFIG_PATH = web.AppKey("config_path", object)
CONNECTOR = web.AppKey("connector", object)


def _json(payload: dict, status: int = 200) -> web.Response:
    return web.Response(
        body=json.dumps(payload, default=str),
        status=status,
        content_type="application/json",
    )


def api_boundary(fn: Callable[[web.Request], Awaitable[Any]]) -> _Handler:
    """Wrap a route: return value becomes ``data``, failures become ``error``."""

    @functools.wraps(fn)
    async def handler(request: web.Request) -> web.Response:
        try:
            data = await fn(request)
        except MovrError as e:
            error_handler.handle(e)
            status = _http_status(e)
            return _json({"success": False, "error": e.message, "code": e.code.value}, status)
        except Exception as e:
            error_handler.handle(e)
            return _json({"success": False, "error": "Internal server error"}, 500)
        if isinstance(data, web.StreamResponse):
            return data
        return _json({"success": True, "data": data})

    return handler


def _http_status(error: MovrError) -> int:
    """400 for a malformed request, 500 for everything else."""
    return 400 if isinstance(error, ValidationError) else 500


def _failure(message: str, data: Optional[dict] = None) -> web.Response:
    logger.warning("Request failed: %s", message)
    return _json({"success": False, "error": message, "data": data}, 500)


# ---------------------------------------------------------------------------
# Request helpers
# ---------------------------------------------------------------------------

async def _body(request: web.Request) -> dict:
    if not request.can_read_body:
        return {}
    try:
        body = await request.json()
    except ValueError:
        raise ValidationError("Request body must be JSON")
    if not isinstance(body, dict):
        raise ValidationError("Request body must be a JSON object")
    return body


def _require(body: dict, *fields: str) -> None:
    for name in fields:
        if body.get(name) in (None, ""):
            raise ValidationError(f"Missing required field: {name}", {"field": name})


def _network(body: dict) -> Optional[str]:
    options = body.get("options") or {}
    return options.get("network") or body.get("network")


def _store(request: web.Request) -> ConfigStore:
    return ConfigStore(request.app[CONFIG_PATH]).load_or_init()


def _connect(request: web.Request, body: dict):
    return request.app[CONNECTOR](_store(request), _network(body))


def _int(value: Any, name: str, default: Optional[int] = None) -> Optional[int]:
    if value in (None, ""):
        return default
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"Field {name} must be an integer", {"field": name})


def _flag(value: Any) -> bool:
    if isinstance(value, str):
        return value.lower() in ("1", "true", "yes")
    return bool(value)


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------

@api_boundary
async def handle_init(request: web.Request):
    body = await _body(request)
    directory = body.get("directory") or "."

    if directory == "registry":
        async with _connect(request, body) as clients:
            signer = clients.wallets.signer(body.get("wallet"))
            result = await clients.registry.initialize_registry(signer)
        if not (result.success or result.pending):
            return _failure(f"Registry initialization failed: {result.status_message}",
                            result.to_dict())
        return result.to_dict()

    from movr.core.scaffold import init_package

    result = init_package(
        Path(directory),
        body.get("name"),
        body.get("author", ""),
        body.get("description", ""),
        body.get("template", "basic"),
    )
    return {"directory": str(result.directory), "name": result.name,
            "template": result.template, "files": result.files}


@api_boundary
async def handle_publish(request: web.Request):
    from movr.core.publish import PublishPipeline, PublishRequest, PublishState

    body = await _body(request)
    _require(body, "package_path")
    publish_request = PublishRequest(
        package_path=Path(body["package_path"]),
        version=body.get("version"),
        tags=body.get("tags"),
        description=body.get("description"),
        wallet=body.get("wallet"),
        package_kind=PackageKind.from_label(body.get("package_type") or "library"),
    )

    # The POST is the user's consent to pay the fee
    async def confirm(prompt: str) -> bool:
        return True

    async with _connect(request, body) as clients:
        pipeline = PublishPipeline(clients.registry, clients.storage, clients.wallets, confirm)
        outcome = await pipeline.run(publish_request)

    if outcome.state == PublishState.FAILED:
        if outcome.error is not None and _http_status(outcome.error) == 400:
            return _json({"success": False, "error": outcome.message,
                          "data": outcome.to_dict()}, 400)
        return _failure(outcome.message, outcome.to_dict())
    return outcome.to_dict()


@api_boundary
async def handle_install(request: web.Request):
    from movr.core.install import InstallPipeline

    body = await _body(request)
    _require(body, "name")
    output_dir = body.get("output_dir")
    async with _connect(request, body) as clients:
        outcome = await InstallPipeline(clients.registry, clients.storage).run(
            body["name"], body.get("version"), Path(output_dir) if output_dir else None,
        )
    if not outcome.success:
        return _failure(outcome.message, outcome.to_dict())
    return outcome.to_dict()


async def _search(request: web.Request, params: dict):
    from movr.core.search import CatalogSearch, SearchFilters, detail_view, summary_view

    kind = params.get("package_type")
    filters = SearchFilters(
        package_kind=PackageKind.from_label(kind) if kind else None,
        min_endorsements=_int(params.get("min_endorsements"), "min_endorsements", 0),
        limit=_int(params.get("limit"), "limit"),
    )
    view = detail_view if _flag(params.get("details")) else summary_view
    async with _connect(request, params) as clients:
        result = await CatalogSearch(clients.registry).query(params.get("query") or "", filters)
    return {
        "packages": [view(p) for p in result.packages],
        "total": result.total,
        "skipped": result.skipped,
    }


@api_boundary
async def handle_search_post(request: web.Request):
    return await _search(request, await _body(request))


@api_boundary
async def handle_search_get(request: web.Request):
    params = dict(request.query)
    params["options"] = {"network": params.pop("network", None)}
    return await _search(request, params)


@api_boundary
async def handle_endorse(request: web.Request):
    from movr.core.endorse import EndorsementService

    body = await _body(request)
    _require(body, "name")
    async with _connect(request, body) as clients:
        service = EndorsementService(clients.registry, clients.wallets)
        if body["name"] == "register":
            stake = body.get("stake") or body.get("stake_amount")
            if not stake:
                raise ValidationError("Missing required field: stake", {"field": "stake"})
            outcome = await service.register(parse_apt(str(stake)), wallet=body.get("wallet"))
        else:
            outcome = await service.endorse(
                body["name"], version=body.get("version"), wallet=body.get("wallet")
            )
    if not (outcome.success or outcome.pending):
        return _failure(outcome.message, outcome.to_dict())
    return outcome.to_dict()


@api_boundary
async def handle_tip(request: web.Request):
    from movr.core.endorse import EndorsementService

    body = await _body(request)
    _require(body, "name", "amount")
    amount = parse_apt(str(body["amount"]))
    async with _connect(request, body) as clients:
        service = EndorsementService(clients.registry, clients.wallets)
        outcome = await service.tip(
            body["name"], amount, version=body.get("version"), wallet=body.get("wallet")
        )
    if not (outcome.success or outcome.pending):
        return _failure(outcome.message, outcome.to_dict())
    return outcome.to_dict()


async def _wallet_status(request: web.Request, body: dict, name: Optional[str]) -> dict:
    async with _connect(request, body) as clients:
        record = clients.wallets.show(name)
        balance = await clients.registry.get_account_balance(record.address)
    status = record.public_view()
    status.update({"balance": balance, "balance_apt": format_apt(balance)})
    return status


@api_boundary
async def handle_wallet_post(request: web.Request):
    from movr.core.wallet import WalletManager

    body = await _body(request)
    _require(body, "action")
    action = body["action"]
    name = body.get("name")

    if action == "list":
        return [w.public_view() for w in WalletManager(_store(request)).list()]
    if action == "show":
        return await _wallet_status(request, body, name)

    _require(body, "name")
    if action == "create":
        async with _connect(request, body) as clients:
            creation = await clients.wallets.create(name)
        data = creation.record.public_view()
        data.update({"funded": creation.funded, "funding_error": creation.funding_error})
        return data
    if action == "import":
        _require(body, "private_key")
        return WalletManager(_store(request)).import_key(name, body["private_key"]).public_view()
    if action == "remove":
        WalletManager(_store(request)).remove(name)
        return {"removed": name}
    if action == "use":
        WalletManager(_store(request)).use(name)
        return {"default_wallet": name}
    raise ValidationError(f"Unknown wallet action: {action}", {"action": action})


@api_boundary
async def handle_wallet_get(request: web.Request):
    params = dict(request.query)
    params["options"] = {"network": params.pop("network", None)}
    return await _wallet_status(request, params, params.get("name"))


@api_boundary
async def handle_storage_post(request: web.Request):
    body = await _body(request)
    _require(body, "action")
    action = body["action"]

    async with _connect(request, body) as clients:
        storage = clients.storage
        if action == "upload":
            _require(body, "path")
            path = Path(body["path"])
            metadata = body.get("metadata")
            if path.is_dir():
                result = await storage.upload_directory(path, metadata)
            else:
                result = await storage.upload_file(path, metadata)
            return result.to_dict()
        if action == "download":
            _require(body, "content_address", "output")
            out = await storage.download_file(body["content_address"], Path(body["output"]))
            return {"path": str(out)}
        if action == "test":
            return {"connected": await storage.test_connection()}
    raise ValidationError(f"Unknown storage action: {action}", {"action": action})


@api_boundary
async def handle_storage_get(request: web.Request):
    params = {"options": {"network": request.query.get("network")}}
    async with _connect(request, params) as clients:
        connected = await clients.storage.test_connection()
        gateway = clients.storage.gateway
    return {"connected": connected, "gateway": gateway}


@api_boundary
async def handle_stats(request: web.Request):
    params = {"options": {"network": request.query.get("network")}}
    async with _connect(request, params) as clients:
        stats = await clients.registry.get_registry_stats()
    if stats is None:
        return {"initialized": False}
    data = stats.to_dict()
    data["initialized"] = True
    data["total_tips_apt"] = format_apt(stats.total_tips)
    return data


def create_app(config_path: Optional[Path] = None, connector=connect) -> web.Application:
    """Build the API application.

    *connector* opens the registry/storage clients for a request; tests swap
    it for one that yields fakes.
    """
    app = web.Application()
    app[CONFIG_PATH] = config_path
    app[CONNECTOR] = connector
    app.router.add_post("/api/init", handle_init)
    app.router.add_post("/api/publish", handle_publish)
    app.router.add_post("/api/install", handle_install)
    app.router.add_post("/api/search", handle_search_post)
    app.router.add_get("/api/search", handle_search_get)
    app.router.add_post("/api/endorse", handle_endorse)
    app.router.add_post("/api/tip", handle_tip)
    app.router.add_post("/api/wallet", handle_wallet_post)
    app.router.add_get("/api/wallet", handle_wallet_get)
    app.router.add_post("/api/storage", handle_storage_post)
    app.router.add_get("/api/storage", handle_storage_get)
    app.router.add_get("/api/stats", handle_stats)
    return app


def serve(host: str = "127.0.0.1", port: int = 8080,
          config_path: Optional[Path] = None) -> None:
    logger.info("API listening on http://%s:%d/api", host, port)
    web.run_app(create_app(config_path), host=host, port=port, access_log=None)
