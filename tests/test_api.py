"""HTTP API tests — aiohttp TestClient against create_app with fake clients."""
from contextlib import asynccontextmanager

import pytest
import pytest_asyncio
from aiohttp.test_utils import TestClient, TestServer

from movr.api import create_app
from movr.core.models import PackageMetadata
from movr.core.registry import PUBLISH_FEE
from tests.fakes import fake_connector
from tests.fixtures import BOB_KEY


@pytest_asyncio.fixture
async def api(config, registry, storage):
    app = create_app(config.path, fake_connector(registry, storage))
    async with TestClient(TestServer(app)) as client:
        yield client


async def _post(api, path, payload):
    resp = await api.post(path, json=payload)
    return resp.status, await resp.json()


def _seed(registry):
    registry.add_package(PackageMetadata(
        "alpha", "1.0.0", "0xpub", "QmA", description="AMM", tags=["defi"],
        endorsements=["0x1"],
    ))
    registry.add_package(PackageMetadata("oracle", "0.2.0", "0xpub", "QmO"))


# ---------------------------------------------------------------------------
# Envelope
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_missing_field_is_400(api):
    status, body = await _post(api, "/api/publish", {})
    assert status == 400
    assert body == {
        "success": False,
        "error": "Missing required field: package_path",
        "code": "VALIDATION_ERROR",
    }


@pytest.mark.asyncio
async def test_body_must_be_json(api):
    resp = await api.post("/api/search", data="not json",
                          headers={"Content-Type": "application/json"})
    assert resp.status == 400
    assert (await resp.json())["error"] == "Request body must be JSON"


@pytest.mark.asyncio
async def test_unexpected_error_is_500(config):
    @asynccontextmanager
    async def exploding(store, network=None):
        raise RuntimeError("socket closed")
        yield

    app = create_app(config.path, exploding)
    async with TestClient(TestServer(app)) as client:
        resp = await client.get("/api/stats")
        assert resp.status == 500
        assert await resp.json() == {"success": False, "error": "Internal server error"}


# ---------------------------------------------------------------------------
# Publish / install
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_publish_and_install(api, registry, alice, package_dir, tmp_path):
    registry.balances[alice.address] = 2 * PUBLISH_FEE
    status, body = await _post(api, "/api/publish", {
        "package_path": str(package_dir), "version": "1.0.0", "tags": "defi,amm",
        "package_type": "template",
    })
    assert status == 200, body
    assert body["success"] is True
    assert body["data"]["state"] == "done"
    assert registry.packages[("alpha", "1.0.0")].tags == ["defi", "amm"]

    out = tmp_path / "installed"
    status, body = await _post(api, "/api/install", {"name": "alpha", "output_dir": str(out)})
    assert status == 200, body
    assert body["data"]["status"] == "installed"
    assert (out / "Move.toml").exists()


@pytest.mark.asyncio
async def test_publish_insufficient_balance(api, registry, alice, package_dir):
    status, body = await _post(api, "/api/publish", {"package_path": str(package_dir)})
    assert status == 500
    assert body["success"] is False
    assert body["error"].startswith("Insufficient balance")
    assert body["data"]["failed_at"] == "fee_check"
    assert registry.submitted == []


@pytest.mark.asyncio
async def test_publish_bad_version_is_400(api, alice, package_dir):
    status, body = await _post(api, "/api/publish", {
        "package_path": str(package_dir), "version": "one",
    })
    assert status == 400
    assert body["data"]["failed_at"] == "validating"


@pytest.mark.asyncio
async def test_install_unknown(api):
    status, body = await _post(api, "/api/install", {"name": "beta"})
    assert status == 500
    assert body["error"] == "Package 'beta' not found"
    assert body["data"]["status"] == "not_found"


# ---------------------------------------------------------------------------
# Search
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_search_post(api, registry):
    _seed(registry)
    status, body = await _post(api, "/api/search", {"query": "alpha"})
    assert status == 200
    data = body["data"]
    assert [p["name"] for p in data["packages"]] == ["alpha"]
    assert data["total"] == 2
    assert "content_address" not in data["packages"][0]


@pytest.mark.asyncio
async def test_search_get_with_filters(api, registry):
    _seed(registry)
    resp = await api.get("/api/search", params={"min_endorsements": "1", "details": "true"})
    body = await resp.json()
    assert resp.status == 200
    (pkg,) = body["data"]["packages"]
    assert pkg["name"] == "alpha"
    assert pkg["content_address"] == "QmA"


@pytest.mark.asyncio
async def test_search_bad_limit(api):
    status, body = await _post(api, "/api/search", {"limit": "many"})
    assert status == 400
    assert "limit" in body["error"]


# ---------------------------------------------------------------------------
# Endorse / tip / stats
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_endorse(api, registry, alice):
    _seed(registry)
    status, body = await _post(api, "/api/endorse", {"name": "alpha"})
    assert status == 200
    assert body["data"]["success"] is True


@pytest.mark.asyncio
async def test_endorse_unknown_package(api, alice):
    status, body = await _post(api, "/api/endorse", {"name": "beta"})
    assert status == 500
    assert body["data"]["not_found"] is True


@pytest.mark.asyncio
async def test_register_endorser(api, registry, alice):
    registry.balances[alice.address] = 3 * PUBLISH_FEE
    status, body = await _post(api, "/api/endorse", {"name": "register", "stake": "1"})
    assert status == 200, body
    (_, call), = registry.submitted
    assert call.arguments == ["100000000"]


@pytest.mark.asyncio
async def test_tip(api, registry, alice):
    _seed(registry)
    registry.balances[alice.address] = PUBLISH_FEE
    status, body = await _post(api, "/api/tip", {"name": "alpha", "amount": "0.5"})
    assert status == 200, body
    (_, call), = registry.submitted
    assert call.arguments[-1] == "50000000"


@pytest.mark.asyncio
async def test_tip_requires_amount(api):
    status, body = await _post(api, "/api/tip", {"name": "alpha"})
    assert status == 400
    assert body["error"] == "Missing required field: amount"


@pytest.mark.asyncio
async def test_stats(api, registry):
    _seed(registry)
    resp = await api.get("/api/stats")
    body = await resp.json()
    assert body["data"]["initialized"] is True
    assert body["data"]["total_packages"] == 2
    assert body["data"]["total_tips_apt"] == "0"


# ---------------------------------------------------------------------------
# Wallets
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_wallet_actions(api, alice):
    status, body = await _post(api, "/api/wallet", {
        "action": "import", "name": "bob", "private_key": BOB_KEY,
    })
    assert status == 200
    assert "private_key" not in body["data"]

    status, body = await _post(api, "/api/wallet", {"action": "list"})
    assert [w["name"] for w in body["data"]] == ["alice", "bob"]

    await _post(api, "/api/wallet", {"action": "use", "name": "bob"})
    status, body = await _post(api, "/api/wallet", {"action": "show"})
    assert body["data"]["name"] == "bob"

    status, body = await _post(api, "/api/wallet", {"action": "remove", "name": "bob"})
    assert body["data"] == {"removed": "bob"}


@pytest.mark.asyncio
async def test_wallet_create(api, registry):
    status, body = await _post(api, "/api/wallet", {"action": "create", "name": "fresh"})
    assert status == 200
    assert body["data"]["funded"] is True
    assert registry.funded


@pytest.mark.asyncio
async def test_wallet_get_shows_balance(api, registry, alice):
    registry.balances[alice.address] = 150_000_000
    resp = await api.get("/api/wallet")
    body = await resp.json()
    assert body["data"]["balance"] == 150_000_000
    assert body["data"]["balance_apt"] == "1.5"


@pytest.mark.asyncio
async def test_wallet_unknown_action(api):
    status, body = await _post(api, "/api/wallet", {"action": "explode", "name": "x"})
    assert status == 400
    assert "Unknown wallet action" in body["error"]


@pytest.mark.asyncio
async def test_wallet_show_without_default(api):
    status, body = await _post(api, "/api/wallet", {"action": "show"})
    assert status == 500
    assert body["code"] == "CONFIG_ERROR"


# ---------------------------------------------------------------------------
# Storage / init
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_storage_upload_and_test(api, storage, package_dir):
    status, body = await _post(api, "/api/storage", {"action": "upload", "path": str(package_dir)})
    assert status == 200
    assert body["data"]["content_address"] in storage.blobs

    status, body = await _post(api, "/api/storage", {"action": "test"})
    assert body["data"] == {"connected": True}

    resp = await api.get("/api/storage")
    assert (await resp.json())["data"]["gateway"] == storage.gateway


@pytest.mark.asyncio
async def test_storage_download_missing(api, tmp_path):
    status, body = await _post(api, "/api/storage", {
        "action": "download", "content_address": "QmNope", "output": str(tmp_path / "x"),
    })
    assert status == 500
    assert body["code"] == "STORAGE_ERROR"


@pytest.mark.asyncio
async def test_init_package(api, tmp_path):
    status, body = await _post(api, "/api/init", {
        "directory": str(tmp_path / "my_pkg"), "template": "token",
    })
    assert status == 200, body
    assert body["data"]["name"] == "my_pkg"
    assert "sources/token.move" in body["data"]["files"]


@pytest.mark.asyncio
async def test_stats_before_initialization(api, registry):
    registry.initialized = False
    resp = await api.get("/api/stats")
    assert resp.status == 200
    assert (await resp.json())["data"] == {"initialized": False}


@pytest.mark.asyncio
async def test_publish_non_string_tags_is_400(api, alice, package_dir):
    status, body = await _post(api, "/api/publish", {
        "package_path": str(package_dir), "tags": ["defi", 3],
    })
    assert status == 400
    assert body["data"]["failed_at"] == "validating"
    assert body["data"]["error"]["code"] == "VALIDATION_ERROR"


@pytest.mark.asyncio
async def test_publish_invalid_package_is_500(api, alice, tmp_path):
    (tmp_path / "empty").mkdir()
    status, body = await _post(api, "/api/publish", {"package_path": str(tmp_path / "empty")})
    assert status == 500
    assert body["data"]["failed_at"] == "validating"
    assert body["data"]["error"]["code"] == "INVALID_PACKAGE"
