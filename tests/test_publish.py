"""Tests for the publish pipeline — state sequence, fee gate, cleanup."""
import tempfile
from pathlib import Path

import pytest

from movr.core.errors import (
    BlockchainError,
    ConfigError,
    FileSystemError,
    InvalidPackageError,
    InvariantError,
    StorageError,
    ValidationError,
)
from movr.core.models import PackageKind
from movr.core.publish import (
    DEFAULT_VERSION,
    PublishPipeline,
    PublishRequest,
    PublishState,
    parse_tags,
    read_manifest,
    validate_version,
)
from movr.core.registry import PUBLISH_FEE
from tests.fakes import FakeRegistry, FakeStorage
from tests.fixtures import MOVE_TOML_NO_NAME, write_package

FULL_RUN = [
    PublishState.VALIDATING,
    PublishState.ARCHIVING,
    PublishState.UPLOADING,
    PublishState.FEE_CHECK,
    PublishState.AWAITING_USER_CONFIRMATION,
    PublishState.SUBMITTING,
    PublishState.AWAITING_LEDGER_CONFIRMATION,
    PublishState.VERIFYING,
    PublishState.DONE,
]


class Prompt:
    """Records every confirmation question and answers with *answer*."""

    def __init__(self, answer=True):
        self.answer = answer
        self.asked = []

    async def __call__(self, prompt):
        self.asked.append(prompt)
        return self.answer


def _run(registry, storage, wallets, request, answer=True):
    prompt = Prompt(answer)
    pipeline = PublishPipeline(registry, storage, wallets, prompt)
    return pipeline.run(request), prompt


def _temp_leftovers():
    tmp = Path(tempfile.gettempdir())
    return set(tmp.glob("movr-staging-*")) | set(tmp.glob("movr-*.zip"))


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def test_validate_version():
    assert validate_version(None) == DEFAULT_VERSION
    assert validate_version(" 2.3.4 ") == "2.3.4"
    with pytest.raises(ValidationError):
        validate_version(100)
    for bad in ("1.0", "v1.0.0", "1.0.0-beta", "latest"):
        with pytest.raises(ValidationError):
            validate_version(bad)


def test_parse_tags():
    assert parse_tags("defi, token,,") == ["defi", "token"]
    assert parse_tags(["a", " b ", ""]) == ["a", "b"]
    assert parse_tags(None) == []
    with pytest.raises(ValidationError):
        parse_tags(["defi", 7])


def test_read_manifest(package_dir, tmp_path):
    assert read_manifest(package_dir)["name"] == "alpha"
    with pytest.raises(FileSystemError):
        read_manifest(tmp_path / "missing")
    empty = tmp_path / "empty"
    empty.mkdir()
    with pytest.raises(InvalidPackageError, match="not found"):
        read_manifest(empty)
    nameless = write_package(tmp_path / "nameless", manifest=MOVE_TOML_NO_NAME)
    with pytest.raises(InvalidPackageError, match="name"):
        read_manifest(nameless)
    (empty / "Move.toml").write_text("[package\nname=")
    with pytest.raises(InvalidPackageError, match="parse"):
        read_manifest(empty)


# ---------------------------------------------------------------------------
# Happy path
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_publish_alpha_end_to_end(registry, storage, wallets, alice, package_dir):
    registry.balances[alice.address] = 2 * PUBLISH_FEE
    before = _temp_leftovers()

    run, prompt = _run(registry, storage, wallets, PublishRequest(
        package_path=package_dir, version="1.0.0", tags="defi, token",
    ))
    outcome = await run

    assert outcome.state == PublishState.DONE
    assert outcome.success
    assert outcome.history == FULL_RUN
    assert outcome.publisher == alice.address
    assert outcome.warnings == []
    assert prompt.asked == ["Publish alpha@1.0.0 for 1 APT?"]

    (address, metadata), = storage.uploads
    assert address == outcome.content_address
    assert metadata["name"] == "alpha-1.0.0.zip"
    assert metadata["keyvalues"] == {"package": "alpha", "version": "1.0.0"}

    (sender, call), = registry.submitted
    assert sender == alice.address
    assert call.arguments == [
        "alpha", "1.0.0", outcome.content_address, 0, ["defi", "token"], "Alpha test package",
    ]
    assert registry.packages[("alpha", "1.0.0")].content_address == outcome.content_address
    assert _temp_leftovers() == before


@pytest.mark.asyncio
async def test_publish_defaults_version_and_kind(registry, storage, wallets, alice, package_dir):
    registry.balances[alice.address] = PUBLISH_FEE
    run, _ = _run(registry, storage, wallets, PublishRequest(
        package_path=package_dir, description="Custom", package_kind=PackageKind.TEMPLATE,
    ))
    outcome = await run
    assert outcome.version == DEFAULT_VERSION
    stored = registry.packages[("alpha", DEFAULT_VERSION)]
    assert stored.package_kind == PackageKind.TEMPLATE
    assert stored.description == "Custom"


@pytest.mark.asyncio
async def test_to_dict(registry, storage, wallets, alice, package_dir):
    registry.balances[alice.address] = PUBLISH_FEE
    run, _ = _run(registry, storage, wallets, PublishRequest(package_path=package_dir))
    data = (await run).to_dict()
    assert data["state"] == "done"
    assert data["success"] is True
    assert data["history"][-1] == "done"
    assert data["transaction"]["success"] is True


# ---------------------------------------------------------------------------
# Fee gate and confirmation
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_insufficient_balance_stops_before_submission(
    registry, storage, wallets, alice, package_dir
):
    registry.balances[alice.address] = PUBLISH_FEE // 2

    run, prompt = _run(registry, storage, wallets, PublishRequest(package_path=package_dir))
    outcome = await run

    assert outcome.state == PublishState.FAILED
    assert outcome.failed_at == PublishState.FEE_CHECK
    assert outcome.message == (
        "Insufficient balance: need 1 APT, have 0.5 APT (short by 0.5 APT)"
    )
    assert registry.submitted == []
    assert prompt.asked == []


@pytest.mark.asyncio
async def test_declined_confirmation_cancels(registry, storage, wallets, alice, package_dir):
    registry.balances[alice.address] = 2 * PUBLISH_FEE
    run, prompt = _run(
        registry, storage, wallets, PublishRequest(package_path=package_dir), answer=False
    )
    outcome = await run
    assert outcome.cancelled
    assert outcome.failed_at == PublishState.AWAITING_USER_CONFIRMATION
    assert len(prompt.asked) == 1
    assert registry.submitted == []


@pytest.mark.asyncio
async def test_default_confirm_declines(registry, storage, wallets, alice, package_dir):
    registry.balances[alice.address] = 2 * PUBLISH_FEE
    outcome = await PublishPipeline(registry, storage, wallets).run(
        PublishRequest(package_path=package_dir)
    )
    assert outcome.cancelled
    assert registry.submitted == []


# ---------------------------------------------------------------------------
# Early failures
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_bad_version_fails_validation(registry, storage, wallets, alice, package_dir):
    run, _ = _run(registry, storage, wallets, PublishRequest(
        package_path=package_dir, version="1.0",
    ))
    outcome = await run
    assert outcome.failed_at == PublishState.VALIDATING
    assert isinstance(outcome.error, ValidationError)
    assert storage.uploads == []


@pytest.mark.asyncio
async def test_missing_manifest(registry, storage, wallets, alice, tmp_path):
    empty = tmp_path / "empty"
    empty.mkdir()
    run, _ = _run(registry, storage, wallets, PublishRequest(package_path=empty))
    outcome = await run
    assert outcome.failed_at == PublishState.VALIDATING
    assert isinstance(outcome.error, InvalidPackageError)


@pytest.mark.asyncio
async def test_no_wallet_configured(registry, storage, wallets, package_dir):
    run, _ = _run(registry, storage, wallets, PublishRequest(package_path=package_dir))
    outcome = await run
    assert outcome.failed_at == PublishState.VALIDATING
    assert isinstance(outcome.error, ConfigError)


@pytest.mark.asyncio
async def test_upload_failure_never_reaches_ledger(
    registry, storage, wallets, alice, package_dir
):
    registry.balances[alice.address] = 2 * PUBLISH_FEE
    storage.fail_upload = True
    before = _temp_leftovers()
    run, _ = _run(registry, storage, wallets, PublishRequest(package_path=package_dir))
    outcome = await run
    assert outcome.failed_at == PublishState.UPLOADING
    assert isinstance(outcome.error, StorageError)
    assert registry.submitted == []
    assert _temp_leftovers() == before


# ---------------------------------------------------------------------------
# Ledger outcomes
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_reverted_transaction(registry, storage, wallets, alice, package_dir):
    registry.balances[alice.address] = 2 * PUBLISH_FEE
    registry.revert_reason = "Move abort: EPACKAGE_EXISTS(0x3)"
    run, _ = _run(registry, storage, wallets, PublishRequest(package_path=package_dir))
    outcome = await run
    assert outcome.failed_at == PublishState.AWAITING_LEDGER_CONFIRMATION
    assert outcome.message == "Transaction failed: Move abort: EPACKAGE_EXISTS(0x3)"
    assert not outcome.transaction.success


@pytest.mark.asyncio
async def test_unconfirmed_transaction_is_pending(
    registry, storage, wallets, alice, package_dir
):
    registry.balances[alice.address] = 2 * PUBLISH_FEE
    registry.pending = True
    run, _ = _run(registry, storage, wallets, PublishRequest(package_path=package_dir))
    outcome = await run
    assert outcome.state == PublishState.PENDING
    assert outcome.transaction.pending
    assert "confirmation pending" in outcome.message
    assert PublishState.VERIFYING not in outcome.history


@pytest.mark.asyncio
async def test_content_mismatch_is_a_warning(registry, storage, wallets, alice, package_dir):
    registry.balances[alice.address] = 2 * PUBLISH_FEE
    registry.content_override = "QmSomethingElse"
    run, _ = _run(registry, storage, wallets, PublishRequest(package_path=package_dir))
    outcome = await run
    assert outcome.state == PublishState.DONE
    assert len(outcome.warnings) == 1
    assert "QmSomethingElse" in outcome.warnings[0]


@pytest.mark.asyncio
async def test_failed_read_back_still_publishes(registry, storage, wallets, alice, package_dir):
    class FlakyRegistry(FakeRegistry):
        async def get_package_metadata(self, name, version=None):
            if self.submitted:
                raise BlockchainError("Ledger request failed: timeout")
            return await super().get_package_metadata(name, version)

    flaky = FlakyRegistry({alice.address: 2 * PUBLISH_FEE})
    run, _ = _run(flaky, storage, wallets, PublishRequest(package_path=package_dir))
    outcome = await run
    assert outcome.state == PublishState.DONE
    assert outcome.history == FULL_RUN
    assert outcome.transaction.success
    assert outcome.warnings == [
        "Could not verify registry entry: Ledger request failed: timeout"
    ]
    assert outcome.error is None


@pytest.mark.asyncio
async def test_non_string_fields_fail_validation(registry, storage, wallets, alice, package_dir):
    registry.balances[alice.address] = 2 * PUBLISH_FEE
    for request in (
        PublishRequest(package_path=package_dir, version=1),
        PublishRequest(package_path=package_dir, tags=["defi", 7]),
        PublishRequest(package_path=package_dir, tags={"defi": True}),
    ):
        run, _ = _run(registry, storage, wallets, request)
        outcome = await run
        assert outcome.failed_at == PublishState.VALIDATING
        assert isinstance(outcome.error, ValidationError)
    assert storage.uploads == []
    assert registry.submitted == []

@pytest.mark.asyncio
async def test_programmer_errors_propagate(registry, wallets, alice, package_dir):
    class BrokenStorage(FakeStorage):
        async def upload_file(self, path, metadata=None):
            raise InvariantError("upload called twice")

    registry.balances[alice.address] = 2 * PUBLISH_FEE
    before = _temp_leftovers()
    with pytest.raises(InvariantError):
        await PublishPipeline(registry, BrokenStorage(), wallets).run(
            PublishRequest(package_path=package_dir)
        )
    assert _temp_leftovers() == before
