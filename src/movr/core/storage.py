"""Storage client — pin archives to IPFS through Pinata and fetch them back."""
from __future__ import annotations

import asyncio
import json
import logging
import shutil
import tempfile
from pathlib import Path
from typing import Optional

import aiohttp

from movr.core.archive import build_archive, extract_archive
from movr.core.errors import ConfigError, InvariantError, MovrError, StorageError
from movr.core.models import StorageCredentials, UploadResult

logger = logging.getLogger(__name__)

PINATA_API = "https://api.pinata.cloud"
DEFAULT_GATEWAY = "https://gateway.pinata.cloud"
CHUNK_SIZE = 64 * 1024
DOWNLOAD_NAME = "package.zip"


def gateway_base(gateway_url: str) -> str:
    """Normalise a gateway host or URL: add https:// when no scheme is given."""
    url = (gateway_url or DEFAULT_GATEWAY).strip().rstrip("/")
    if "://" not in url:
        url = f"https://{url}"
    return url


class StorageClient:
    """Upload files and directories, download and unpack packages."""

    def __init__(
        self,
        credentials: StorageCredentials,
        session: Optional[aiohttp.ClientSession] = None,
        api_url: str = PINATA_API,
        request_timeout: float = 120.0,
    ):
        self.credentials = credentials
        self.api_url = api_url.rstrip("/")
        self.gateway = gateway_base(credentials.gateway_url)
        self.request_timeout = request_timeout
        self._session = session
        self._owns_session = False

    async def __aenter__(self) -> "StorageClient":
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

    @property
    def session(self) -> aiohttp.ClientSession:
        if self._session is None:
            raise InvariantError("StorageClient used outside 'async with'")
        return self._session

    def _auth_headers(self) -> dict[str, str]:
        creds = self.credentials
        if creds.jwt:
            return {"Authorization": f"Bearer {creds.jwt}"}
        if creds.api_key and creds.secret_key:
            return {
                "pinata_api_key": creds.api_key,
                "pinata_secret_api_key": creds.secret_key,
            }
        raise ConfigError(
            "Storage credentials missing: set a Pinata JWT or API key and secret"
        )

    # -----------------------------------------------------------------------
    # Upload
    # -----------------------------------------------------------------------

    async def upload_file(
        self, path: Path, metadata: Optional[dict] = None
    ) -> UploadResult:
        path = Path(path)
        if not path.is_file():
            raise StorageError(f"File not found: {path}", {"path": str(path)})

        headers = self._auth_headers()
        url = f"{self.api_url}/pinning/pinFileToIPFS"
        try:
            with path.open("rb") as fh:
                form = aiohttp.FormData()
                form.add_field("file", fh, filename=path.name,
                               content_type="application/octet-stream")
                if metadata:
                    form.add_field("pinataMetadata", json.dumps(metadata),
                                   content_type="application/json")
                async with self.session.post(url, data=form, headers=headers) as resp:
                    body = await resp.json(content_type=None)
                    status = resp.status
        except (aiohttp.ClientError, asyncio.TimeoutError, OSError) as e:
            raise StorageError(
                f"Upload failed: {e or type(e).__name__}", {"path": str(path)}
            )
        except ValueError as e:
            raise StorageError(f"Upload returned a malformed response: {e}")

        if status != 200 or not isinstance(body, dict) or "IpfsHash" not in body:
            raise StorageError(
                f"Upload rejected (HTTP {status}): {body}",
                {"path": str(path), "status": status},
            )

        result = UploadResult(
            content_address=body["IpfsHash"],
            size=int(body.get("PinSize", path.stat().st_size)),
            timestamp=str(body.get("Timestamp", "")),
        )
        logger.info("Uploaded %s as %s (%d bytes)", path.name, result.content_address, result.size)
        return result

    async def upload_directory(
        self, directory: Path, metadata: Optional[dict] = None
    ) -> UploadResult:
        """Archive *directory* to a temp zip, upload it, remove the zip."""
        archive = build_archive(Path(directory))
        try:
            return await self.upload_file(archive, metadata)
        finally:
            archive.unlink(missing_ok=True)

    # -----------------------------------------------------------------------
    # Download
    # -----------------------------------------------------------------------

    def content_url(self, content_address: str) -> str:
        if (not content_address or "/" in content_address
                or "\\" in content_address or ".." in content_address):
            raise StorageError(
                f"Invalid content address: {content_address!r}",
                {"content_address": content_address},
            )
        return f"{self.gateway}/ipfs/{content_address}"

    async def download_file(self, content_address: str, out_path: Path) -> Path:
        """Stream the content at *content_address* to *out_path*.

        A partial file is removed when the transfer fails.
        """
        out_path = Path(out_path)
        out_path.parent.mkdir(parents=True, exist_ok=True)
        url = self.content_url(content_address)
        try:
            async with self.session.get(url) as resp:
                if resp.status != 200:
                    raise StorageError(
                        f"Download of {content_address} failed (HTTP {resp.status})",
                        {"content_address": content_address, "status": resp.status},
                    )
                with out_path.open("wb") as fh:
                    async for chunk in resp.content.iter_chunked(CHUNK_SIZE):
                        fh.write(chunk)
        except (aiohttp.ClientError, asyncio.TimeoutError, OSError) as e:
            out_path.unlink(missing_ok=True)
            raise StorageError(
                f"Download of {content_address} failed: {e or type(e).__name__}",
                {"content_address": content_address},
            )
        except StorageError:
            out_path.unlink(missing_ok=True)
            raise

        logger.info("Downloaded %s to %s", content_address, out_path)
        return out_path

    async def download_package(self, content_address: str, extract_path: Path) -> list[str]:
        """Download an archive to a temp file and unpack it into *extract_path*."""
        tmp_dir = Path(tempfile.mkdtemp(prefix="movr-download-"))
        archive = tmp_dir / DOWNLOAD_NAME
        try:
            await self.download_file(content_address, archive)
            return extract_archive(archive, Path(extract_path))
        finally:
            shutil.rmtree(tmp_dir, ignore_errors=True)

    # -----------------------------------------------------------------------
    # Liveness
    # -----------------------------------------------------------------------

    async def test_connection(self) -> bool:
        """True when the provider accepts our credentials. Never raises."""
        try:
            headers = self._auth_headers()
            url = f"{self.api_url}/data/testAuthentication"
            async with self.session.get(url, headers=headers) as resp:
                ok = resp.status == 200
        except (MovrError, aiohttp.ClientError, asyncio.TimeoutError, OSError) as e:
            logger.warning("Storage connection test failed: %s", e)
            return False
        if not ok:
            logger.warning("Storage connection test rejected (HTTP %s)", resp.status)
        return ok

