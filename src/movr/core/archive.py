"""Archive builder — pack a package directory into a zip and unpack it safely."""
from __future__ import annotations

import logging
import os
import shutil
import tempfile
import zipfile
from pathlib import Path, PurePosixPath
from typing import Optional

import tomli
import tomli_w

from movr.core.errors import FileSystemError, InvalidPackageError

logger = logging.getLogger(__name__)

MANIFEST_NAME = ".movr-archive.toml"
ARCHIVE_FORMAT = 1

# Fixed zip metadata so two builds of the same tree are byte-identical
FIXED_DATE_TIME = (1980, 1, 1, 0, 0, 0)
FILE_MODE = 0o644


def _collect_files(source_dir: Path) -> list[str]:
    files = []
    for path in source_dir.rglob("*"):
        if path.is_file() and not path.is_symlink():
            files.append(path.relative_to(source_dir).as_posix())
    return sorted(files)


def _zip_info(name: str) -> zipfile.ZipInfo:
    info = zipfile.ZipInfo(name, date_time=FIXED_DATE_TIME)
    info.compress_type = zipfile.ZIP_DEFLATED
    info.external_attr = (0o100000 | FILE_MODE) << 16
    return info


def build_archive(source_dir: Path, output_path: Optional[Path] = None) -> Path:
    """Zip every regular file under *source_dir*.

    Entries are sorted by relative path and carry fixed timestamps and
    permissions. A manifest listing the files is written first. Without
    *output_path* the archive goes to a fresh temporary file which the caller
    owns.
    """
    source_dir = Path(source_dir)
    if not source_dir.is_dir():
        raise FileSystemError(
            f"Directory not found: {source_dir}", {"path": str(source_dir)}
        )

    if output_path is None:
        fd, tmp_name = tempfile.mkstemp(prefix="movr-", suffix=".zip")
        os.close(fd)
        output_path = Path(tmp_name)

    files = _collect_files(source_dir)
    manifest = {
        "format": ARCHIVE_FORMAT,
        "name": source_dir.name,
        "files": files,
    }

    try:
        with zipfile.ZipFile(output_path, "w", zipfile.ZIP_DEFLATED) as zf:
            zf.writestr(_zip_info(MANIFEST_NAME), tomli_w.dumps(manifest))
            for rel in files:
                zf.writestr(_zip_info(rel), (source_dir / rel).read_bytes())
    except OSError as e:
        raise FileSystemError(
            f"Failed to create archive: {e}", {"path": str(output_path)}
        )

    logger.debug("Archived %d files from %s into %s", len(files), source_dir, output_path)
    return Path(output_path)


def copy_to_staging(source_dir: Path) -> Path:
    """Copy *source_dir* into a new temporary directory and return the copy.

    The returned path is ``<tmp>/<source name>``; remove its parent when done.
    """
    source_dir = Path(source_dir)
    staging_root = Path(tempfile.mkdtemp(prefix="movr-staging-"))
    target = staging_root / source_dir.name
    try:
        shutil.copytree(source_dir, target, symlinks=False)
    except OSError as e:
        shutil.rmtree(staging_root, ignore_errors=True)
        raise FileSystemError(
            f"Failed to copy package directory: {e}", {"path": str(source_dir)}
        )
    return target


def _safe_member(name: str) -> Optional[PurePosixPath]:
    """Relative path for a zip member, or None if it would escape the target."""
    path = PurePosixPath(name.replace("\\", "/"))
    if path.is_absolute() or ".." in path.parts or (path.parts and ":" in path.parts[0]):
        return None
    return path


def inspect_archive(archive_path: Path) -> dict:
    """Manifest of an archive, or a file listing when it has none."""
    try:
        with zipfile.ZipFile(archive_path, "r") as zf:
            names = zf.namelist()
            if MANIFEST_NAME in names:
                return tomli.loads(zf.read(MANIFEST_NAME).decode("utf-8"))
            return {"format": 0, "name": Path(archive_path).stem,
                    "files": sorted(n for n in names if not n.endswith("/"))}
    except (zipfile.BadZipFile, tomli.TOMLDecodeError) as e:
        raise InvalidPackageError(
            f"Invalid package archive: {e}", {"path": str(archive_path)}
        )


def extract_archive(archive_path: Path, target_dir: Path) -> list[str]:
    """Unpack *archive_path* into *target_dir*; returns the extracted paths.

    Everything is written to a staging directory beside the target first, so
    a corrupt or hostile archive leaves the target untouched.
    """
    target_dir = Path(target_dir)
    target_dir.parent.mkdir(parents=True, exist_ok=True)
    staging = Path(tempfile.mkdtemp(prefix=".movr-extract-", dir=str(target_dir.parent)))
    extracted: list[str] = []

    try:
        try:
            with zipfile.ZipFile(archive_path, "r") as zf:
                for info in zf.infolist():
                    if info.is_dir() or info.filename == MANIFEST_NAME:
                        continue
                    rel = _safe_member(info.filename)
                    if rel is None:
                        raise InvalidPackageError(
                            f"Archive member escapes target: {info.filename}",
                            {"path": str(archive_path), "member": info.filename},
                        )
                    out = staging.joinpath(*rel.parts)
                    out.parent.mkdir(parents=True, exist_ok=True)
                    out.write_bytes(zf.read(info))
                    extracted.append(rel.as_posix())
        except zipfile.BadZipFile as e:
            raise InvalidPackageError(
                f"Invalid package archive: {e}", {"path": str(archive_path)}
            )

        target_dir.mkdir(parents=True, exist_ok=True)
        for entry in sorted(staging.iterdir()):
            dest = target_dir / entry.name
            if dest.is_dir() and not dest.is_symlink():
                shutil.rmtree(dest)
            elif dest.exists():
                dest.unlink()
            shutil.move(str(entry), str(dest))
    except OSError as e:
        raise FileSystemError(
            f"Failed to extract archive: {e}", {"path": str(target_dir)}
        )
    finally:
        shutil.rmtree(staging, ignore_errors=True)

    logger.debug("Extracted %d files into %s", len(extracted), target_dir)
    return sorted(extracted)
