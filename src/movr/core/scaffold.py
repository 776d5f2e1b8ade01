"""Scaffolding — create a new Move package directory from a template."""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from pathlib import Path

import tomli_w

from movr.core.errors import FileSystemError, ValidationError
from movr.core.publish import DEFAULT_VERSION, MANIFEST_FILE
from movr.templates import (
    FRAMEWORK_DEPENDENCIES,
    FRAMEWORK_GIT,
    GITIGNORE,
    README,
    TEMPLATE_DEPENDENCIES,
    TEMPLATE_NAMES,
    get_template,
    render,
)

logger = logging.getLogger(__name__)

NAME_PATTERN = re.compile(r"^[a-z][a-z0-9_]*$")
PACKAGE_DIRS = ("sources", "tests", "scripts", "doc")


@dataclass
class ScaffoldResult:
    """Result of creating a package skeleton."""
    directory: Path
    name: str
    template: str
    files: list[str] = field(default_factory=list)


def validate_package_name(name: str) -> str:
    if not name:
        raise ValidationError("Package name is required")
    if not NAME_PATTERN.match(name):
        raise ValidationError(
            "Package name must start with a lowercase letter and contain only "
            "lowercase letters, numbers, and underscores",
            {"name": name},
        )
    return name


def build_manifest(name: str, author: str = "", description: str = "",
                   template: str = "basic") -> dict:
    dependencies = {**FRAMEWORK_DEPENDENCIES, **TEMPLATE_DEPENDENCIES.get(template, {})}
    package = {
        "name": name,
        "version": DEFAULT_VERSION,
        "authors": [author] if author else [],
        "license": "MIT",
    }
    if description:
        package["description"] = description
    return {
        "package": package,
        "addresses": {name: "_"},
        "dependencies": {
            dep: {"git": FRAMEWORK_GIT, "subdir": subdir, "rev": "main"}
            for dep, subdir in dependencies.items()
        },
        "dev-addresses": {name: "0x1"},
    }


def _struct_name(name: str) -> str:
    return "".join(part.capitalize() for part in name.split("_") if part)


def init_package(
    directory: Path,
    name: str | None = None,
    author: str = "",
    description: str = "",
    template: str = "basic",
) -> ScaffoldResult:
    """Write Move.toml, template sources, README and .gitignore into *directory*.

    The package name defaults to the directory name. Existing files with the
    same paths are overwritten; anything else in the directory is left alone.
    """
    directory = Path(directory).resolve()
    name = validate_package_name(name or directory.name)
    if template not in TEMPLATE_NAMES:
        raise ValidationError(
            f"Unknown template '{template}'. Choose from: {', '.join(TEMPLATE_NAMES)}",
            {"template": template},
        )

    values = {
        "name": name,
        "struct_name": _struct_name(name),
        "author": author or "Unknown",
        "description": description or "A Move package for the Aptos blockchain.",
    }
    files: dict[str, str] = {
        MANIFEST_FILE: tomli_w.dumps(build_manifest(name, author, description, template)),
        "README.md": render(README, **values),
        ".gitignore": GITIGNORE,
    }
    for rel, source in get_template(template).items():
        files[render(rel, **values)] = render(source, **values)

    try:
        for sub in PACKAGE_DIRS:
            (directory / sub).mkdir(parents=True, exist_ok=True)
        for rel, content in files.items():
            (directory / rel).write_text(content)
    except OSError as e:
        raise FileSystemError(
            f"Failed to create package structure: {e}", {"path": str(directory)}
        )

    logger.info("Package %s created at %s (template %s)", name, directory, template)
    return ScaffoldResult(directory, name, template, sorted(files))
