"""Tests for package scaffolding and templates."""
import pytest
import tomli

from movr.core.errors import ValidationError
from movr.core.publish import read_manifest
from movr.core.scaffold import build_manifest, init_package, validate_package_name
from movr.templates import FRAMEWORK_GIT, TEMPLATE_NAMES, get_template, render


# ---------------------------------------------------------------------------
# Names and manifests
# ---------------------------------------------------------------------------

@pytest.mark.parametrize("name", ["alpha", "my_pkg", "v2_router"])
def test_valid_names(name):
    assert validate_package_name(name) == name


@pytest.mark.parametrize("name", ["", "Alpha", "2fast", "my-pkg", "_hidden"])
def test_invalid_names(name):
    with pytest.raises(ValidationError):
        validate_package_name(name)


def test_build_manifest_basic():
    manifest = build_manifest("alpha", author="ada", description="Demo")
    assert manifest["package"] == {
        "name": "alpha", "version": "1.0.0", "authors": ["ada"],
        "license": "MIT", "description": "Demo",
    }
    assert manifest["addresses"] == {"alpha": "_"}
    assert manifest["dev-addresses"] == {"alpha": "0x1"}
    framework = manifest["dependencies"]["AptosFramework"]
    assert framework["git"] == FRAMEWORK_GIT
    assert "AptosTokenObjects" not in manifest["dependencies"]


def test_token_template_adds_token_objects():
    manifest = build_manifest("coin", template="token")
    assert "AptosTokenObjects" in manifest["dependencies"]


def test_render_and_unknown_template():
    assert render("module $name::x", name="alpha") == "module alpha::x"
    with pytest.raises(KeyError):
        get_template("nft")


# ---------------------------------------------------------------------------
# init_package
# ---------------------------------------------------------------------------

def test_init_basic(tmp_path):
    target = tmp_path / "my_pkg"
    result = init_package(target, author="ada", description="Demo package")

    assert result.name == "my_pkg"
    assert result.template == "basic"
    assert result.files == sorted([
        ".gitignore", "Move.toml", "README.md",
        "sources/my_pkg.move", "tests/my_pkg_tests.move",
    ])
    for sub in ("sources", "tests", "scripts", "doc"):
        assert (target / sub).is_dir()

    manifest = tomli.loads((target / "Move.toml").read_text())
    assert manifest["package"]["name"] == "my_pkg"
    assert read_manifest(target)["description"] == "Demo package"
    assert "module my_pkg::" in (target / "sources" / "my_pkg.move").read_text()
    readme = (target / "README.md").read_text()
    assert readme.startswith("# my_pkg")
    assert "ada" in readme


@pytest.mark.parametrize("template", TEMPLATE_NAMES)
def test_every_template_renders(tmp_path, template):
    result = init_package(tmp_path / "demo_pkg", template=template)
    for rel in result.files:
        text = (tmp_path / "demo_pkg" / rel).read_text()
        assert "$name" not in text
        assert "${" not in text


def test_token_template_uses_struct_name(tmp_path):
    init_package(tmp_path / "gold_coin", template="token")
    source = (tmp_path / "gold_coin" / "sources" / "token.move").read_text()
    assert "struct GoldCoinCoin {}" in source
    assert "module gold_coin::token" in source


def test_explicit_name_overrides_directory(tmp_path):
    result = init_package(tmp_path / "Some-Dir", name="alpha")
    assert result.name == "alpha"
    assert (tmp_path / "Some-Dir" / "sources" / "alpha.move").exists()


def test_directory_name_must_be_valid(tmp_path):
    with pytest.raises(ValidationError):
        init_package(tmp_path / "Bad-Name")


def test_unknown_template(tmp_path):
    with pytest.raises(ValidationError, match="Unknown template"):
        init_package(tmp_path / "alpha", template="nft")
    assert not (tmp_path / "alpha").exists()


def test_existing_files_are_kept(tmp_path):
    target = tmp_path / "alpha"
    target.mkdir()
    (target / "NOTES.md").write_text("mine")
    init_package(target)
    assert (target / "NOTES.md").read_text() == "mine"
