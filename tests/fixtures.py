"""Test fixtures — package sources, keys and registry payloads."""

# Deterministic Ed25519 seeds
ALICE_KEY = "0x" + "11" * 32
BOB_KEY = "0x" + "22" * 32

MOVE_TOML = """\
[package]
name = "alpha"
version = "1.0.0"
authors = ["tester"]
description = "Alpha test package"

[addresses]
alpha = "_"
"""

MOVE_TOML_NO_NAME = """\
[package]
version = "1.0.0"
"""

ALPHA_MODULE = """\
module alpha::alpha {
    public fun answer(): u64 { 42 }
}
"""

ALPHA_TESTS = """\
#[test_only]
module alpha::alpha_tests {
    use alpha::alpha;

    #[test]
    fun test_answer() { assert!(alpha::answer() == 42, 0); }
}
"""

# Shape of a PackageMetadata struct as the node's /view endpoint returns it
RAW_METADATA = {
    "name": "alpha",
    "version": "1.0.0",
    "publisher": "0xabc",
    "ipfs_hash": "QmAlpha",
    "endorsements": ["0x1", "0x2"],
    "timestamp": "1700000000",
    "package_type": 1,
    "download_count": "12",
    "total_tips": "250000000",
    "tags": ["defi", "amm"],
    "description": "Alpha test package",
    "homepage": {"vec": ["https://alpha.example"]},
    "repository": {"vec": []},
    "license": {"vec": ["MIT"]},
}


def write_package(root, name="alpha", manifest=MOVE_TOML):
    """Create a small Move package under *root* and return its path."""
    pkg = root / name
    (pkg / "sources").mkdir(parents=True)
    (pkg / "tests").mkdir()
    (pkg / "Move.toml").write_text(manifest)
    (pkg / "sources" / "alpha.move").write_text(ALPHA_MODULE)
    (pkg / "tests" / "alpha_tests.move").write_text(ALPHA_TESTS)
    (pkg / "README.md").write_text("# alpha\n")
    return pkg
