"""movr CLI — Click commands with Rich output."""
from __future__ import annotations

import asyncio
import functools
import json
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import click
from dotenv import load_dotenv
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from movr import __version__
from movr.core.config import ConfigStore
from movr.core.errors import MovrError, ValidationError, error_handler
from movr.core.models import PackageKind
from movr.core.registry import format_apt, parse_apt
from movr.log import configure_logging

console = Console()


@dataclass
class CliState:
    config_path: Optional[Path] = None
    network: Optional[str] = None
    verbose: bool = False

    def store(self) -> ConfigStore:
        return ConfigStore(self.config_path).load_or_init()


def cli_boundary(fn):
    """Turn movr failures into a red message and a non-zero exit code."""

    @functools.wraps(fn)
    def wrapper(*args, **kwargs):
        try:
            return fn(*args, **kwargs)
        except (click.ClickException, click.exceptions.Abort, click.exceptions.Exit):
            raise
        except MovrError as e:
            console.print(f"[red]{e.message}[/red]")
            raise SystemExit(error_handler.handle(e))
        except Exception as e:
            console.print(f"[red]Unexpected error: {e}[/red]")
            raise SystemExit(error_handler.handle(e))

    return wrapper


def run(coro):
    return asyncio.run(coro)


@click.group()
@click.version_option(version=__version__)
@click.option("--network", default=None, help="Network to use (devnet, testnet, mainnet)")
@click.option("--config", "config_path", default=None, type=click.Path(),
              help="Path to the config file")
@click.option("--verbose", is_flag=True, help="Show progress logs")
@click.pass_context
def main(ctx, network, config_path, verbose):
    """movr: publish, discover and install Move packages."""
    load_dotenv()
    configure_logging(verbose)
    ctx.obj = CliState(
        config_path=Path(config_path) if config_path else None,
        network=network,
        verbose=verbose,
    )


# ---------------------------------------------------------------------------
# init
# ---------------------------------------------------------------------------

@click.command("init")
@click.argument("directory", default=".")
@click.option("--name", "-n", default=None, help="Package name")
@click.option("--author", "-a", default="", help="Package author")
@click.option("--description", "-d", default="", help="Package description")
@click.option("--template", "-t", default="basic",
              type=click.Choice(["basic", "token", "defi"]), help="Package template")
@click.option("--wallet", default=None, help="Wallet for registry initialization")
@click.pass_obj
@cli_boundary
def init_cmd(state: CliState, directory, name, author, description, template, wallet):
    """Create a Move package in DIRECTORY, or initialize the registry.

    Usage:
      movr init my_package --template token
      movr init registry --wallet admin
    """
    if directory == "registry":
        run(_init_registry(state, wallet))
        return

    from movr.core.scaffold import init_package

    target = Path(directory).resolve()
    if target.exists() and any(target.iterdir()):
        if not click.confirm(f"Directory {target} is not empty. Continue?", default=False):
            console.print("[yellow]Operation cancelled.[/yellow]")
            return

    result = init_package(target, name, author, description, template)
    console.print(f"[green]Move package '{result.name}' initialized at {result.directory}[/green]")
    for f in result.files:
        console.print(f"  [green]+[/green] {f}")
    console.print("\n[dim]Next steps:[/dim]")
    console.print("[dim]  1. Write your modules in sources/[/dim]")
    console.print("[dim]  2. Run tests with `aptos move test`[/dim]")
    console.print("[dim]  3. Publish with `movr publish`[/dim]")


async def _init_registry(state: CliState, wallet: Optional[str]) -> None:
    from movr.core.session import connect

    async with connect(state.store(), state.network) as clients:
        signer = clients.wallets.signer(wallet)
        console.print(f"Initializing registry on {clients.network.name} from {signer.address}...")
        result = await clients.registry.initialize_registry(signer)
    _print_transaction("Registry initialization", result)


# ---------------------------------------------------------------------------
# publish
# ---------------------------------------------------------------------------

@click.command("publish")
@click.option("--package-path", default=".", type=click.Path(), help="Package directory")
@click.option("--pkg-version", default=None, help="Package version (MAJOR.MINOR.PATCH)")
@click.option("--tags", default=None, help="Comma-separated tags")
@click.option("--description", default=None, help="Package description")
@click.option("--package-type", default="library",
              type=click.Choice(["library", "template"]), help="Package type")
@click.option("--wallet", default=None, help="Wallet to publish from")
@click.option("--yes", "-y", is_flag=True, help="Skip the confirmation prompt")
@click.pass_obj
@cli_boundary
def publish_cmd(state: CliState, package_path, pkg_version, tags, description,
                package_type, wallet, yes):
    """Archive, upload and register the package at --package-path."""
    from movr.core.publish import PublishRequest

    request = PublishRequest(
        package_path=Path(package_path).resolve(),
        version=pkg_version,
        tags=tags,
        description=description,
        wallet=wallet,
        package_kind=PackageKind.from_label(package_type),
    )
    outcome = run(_publish(state, request, yes))
    _print_publish_outcome(outcome)


async def _publish(state: CliState, request, yes: bool):
    from movr.core.publish import PublishPipeline
    from movr.core.session import connect

    async def confirm(prompt: str) -> bool:
        return yes or click.confirm(prompt, default=False)

    async with connect(state.store(), state.network) as clients:
        pipeline = PublishPipeline(clients.registry, clients.storage, clients.wallets, confirm)
        return await pipeline.run(request)


def _print_publish_outcome(outcome) -> None:
    from movr.core.publish import PublishState

    if outcome.state == PublishState.DONE:
        console.print(f"[green]{outcome.message}[/green]")
        console.print(f"  Content address: {outcome.content_address}")
        console.print(f"  Transaction: {outcome.transaction.transaction_id}")
        for w in outcome.warnings:
            console.print(f"  [yellow]Warning: {w}[/yellow]")
        return
    if outcome.state == PublishState.PENDING:
        console.print(f"[yellow]{outcome.message}[/yellow]")
        console.print("[dim]Check later with: movr search <name> --details[/dim]")
        return
    if outcome.cancelled:
        console.print("[yellow]Publish cancelled.[/yellow]")
        return
    stage = outcome.failed_at.value if outcome.failed_at else "unknown"
    console.print(f"[red]Publish failed at {stage}: {outcome.message}[/red]")
    raise SystemExit(1)


# ---------------------------------------------------------------------------
# install
# ---------------------------------------------------------------------------

@click.command("install")
@click.argument("name")
@click.option("--version", "-v", "version", default=None, help="Package version")
@click.option("--output-dir", "-o", default=None, type=click.Path(), help="Output directory")
@click.pass_obj
@cli_boundary
def install_cmd(state: CliState, name, version, output_dir):
    """Download and unpack package NAME."""
    outcome = run(_install(state, name, version, output_dir))
    if outcome.success:
        console.print(f"[green]{outcome.message}[/green]")
        console.print(f"  {len(outcome.files)} file(s) extracted")
        return
    console.print(f"[red]{outcome.message}[/red]")
    if outcome.status.value == "not_found":
        console.print("[dim]Search with: movr search <query>[/dim]")
    raise SystemExit(1)


async def _install(state: CliState, name, version, output_dir):
    from movr.core.install import InstallPipeline
    from movr.core.session import connect

    async with connect(state.store(), state.network) as clients:
        pipeline = InstallPipeline(clients.registry, clients.storage)
        with console.status(f"Installing {name}..."):
            return await pipeline.run(name, version, Path(output_dir) if output_dir else None)


# ---------------------------------------------------------------------------
# search
# ---------------------------------------------------------------------------

@click.command("search")
@click.argument("query", default="")
@click.option("--package-type", "-t", default=None,
              type=click.Choice(["library", "template"]), help="Filter by package type")
@click.option("--min-endorsements", "-e", default=0, type=int,
              help="Minimum number of endorsements")
@click.option("--limit", "-l", default=None, type=int, help="Maximum number of results")
@click.option("--details", "-d", is_flag=True, help="Show detailed package information")
@click.pass_obj
@cli_boundary
def search_cmd(state: CliState, query, package_type, min_endorsements, limit, details):
    """Fuzzy-search the registry for QUERY.

    Usage:
      movr search token
      movr search "" --package-type template --min-endorsements 2
    """
    from movr.core.search import SearchFilters

    filters = SearchFilters(
        package_kind=PackageKind.from_label(package_type) if package_type else None,
        min_endorsements=min_endorsements,
        limit=limit,
    )
    result = run(_search(state, query, filters))

    if not result.hits:
        console.print(f"No packages found matching '{query}'")
        console.print(f"[dim]Registry has {result.total} packages total[/dim]")
    elif details:
        _print_package_details(result.packages)
    else:
        _print_package_table(result.packages)

    if result.skipped:
        console.print(f"[dim]{result.skipped} malformed registry entries skipped[/dim]")


async def _search(state: CliState, query, filters):
    from movr.core.search import CatalogSearch
    from movr.core.session import connect

    async with connect(state.store(), state.network) as clients:
        return await CatalogSearch(clients.registry).query(query, filters)


# ---------------------------------------------------------------------------
# endorse / tip
# ---------------------------------------------------------------------------

@click.command("endorse")
@click.argument("name")
@click.argument("stake", required=False)
@click.option("--version", "-v", "version", default=None, help="Package version")
@click.option("--stake-amount", "-s", default=None, help="Stake in APT (for register)")
@click.option("--wallet", default=None, help="Wallet to use")
@click.pass_obj
@cli_boundary
def endorse_cmd(state: CliState, name, stake, version, stake_amount, wallet):
    """Endorse package NAME, or `endorse register STAKE` to become an endorser."""
    if name == "register":
        amount = stake or stake_amount
        if not amount:
            raise ValidationError("Usage: movr endorse register <stake>")
        outcome = run(_endorse(state, "register", stake=parse_apt(amount), wallet=wallet))
    else:
        outcome = run(_endorse(state, "endorse", name=name, version=version, wallet=wallet))
    _print_action_outcome(outcome)


@click.command("tip")
@click.argument("name")
@click.argument("amount")
@click.option("--version", "-v", "version", default=None, help="Package version")
@click.option("--wallet", default=None, help="Wallet to use")
@click.pass_obj
@cli_boundary
def tip_cmd(state: CliState, name, amount, version, wallet):
    """Tip the publisher of NAME with AMOUNT APT."""
    outcome = run(_endorse(
        state, "tip", name=name, amount=parse_apt(amount), version=version, wallet=wallet,
    ))
    _print_action_outcome(outcome)


async def _endorse(state: CliState, action: str, **kwargs):
    from movr.core.endorse import EndorsementService
    from movr.core.session import connect

    async with connect(state.store(), state.network) as clients:
        service = EndorsementService(clients.registry, clients.wallets)
        with console.status("Submitting transaction..."):
            if action == "register":
                return await service.register(kwargs["stake"], wallet=kwargs["wallet"])
            if action == "tip":
                return await service.tip(
                    kwargs["name"], kwargs["amount"],
                    version=kwargs["version"], wallet=kwargs["wallet"],
                )
            return await service.endorse(
                kwargs["name"], version=kwargs["version"], wallet=kwargs["wallet"]
            )


def _print_action_outcome(outcome) -> None:
    if outcome.success:
        console.print(f"[green]{outcome.message}[/green]")
        return
    if outcome.pending:
        console.print(f"[yellow]{outcome.message}[/yellow]")
        return
    console.print(f"[red]{outcome.message}[/red]")
    raise SystemExit(1)


# ---------------------------------------------------------------------------
# wallet
# ---------------------------------------------------------------------------

@click.group("wallet")
def wallet_group():
    """Create, import and select wallets."""
    pass


@wallet_group.command("create")
@click.argument("name")
@click.pass_obj
@cli_boundary
def wallet_create(state: CliState, name):
    """Generate a new wallet (funded from the faucet off mainnet)."""
    creation = run(_wallet_create(state, name))
    console.print(f"[green]Wallet '{name}' created[/green]")
    console.print(f"  Address: {creation.record.address}")
    if creation.funded:
        console.print("  [green]Funded from the faucet[/green]")
    elif creation.funding_error:
        console.print(f"  [yellow]Faucet funding failed: {creation.funding_error}[/yellow]")
    if creation.record.is_default:
        console.print("  [dim]Set as default wallet[/dim]")


async def _wallet_create(state: CliState, name):
    from movr.core.session import connect

    async with connect(state.store(), state.network) as clients:
        return await clients.wallets.create(name)


@wallet_group.command("import")
@click.argument("name")
@click.option("--private-key", default=None, help="Hex-encoded Ed25519 private key")
@click.pass_obj
@cli_boundary
def wallet_import(state: CliState, name, private_key):
    """Import an existing private key as wallet NAME."""
    from movr.core.wallet import WalletManager

    if not private_key:
        private_key = click.prompt("Private key", hide_input=True)
    record = WalletManager(state.store()).import_key(name, private_key)
    console.print(f"[green]Wallet '{name}' imported[/green]")
    console.print(f"  Address: {record.address}")


@wallet_group.command("list")
@click.pass_obj
@cli_boundary
def wallet_list(state: CliState):
    """List configured wallets."""
    from movr.core.wallet import WalletManager

    wallets = WalletManager(state.store()).list()
    if not wallets:
        console.print("No wallets configured. Create one with: movr wallet create <name>")
        return

    table = Table(title="Wallets")
    table.add_column("Name", style="cyan")
    table.add_column("Address", style="green")
    table.add_column("Default", style="magenta")
    for w in wallets:
        table.add_row(w.name, w.address, "*" if w.is_default else "")
    console.print(table)


@wallet_group.command("show")
@click.argument("name", required=False)
@click.pass_obj
@cli_boundary
def wallet_show(state: CliState, name):
    """Show wallet NAME (or the default) with its balance."""
    record, balance, account = run(_wallet_show(state, name))

    lines = [
        f"Address: {record.address}",
        f"Default: {'yes' if record.is_default else 'no'}",
        f"Balance: {format_apt(balance)} APT" if balance is not None else "Balance: unavailable",
    ]
    if account is not None:
        lines.append(f"Sequence number: {account.get('sequence_number')}")
    console.print(Panel("\n".join(lines), title=record.name))


async def _wallet_show(state: CliState, name):
    from movr.core.session import connect

    async with connect(state.store(), state.network) as clients:
        record = clients.wallets.show(name)
        try:
            balance = await clients.registry.get_account_balance(record.address)
            account = await clients.registry.get_account_info(record.address)
        except MovrError as e:
            console.print(f"[yellow]Node unreachable: {e.message}[/yellow]")
            balance, account = None, None
        return record, balance, account


@wallet_group.command("remove")
@click.argument("name")
@click.pass_obj
@cli_boundary
def wallet_remove(state: CliState, name):
    """Remove wallet NAME."""
    from movr.core.wallet import WalletManager

    manager = WalletManager(state.store())
    manager.remove(name)
    console.print(f"[green]Wallet '{name}' removed[/green]")
    default = manager.config.get_default_wallet()
    if default is not None:
        console.print(f"[dim]Default wallet: {default.name}[/dim]")


@wallet_group.command("use")
@click.argument("name")
@click.pass_obj
@cli_boundary
def wallet_use(state: CliState, name):
    """Make NAME the default wallet."""
    from movr.core.wallet import WalletManager

    WalletManager(state.store()).use(name)
    console.print(f"[green]Default wallet set to '{name}'[/green]")


# ---------------------------------------------------------------------------
# ipfs
# ---------------------------------------------------------------------------

@click.group("ipfs")
def ipfs_group():
    """Upload to and download from IPFS storage."""
    pass


@ipfs_group.command("upload")
@click.argument("path", type=click.Path(exists=True))
@click.option("--metadata", "-m", default=None, help="Pin metadata as JSON")
@click.pass_obj
@cli_boundary
def ipfs_upload(state: CliState, path, metadata):
    """Upload a file, or a directory as a zip archive."""
    meta = None
    if metadata:
        try:
            meta = json.loads(metadata)
        except ValueError as e:
            raise ValidationError(f"--metadata is not valid JSON: {e}")
    result = run(_ipfs(state, "upload", Path(path), meta))
    console.print("[green]Uploaded[/green]")
    console.print(f"  Content address: {result.content_address}")
    console.print(f"  Size: {result.size} bytes")


@ipfs_group.command("download")
@click.argument("content_address")
@click.argument("output", type=click.Path())
@click.pass_obj
@cli_boundary
def ipfs_download(state: CliState, content_address, output):
    """Download CONTENT_ADDRESS to OUTPUT."""
    path = run(_ipfs(state, "download", content_address, Path(output)))
    console.print(f"[green]Downloaded to {path}[/green]")


@ipfs_group.command("test")
@click.pass_obj
@cli_boundary
def ipfs_test(state: CliState):
    """Check the storage credentials."""
    ok = run(_ipfs(state, "test"))
    if ok:
        console.print("[green]Storage connection OK[/green]")
        return
    console.print("[red]Storage connection failed. Check your Pinata credentials.[/red]")
    raise SystemExit(1)


async def _ipfs(state: CliState, action: str, *args):
    from movr.core.session import connect

    async with connect(state.store(), state.network) as clients:
        if action == "upload":
            path, meta = args
            if path.is_dir():
                return await clients.storage.upload_directory(path, meta)
            return await clients.storage.upload_file(path, meta)
        if action == "download":
            return await clients.storage.download_file(*args)
        return await clients.storage.test_connection()


# ---------------------------------------------------------------------------
# serve
# ---------------------------------------------------------------------------

@click.command("serve")
@click.option("--host", default="127.0.0.1", help="Bind address")
@click.option("--port", default=8080, type=int, help="Bind port")
@click.pass_obj
@cli_boundary
def serve_cmd(state: CliState, host, port):
    """Serve the JSON API (POST /api/<command>)."""
    from movr.api import serve

    console.print(f"[green]movr API on http://{host}:{port}/api[/green]")
    serve(host, port, state.config_path)


# ---------------------------------------------------------------------------
# Command table
# ---------------------------------------------------------------------------

COMMANDS = {
    "init": init_cmd,
    "publish": publish_cmd,
    "install": install_cmd,
    "search": search_cmd,
    "endorse": endorse_cmd,
    "tip": tip_cmd,
    "wallet": wallet_group,
    "ipfs": ipfs_group,
    "serve": serve_cmd,
}

for _name, _command in COMMANDS.items():
    main.add_command(_command, _name)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _print_transaction(label: str, result) -> None:
    if result.pending:
        console.print(f"[yellow]{label} submitted, confirmation pending[/yellow]")
    elif result.success:
        console.print(f"[green]{label} succeeded[/green]")
    else:
        console.print(f"[red]{label} failed: {result.status_message}[/red]")
    console.print(f"[dim]Transaction: {result.transaction_id}[/dim]")
    if not (result.success or result.pending):
        raise SystemExit(1)


def _print_package_table(packages) -> None:
    from movr.core.search import summary_view

    table = Table(title=f"Found {len(packages)} package(s)")
    table.add_column("Name", style="cyan")
    table.add_column("Version", style="dim")
    table.add_column("Type", style="magenta")
    table.add_column("Endorsements", justify="right")
    table.add_column("Description")
    for pkg in packages:
        view = summary_view(pkg)
        table.add_row(
            view["name"], view["version"], view["kind"],
            str(view["endorsements"]), view["description"],
        )
    console.print(table)
    console.print("[dim]Install with: movr install <name>[/dim]")


def _print_package_details(packages) -> None:
    from movr.core.search import detail_view

    for pkg in packages:
        view = detail_view(pkg)
        tags_str = " ".join(f"#{t}" for t in view["tags"])
        body = [
            view["description"] or "[dim]No description[/dim]",
            "",
            f"Publisher: {view['publisher']}",
            f"Content address: {view['content_address']}",
            f"Type: {view['kind']}",
            f"Endorsements: {view['endorsements']}",
            f"Downloads: {view['downloads']}",
            f"Tips: {view['tips']} APT",
        ]
        if view["published_at"]:
            body.append(f"Published: {view['published_at']}")
        if tags_str:
            body.append(f"Tags: {tags_str}")
        for key in ("homepage", "repository", "license"):
            if view[key]:
                body.append(f"{key.capitalize()}: {view[key]}")
        console.print(Panel("\n".join(body), title=f"{view['name']} v{view['version']}"))
