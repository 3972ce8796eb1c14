#!/usr/bin/env python3

from __future__ import annotations
import asyncio
import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Awaitable, Callable, List, Optional

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from scatter.core.ApiTypes import Identity, IdentityRequiredFields, Network
from scatter.core.MessageTypes import Blockchain
from shared.config import Endpoint, ScatterConfig, load_config
from shared.errors import ScatterError
from shared.log import configure_root_logging, get_logger

from .client import ScatterClient
from .storage import FileStorageProvider

app = typer.Typer(help="Scatter wallet client CLI")
console = Console()
logger = get_logger(__name__)


@dataclass
class CliState:
    config: ScatterConfig
    network: Optional[Network]


def _default_storage(app_name: str) -> Path:
    return Path.home() / ".scatter" / f"{app_name}.json"


@app.callback()
def main_options(
    ctx: typer.Context,
    config: Optional[Path] = typer.Option(None, "--config", "-c", help="YAML config file"),
    app_name: Optional[str] = typer.Option(None, help="Application name shown to the user"),
    endpoint: Optional[List[str]] = typer.Option(None, help="Wallet endpoint scheme://host:port; repeatable"),
    storage: Optional[Path] = typer.Option(None, help="JSON file for the app key, nonce and identity"),
    chain_id: Optional[str] = typer.Option(None, help="Chain id of the network to use"),
    network_host: Optional[str] = typer.Option(None, help="Network API host"),
    network_port: int = typer.Option(443, help="Network API port"),
    network_protocol: str = typer.Option("https", help="Network API protocol"),
    blockchain: str = typer.Option(Blockchain.EOSIO.value, help="Blockchain of the network"),
    log_level: Optional[str] = typer.Option(None, help="DEBUG, INFO, WARNING or ERROR"),
):
    """Talk to a locally running Scatter wallet."""
    try:
        cfg = load_config(config)
        overrides = {}
        if app_name:
            overrides["app_name"] = app_name
        if endpoint:
            overrides["endpoints"] = [Endpoint.parse(e) for e in endpoint]
        if storage is not None:
            overrides["storage_path"] = storage
        if log_level:
            overrides["log_level"] = log_level
        if overrides:
            cfg = cfg.update(**overrides)
        if cfg.storage_path is None:
            cfg = cfg.update(storage_path=_default_storage(cfg.app_name))
    except ScatterError as e:
        console.print(f"[red]{escape(e.message)}[/]")
        raise typer.Exit(code=1)

    if cfg.log_level:
        configure_root_logging(cfg.log_level)

    network = None
    if chain_id or network_host:
        network = Network(
            blockchain=blockchain,
            host=network_host or "",
            port=network_port,
            protocol=network_protocol,
            chain_id=chain_id or "",
        )
    ctx.obj = CliState(config=cfg, network=network)


def _run(ctx: typer.Context, action: Callable[[ScatterClient], Awaitable[Any]]) -> Any:
    """Connect, run one operation, and always dispose the client."""
    state: CliState = ctx.obj

    async def runner() -> Any:
        client = ScatterClient(
            network=state.network,
            storage=FileStorageProvider(state.config.storage_path),
            config=state.config,
        )
        try:
            if not await client.connect():
                console.print("[yellow]The wallet did not pair with this app[/]")
            return await action(client)
        finally:
            await client.dispose()

    try:
        return asyncio.run(runner())
    except ScatterError as e:
        console.print(f"[red]{type(e).__name__}[/]: {escape(e.message)}")
        raise typer.Exit(code=1)


def _print_identity(identity: Optional[Identity]) -> None:
    if identity is None:
        console.print("No identity")
        return
    console.print(f"[bold green]{identity.name or '(unnamed)'}[/] {identity.public_key}")
    if identity.accounts:
        table = Table(title="Accounts")
        table.add_column("Blockchain")
        table.add_column("Account")
        table.add_column("Authority")
        table.add_column("Public key")
        for account in identity.accounts:
            table.add_row(account.blockchain, account.name, account.authority, account.public_key)
        console.print(table)


@app.command()
def endpoints(ctx: typer.Context):
    """List the wallet endpoints in the order they are tried."""
    state: CliState = ctx.obj
    table = Table(title=f"Endpoints for {state.config.app_name}")
    table.add_column("#", justify="right")
    table.add_column("Endpoint")
    table.add_column("URL")
    for i, ep in enumerate(state.config.endpoints, 1):
        table.add_row(str(i), str(ep), ep.url)
    console.print(table)


@app.command()
def version(ctx: typer.Context):
    """Print the wallet version."""
    console.print(_run(ctx, lambda client: client.get_version()))


@app.command()
def identity(
    ctx: typer.Context,
    accounts: bool = typer.Option(True, help="Request an account on the configured network"),
    personal: Optional[List[str]] = typer.Option(None, help="Personal field to request; repeatable"),
    location: Optional[List[str]] = typer.Option(None, help="Location field to request; repeatable"),
    as_json: bool = typer.Option(False, "--json", help="Print the raw identity"),
):
    """Request an identity from the user."""
    state: CliState = ctx.obj
    fields = IdentityRequiredFields(
        accounts=[state.network] if accounts and state.network is not None else [],
        personal=list(personal or []),
        location=list(location or []),
    )
    result = _run(ctx, lambda client: client.get_identity(fields))
    if as_json:
        console.print_json(json.dumps(result.to_dict()))
    else:
        _print_identity(result)


@app.command()
def forget(ctx: typer.Context):
    """Sign out: forget the identity the wallet gave this app."""
    if _run(ctx, lambda client: client.forget_identity()):
        console.print("Identity forgotten")
    else:
        console.print("[yellow]The wallet did not forget the identity[/]")


@app.command()
def authenticate(ctx: typer.Context, nonce: str = typer.Argument(..., help="Nonce the identity signs")):
    """Prove ownership of the current identity by signing a nonce."""
    console.print(_run(ctx, lambda client: client.authenticate(nonce)))


@app.command("sign-arbitrary")
def sign_arbitrary(
    ctx: typer.Context,
    public_key: str = typer.Argument(..., help="Key to sign with"),
    data: str = typer.Argument(..., help="Data to sign"),
    whatfor: str = typer.Option("", help="Reason shown to the user"),
    is_hash: bool = typer.Option(False, help="Data is already a hash"),
):
    """Ask the user to sign arbitrary data."""
    console.print(_run(ctx, lambda client: client.get_arbitrary_signature(public_key, data, whatfor, is_hash)))


@app.command("public-key")
def public_key(ctx: typer.Context, chain: str = typer.Argument(Blockchain.EOSIO.value, help="Blockchain")):
    """Ask the user for a public key."""
    console.print(_run(ctx, lambda client: client.get_public_key(chain)))


@app.command("link-account")
def link_account(ctx: typer.Context, key: str = typer.Argument(..., help="Public key to link")):
    """Link an account on the configured network to the wallet."""
    linked = _run(ctx, lambda client: client.link_account(key))
    console.print("Account linked" if linked else "[yellow]Account not linked[/]")


@app.command("suggest-network")
def suggest_network(ctx: typer.Context):
    """Suggest the configured network to the wallet."""
    added = _run(ctx, lambda client: client.suggest_network())
    console.print("Network added" if added else "[yellow]Network not added[/]")


def main() -> None:
    app()


if __name__ == "__main__":
    main()
