"""Command line interface: ``yoto-f1 login``, ``refresh``, ``preview`` and friends."""

from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import Optional

import httpx
import typer
from rich import print as rprint
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.tree import Tree

from .api import auth
from .api import devices as devices_api
from .api.client import YotoClient
from .errors import YotoF1Error
from .logging_setup import configure_logging
from .models.race import RaceWeekendSnapshot
from .narration import build_script, default_title
from .race_data import provider_from_settings
from .refresh import RefreshService
from .storage.config import Settings, get_settings
from .storage.identity import IdentityStore, JsonFileStore

app = typer.Typer(help="Keep a Yoto MYO card narrating the next Formula 1 race weekend.")
console = Console()


def _settings() -> Settings:
    return get_settings()


def _identity(settings: Settings) -> IdentityStore:
    return IdentityStore(JsonFileStore(settings.store_path))


@app.callback()
def main(debug: bool = typer.Option(False, "--debug", "-d", help="Enable debug logging")):
    configure_logging(debug=debug or _settings().debug)


@app.command()
def login():
    """Connect a Yoto account using the device authorization flow."""
    settings = _settings()
    try:
        info = auth.request_device_code(settings.yoto_client_id)
    except httpx.HTTPError as exc:
        rprint(f"[bold red]Could not start login:[/bold red] {exc}")
        raise typer.Exit(code=1)

    rprint(
        Panel.fit(
            f"Visit [bold cyan]{info.verification_uri_complete or info.verification_uri}[/bold cyan]\n"
            f"and enter the code [bold magenta]{info.user_code}[/bold magenta]",
            title="[bold green]Yoto login[/bold green]",
        )
    )
    with console.status("Waiting for authorization...") as status:
        try:
            tokens = auth.poll_for_token(
                settings.yoto_client_id, info, on_status=lambda msg: status.update(msg)
            )
        except auth.DeviceAuthError as exc:
            rprint(f"[bold red]Login failed:[/bold red] {exc}")
            raise typer.Exit(code=1)
    if tokens is None:
        rprint("[bold red]The login code expired. Run 'yoto-f1 login' again.[/bold red]")
        raise typer.Exit(code=1)
    _identity(settings).save_tokens(tokens)
    rprint("[bold green]Connected to Yoto.[/bold green]")


@app.command()
def logout(
    forget_card: bool = typer.Option(False, "--forget-card", help="Also forget the managed card"),
):
    """Remove stored Yoto credentials."""
    identity = _identity(_settings())
    identity.clear_tokens()
    if forget_card:
        identity.forget_card()
    rprint("[bold green]Logged out.[/bold green]")


@app.command()
def status():
    """Show the stored login and managed card."""
    settings = _settings()
    identity = _identity(settings)
    table = Table(show_header=False)
    table.add_row("Authenticated", "yes" if identity.load_tokens() else "[red]no[/red]")
    table.add_row("Card id", identity.card_id or "-")
    table.add_row("Playlist title", identity.playlist_title or "-")
    table.add_row("Data fingerprint", identity.content_fingerprint or "-")
    table.add_row("MYO upload card", identity.myo_card_id or "-")
    table.add_row("Speech backend", settings.tts_backend)
    table.add_row("Race data", settings.cloudflare_worker_url or "OpenF1 (direct)")
    rprint(Panel.fit(table, title="[bold green]yoto-f1[/bold green]"))


@app.command()
def refresh(
    force: bool = typer.Option(False, "--force", "-f", help="Rebuild even if the race data is unchanged"),
):
    """Create or update the race card and push it to every player."""
    settings = _settings()

    async def _run():
        service = RefreshService.from_settings(settings)
        try:
            return await service.refresh("manual", force=force)
        finally:
            await service.aclose()

    try:
        with console.status("Refreshing playlist..."):
            result = asyncio.run(_run())
    except YotoF1Error as exc:
        rprint(f"[bold red]Refresh failed:[/bold red] {exc}")
        raise typer.Exit(code=1)

    if result.needsReauth:
        rprint("[bold red]Not authenticated.[/bold red] Run 'yoto-f1 login' first.")
        raise typer.Exit(code=2)
    if not result.success:
        rprint(f"[bold red]{result.message}[/bold red] {result.errorKind}: {result.error}")
        raise typer.Exit(code=1)

    rprint(f"[bold green]{result.message}[/bold green]")
    if result.cardId:
        rprint(f"Card: [cyan]{result.cardId}[/cyan] {result.title or ''}")
    if result.fallbackReason:
        rprint(f"[yellow]Created a new card instead of updating: {result.fallbackReason}[/yellow]")
    for name, outcome in result.sideUploads.items():
        rprint(f"  {name}: {outcome}")
    if result.deployment:
        d = result.deployment
        rprint(f"Deployed to {d.succeeded}/{d.total} device(s)")
    elif result.deploymentError:
        rprint(f"[yellow]Deployment failed: {result.deploymentError}[/yellow]")


@app.command()
def preview(
    snapshot_file: Optional[Path] = typer.Option(
        None, "--snapshot", "-s", help="Read the race data from a JSON file instead of fetching it"
    ),
):
    """Print the narration for the next race without touching the Yoto card."""
    if snapshot_file:
        try:
            snapshot = RaceWeekendSnapshot.model_validate(json.loads(snapshot_file.read_text()))
        except (OSError, ValueError) as exc:
            rprint(f"[bold red]Cannot read {snapshot_file}:[/bold red] {exc}")
            raise typer.Exit(code=1)
    else:
        settings = _settings()

        async def _fetch():
            async with httpx.AsyncClient(timeout=30.0) as http:
                return await provider_from_settings(settings, http=http).fetch_snapshot()

        try:
            snapshot = asyncio.run(_fetch())
        except YotoF1Error as exc:
            rprint(f"[bold red]Could not fetch race data:[/bold red] {exc}")
            raise typer.Exit(code=1)

    script = build_script(snapshot)
    tree = Tree(f"[bold green]{default_title(snapshot)}[/bold green]")
    for ck, tk, chapter, track in script.iter_tracks():
        if tk == "01":
            branch = tree.add(f"[bold magenta]{ck} {chapter.title}[/bold magenta]")
        branch.add(f"[cyan]{tk} {track.title}[/cyan]\n{track.text}")
    rprint(tree)
    rprint(f"Fingerprint: {snapshot.fingerprint()}")


@app.command()
def devices():
    """List the players registered to the account."""
    settings = _settings()

    async def _list():
        async with YotoClient(
            _identity(settings), settings.yoto_client_id, settings.secret("yoto_client_secret")
        ) as client:
            return await devices_api.get_devices(client)

    try:
        found = asyncio.run(_list())
    except YotoF1Error as exc:
        rprint(f"[bold red]Could not list devices:[/bold red] {exc}")
        raise typer.Exit(code=1)
    if not found:
        rprint("[bold yellow]No devices found.[/bold yellow]")
        return
    table = Table("Device id", "Name", "Type", "Online")
    for device in found:
        online = "-" if device.online is None else ("yes" if device.online else "no")
        table.add_row(device.deviceId, device.name, device.deviceType or "-", online)
    rprint(table)


@app.command()
def serve(
    host: str = typer.Option("127.0.0.1", help="Interface to bind"),
    port: int = typer.Option(8000, help="Port to listen on"),
):
    """Run the HTTP API (login, refresh and webhook routes)."""
    import uvicorn

    from .server import create_app

    uvicorn.run(create_app(_settings()), host=host, port=port)


if __name__ == "__main__":
    app()
