"""CLI for card-store."""

import base64
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, NoReturn, Optional

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from .config import StoreSettings, load_settings
from .errors import CardStoreError, ConfigError, InvalidIdentifierError
from .identifiers import is_valid_client_id
from .models import BundleHandle, CardSpec
from .payload import ImagePayload, MediaPayload
from .store import CardStore


app = typer.Typer(help="""\
Deploy per-client card bundles (HTML, stylesheet, vCard, key, images,
media) into a served directory tree, or run the deployment API.""")

console = Console()
err_console = Console(stderr=True)


@dataclass
class CliState:
    settings: StoreSettings

    def store(self) -> CardStore:
        return CardStore(self.settings.root_dir, lock_timeout=self.settings.lock_timeout)


def _fail(exc: CardStoreError) -> NoReturn:
    """Print a store error and exit (2 for bad identifiers, 1 otherwise)."""
    err_console.print(f"[red]Error:[/red] {exc}")
    raise typer.Exit(2 if isinstance(exc, InvalidIdentifierError) else 1)


@app.callback()
def main(
    ctx: typer.Context,
    root: Optional[Path] = typer.Option(None, "--root", help="Bundle root directory (overrides config)"),
    config: Optional[Path] = typer.Option(None, "--config", "-c", help="YAML settings file"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
):
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        handlers=[RichHandler(console=err_console, show_path=False)],
        force=True,
    )
    try:
        settings = load_settings(config)
    except ConfigError as e:
        err_console.print(f"[red]Configuration error:[/red] {e}")
        raise typer.Exit(1)
    if root is not None:
        settings = settings.model_copy(update={"root_dir": root})
    ctx.obj = CliState(settings=settings)


def _read_text(path: Optional[Path], option: str) -> Optional[str]:
    if path is None:
        return None
    try:
        return path.read_text(encoding="utf-8")
    except UnicodeDecodeError as e:
        raise typer.BadParameter(f"{path} is not UTF-8 text", param_hint=option) from e
    except OSError as e:
        raise typer.BadParameter(f"Cannot read {path}: {e.strerror}", param_hint=option) from e


def _encode_file(path: Path, option: str) -> str:
    try:
        return base64.b64encode(path.read_bytes()).decode("ascii")
    except OSError as e:
        raise typer.BadParameter(f"Cannot read {path}: {e.strerror}", param_hint=option) from e


def _parse_images(specs: List[str]) -> Dict[str, ImagePayload]:
    """Turn ``KEY=PATH`` options into image payloads (extension from PATH)."""
    images: Dict[str, ImagePayload] = {}
    for spec in specs:
        key, sep, raw_path = spec.partition("=")
        if not sep or not key or not raw_path:
            raise typer.BadParameter(f"Expected KEY=PATH, got {spec!r}", param_hint="--image")
        path = Path(raw_path)
        if not path.is_file():
            raise typer.BadParameter(f"File {path} does not exist", param_hint="--image")
        ext = path.suffix.lstrip(".")
        if not ext:
            raise typer.BadParameter(f"{path} has no file extension", param_hint="--image")
        images[key] = ImagePayload(base64=_encode_file(path, "--image"), ext=ext)
    return images


def _build_spec(
    html: Optional[Path],
    css: Optional[Path],
    qr_script: Optional[Path],
    vcard: Optional[Path],
    public_key: Optional[Path],
    full_name: Optional[str],
    image: Optional[List[str]],
    media: Optional[List[Path]],
) -> CardSpec:
    return CardSpec(
        html=_read_text(html, "--html"),
        css=_read_text(css, "--css"),
        qr_script=_read_text(qr_script, "--qr-script"),
        vcard=_read_text(vcard, "--vcard"),
        public_key=_read_text(public_key, "--public-key"),
        full_name=full_name,
        images=_parse_images(image or []),
        media=[
            MediaPayload(filename=p.name, base64=_encode_file(p, "--media"))
            for p in media or []
        ],
    )


def _report(handle: BundleHandle, settings: StoreSettings, verb: str) -> None:
    console.print(f"[green]✓[/green] {verb} [bold]{handle.client_id}[/bold] → {settings.url_for(handle.client_id)}")
    for name in handle.written:
        console.print(f"  [dim]wrote[/dim] {name}")
    for skipped in handle.skipped:
        console.print(f"  [yellow]skipped[/yellow] {skipped.name}: {skipped.reason}")


_FILE = dict(exists=True, dir_okay=False, readable=True)


@app.command()
def check(ctx: typer.Context, client_id: str = typer.Argument(..., help="Client ID to check")):
    """Check whether a client ID is free.

    Examples:
        card-store check acme-corp
    """
    state: CliState = ctx.obj
    if not is_valid_client_id(client_id):
        _fail(InvalidIdentifierError(client_id))
    if state.store().exists(client_id):
        console.print(f"[yellow]taken[/yellow] {client_id}")
    else:
        console.print(f"[green]available[/green] {client_id} → {state.settings.url_for(client_id)}")


@app.command()
def deploy(
    ctx: typer.Context,
    client_id: str = typer.Argument(..., help="Client ID for the new card"),
    html: Path = typer.Option(..., "--html", help="index.html source", **_FILE),
    css: Optional[Path] = typer.Option(None, "--css", help="Stylesheet", **_FILE),
    qr_script: Optional[Path] = typer.Option(None, "--qr-script", help="QR code script", **_FILE),
    vcard: Optional[Path] = typer.Option(None, "--vcard", help="vCard file", **_FILE),
    public_key: Optional[Path] = typer.Option(None, "--public-key", help="Armored public key", **_FILE),
    full_name: Optional[str] = typer.Option(None, "--full-name", help="Display name for the key file"),
    image: Optional[List[str]] = typer.Option(None, "--image", help="Image as KEY=PATH (repeatable)"),
    media: Optional[List[Path]] = typer.Option(None, "--media", help="Media file (repeatable)", **_FILE),
):
    """Deploy a new card bundle.

    Examples:
        card-store deploy acme-corp --html index.html --css style.min.css
        card-store deploy acme-corp --html index.html --image logo=logo.png --media intro.mp4
    """
    state: CliState = ctx.obj
    spec = _build_spec(html, css, qr_script, vcard, public_key, full_name, image, media)
    try:
        handle = state.store().create(client_id, spec)
    except CardStoreError as e:
        _fail(e)
    _report(handle, state.settings, "Deployed")


@app.command()
def update(
    ctx: typer.Context,
    client_id: str = typer.Argument(..., help="Client ID of an existing card"),
    html: Optional[Path] = typer.Option(None, "--html", help="index.html source", **_FILE),
    css: Optional[Path] = typer.Option(None, "--css", help="Stylesheet", **_FILE),
    qr_script: Optional[Path] = typer.Option(None, "--qr-script", help="QR code script", **_FILE),
    vcard: Optional[Path] = typer.Option(None, "--vcard", help="vCard file", **_FILE),
    public_key: Optional[Path] = typer.Option(None, "--public-key", help="Armored public key", **_FILE),
    full_name: Optional[str] = typer.Option(None, "--full-name", help="Display name for the key file"),
    image: Optional[List[str]] = typer.Option(None, "--image", help="Image as KEY=PATH (repeatable)"),
    media: Optional[List[Path]] = typer.Option(None, "--media", help="Media file (repeatable)", **_FILE),
):
    """Overwrite or add files in an existing card. Files not given are kept."""
    state: CliState = ctx.obj
    spec = _build_spec(html, css, qr_script, vcard, public_key, full_name, image, media)
    try:
        handle = state.store().update(client_id, spec)
    except CardStoreError as e:
        _fail(e)
    _report(handle, state.settings, "Updated")


@app.command()
def delete(
    ctx: typer.Context,
    client_id: str = typer.Argument(..., help="Client ID to unpublish"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Don't ask for confirmation"),
):
    """Unpublish a card and remove all of its files."""
    state: CliState = ctx.obj
    if not yes:
        typer.confirm(f"Delete card '{client_id}' and all its files?", abort=True)
    try:
        state.store().delete(client_id)
    except CardStoreError as e:
        _fail(e)
    console.print(f"[green]✓[/green] Deleted {client_id}")


@app.command("list")
def list_cards(ctx: typer.Context):
    """List deployed cards."""
    state: CliState = ctx.obj
    names = state.store().list_bundles()
    if not names:
        console.print("[dim]No cards deployed[/dim]")
        return

    table = Table(title=f"Cards in {state.settings.root_dir}")
    table.add_column("Client ID", style="cyan")
    table.add_column("URL")
    for name in names:
        table.add_row(name, state.settings.url_for(name))
    console.print(table)


@app.command()
def serve(
    ctx: typer.Context,
    host: Optional[str] = typer.Option(None, "--host", help="Bind address (default from config)"),
    port: Optional[int] = typer.Option(None, "--port", "-p", help="Port (default from config)"),
):
    """Run the deployment API."""
    import uvicorn
    from .server import create_app

    state: CliState = ctx.obj
    settings = state.settings
    console.print(f"card-store API on {host or settings.host}:{port or settings.port}")
    console.print(f"  serving cards from: {settings.root_dir}")
    console.print(f"  base URL: {settings.base_url}")
    uvicorn.run(create_app(settings), host=host or settings.host, port=port or settings.port)


if __name__ == "__main__":
    app()
