from __future__ import annotations

import typer

from .. import console
from ..config import (
    ENV_CHANNEL,
    ENV_RELEASE_URL,
    load_settings,
    normalize_channel,
    normalize_release_url,
    resolve_channel,
    resolve_release_url,
    save_settings,
    settings_path,
)

app = typer.Typer(help="Manage installer settings (release server URL, channel).")


@app.command("show")
def show_settings():
    settings = load_settings()
    console.print(f"file={settings_path()}")
    console.print(f"release_url={settings.release_url} (effective {resolve_release_url(settings)})")
    try:
        effective_channel = resolve_channel(settings)
    except ValueError as exc:
        console.warn(f"{ENV_CHANNEL}: {exc}")
        effective_channel = settings.channel
    console.print(f"channel={settings.channel} (effective {effective_channel})")
    console.print(f"overrides: {ENV_RELEASE_URL}, {ENV_CHANNEL}")


@app.command("set")
def set_setting(
        release_url: str | None = typer.Option(None, "--release-url", help="Release server base URL."),
        channel: str | None = typer.Option(None, "--channel", help="Release channel (stable, beta)."),
):
    if release_url is None and channel is None:
        console.err("Nothing to set; pass --release-url and/or --channel.")
        raise typer.Exit(code=2)
    settings = load_settings()
    if release_url is not None:
        value = normalize_release_url(release_url)
        if not value:
            console.err("Release URL cannot be empty.")
            raise typer.Exit(code=2)
        settings.release_url = value
    if channel is not None:
        try:
            settings.channel = normalize_channel(channel)
        except ValueError as exc:
            console.err(str(exc))
            raise typer.Exit(code=2)
    try:
        saved = save_settings(settings)
    except OSError as exc:
        console.err(f"Cannot write {settings_path()}: {exc}")
        raise typer.Exit(code=1)
    console.ok(f"Settings updated: {saved}")
