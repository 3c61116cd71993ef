"""xbridge CLI — run and inspect the xRegistry bridge."""

import asyncio
import json
import logging
import sys

import click
from rich.console import Console
from rich.table import Table

from xbridge import __version__

console = Console()


def _configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@click.group()
@click.version_option(version=__version__)
@click.option("--log-level", default=None, help="Overrides LOG_LEVEL")
@click.pass_context
def main(ctx: click.Context, log_level: str | None):
    """xbridge — unified xRegistry facade over package registries.

    Backends are configured through BRIDGE_CONFIG_FILE, DOWNSTREAMS_JSON or
    BRIDGE_BACKEND_<NAME>_URL environment variables.
    """
    from xbridge.config import BridgeSettings

    settings = BridgeSettings.from_env()
    ctx.obj = settings
    _configure_logging(log_level or settings.log_level)


# ── Serve ────────────────────────────────────────────────────────────


@main.command()
@click.option("--host", default=None, help="Bind address (default: HOST or 0.0.0.0)")
@click.option("--port", default=None, type=int, help="Port (default: PORT or 8080)")
@click.option("--reload", is_flag=True, help="Auto-reload on code changes")
@click.pass_obj
def serve(settings, host: str | None, port: int | None, reload: bool):
    """Run the HTTP facade."""
    import uvicorn

    host = host or settings.host
    port = port or settings.port
    console.print(f"\n[bold blue]xbridge[/] — serving on http://{host}:{port}\n")
    uvicorn.run(
        "web.backend.app.main:app",
        host=host,
        port=port,
        reload=reload,
        log_level=settings.log_level.lower(),
    )


# ── Backends ─────────────────────────────────────────────────────────


@main.command()
@click.pass_obj
def backends(settings):
    """List configured backends without contacting them."""
    from xbridge.config import ConfigError, load_descriptors
    from xbridge.errors import ModelConflict

    try:
        descriptors = load_descriptors(settings)
    except (ConfigError, ModelConflict) as e:
        console.print(f"[red]Configuration error:[/] {e}")
        sys.exit(1)

    if not len(descriptors):
        console.print("[yellow]No backends configured.[/]")
        return

    table = Table(title=f"Backends ({len(descriptors)})")
    table.add_column("Group type", style="cyan")
    table.add_column("URL")
    table.add_column("Enabled", justify="center")
    table.add_column("Auth", justify="center")
    table.add_column("Path prefix", style="dim")

    for d in descriptors.all():
        table.add_row(
            d.group_type,
            d.base_url,
            "[green]yes[/]" if d.enabled else "[dim]no[/]",
            "key" if d.api_key else "-",
            d.path_prefix if d.path_prefix is not None else "-",
        )

    console.print(table)


# ── Check ────────────────────────────────────────────────────────────


@main.command()
@click.pass_obj
def check(settings):
    """Probe every enabled backend and show the consolidated view.

    Exits non-zero when no backend is reachable.
    """
    from xbridge.bridge import Bridge
    from xbridge.config import load_descriptors

    bridge = Bridge(settings, load_descriptors(settings))

    async def run():
        try:
            return await bridge.startup(background=False), bridge.status()
        finally:
            await bridge.shutdown()

    snapshot, status = asyncio.run(run())

    table = Table(title="Backend status")
    table.add_column("Group type", style="cyan")
    table.add_column("URL")
    table.add_column("State", justify="center")
    table.add_column("Groups")
    table.add_column("Error", style="red")

    for b in status["backends"]:
        if not b["enabled"]:
            state = "[dim]disabled[/]"
        elif b["active"]:
            state = "[green]active[/]"
        else:
            state = "[red]down[/]"
        table.add_row(b["group_type"], b["url"], state, ", ".join(b["groups"]), b["error"][:60])

    console.print(table)
    for c in status["conflicts"]:
        console.print(
            f"  [yellow]conflict:[/] {c['group_type']} kept by {c['kept_source']}, "
            f"rejected from {c['rejected_source']}"
        )
    console.print(f"\nConsolidated groups: {', '.join(snapshot.group_types) or '(none)'}")

    if not snapshot.healthy:
        console.print("[red]No backend is active.[/]")
        sys.exit(1)


# ── Filter ───────────────────────────────────────────────────────────


@main.command(name="filter")
@click.argument("path")
@click.option("--filter", "-f", "filters", multiple=True, required=True, help="Filter clause (repeatable, ORed)")
@click.option("--limit", default=None, type=int, help="Maximum results returned")
@click.option("--fetch-limit", default=None, type=int, help="Maximum candidates enriched")
@click.option("--json", "as_json", is_flag=True, help="Print the raw collection as JSON")
@click.pass_obj
def filter_command(settings, path: str, filters: tuple[str, ...], limit, fetch_limit, as_json: bool):
    """Run a two-step filtered query against a collection PATH.

    Example: xbridge filter /noderegistries/npmjs.org/packages -f 'name=*react*,license=MIT'
    """
    from xbridge.bridge import Bridge
    from xbridge.config import load_descriptors
    from xbridge.errors import BridgeError

    bridge = Bridge(settings, load_descriptors(settings))
    params = [("filter", f) for f in filters]
    if limit is not None:
        params.append(("limit", str(limit)))
    if fetch_limit is not None:
        params.append(("fetchlimit", str(fetch_limit)))

    async def run():
        try:
            await bridge.startup(background=False)
            return await bridge.handle(path, params, {}, bridge.facade_base())
        finally:
            await bridge.shutdown()

    try:
        response = asyncio.run(run())
    except BridgeError as e:
        console.print(f"[red]{e.code}:[/] {e.message}")
        sys.exit(1)

    if as_json:
        click.echo(json.dumps(response.body, indent=2))
        return

    body = response.body if isinstance(response.body, dict) else {}
    table = Table(title=f"Matches ({len(body)})")
    table.add_column("ID", style="cyan")
    table.add_column("Name")
    table.add_column("Description")
    for resource_id, item in body.items():
        item = item if isinstance(item, dict) else {}
        table.add_row(resource_id, str(item.get("name", "")), str(item.get("description", ""))[:60])
    console.print(table)

    for header, value in response.headers.items():
        if header.startswith("X-Filter-"):
            console.print(f"  [dim]{header}:[/] {value}")


if __name__ == "__main__":
    main()
