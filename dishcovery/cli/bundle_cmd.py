"""CLI commands for exporting and serving menu bundles."""

import asyncio
from pathlib import Path
from typing import Optional

import click
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

console = Console()


@click.command()
@click.argument("menu_path", type=click.Path(exists=True, dir_okay=False))
@click.argument("output_dir", type=click.Path(file_okay=False))
@click.option("--title", "-t", help="Site title")
@click.option("--theme", type=click.Choice(["midnight", "paper", "luxury"]), help="Colour theme")
@click.option("--font", type=click.Choice(["sans", "serif", "mono"]), help="Font family")
@click.option("--color", help="Accent colour (CSS)")
def export(
    menu_path: str,
    output_dir: str,
    title: Optional[str],
    theme: Optional[str],
    font: Optional[str],
    color: Optional[str],
) -> None:
    """Export a dashboard menu file to a static AR menu site.

    Relative asset paths in the menu file are resolved against its folder.

    Examples:
        dishcovery export menu.json site/
        dishcovery export menu.json site/ --theme paper --font serif
    """
    from dishcovery.export.site_exporter import ExportStatus, SiteExporter, load_menu

    try:
        site, items = load_menu(menu_path)
    except (OSError, ValueError) as e:
        console.print(f"[red]Could not read menu file: {e}[/red]")
        raise SystemExit(1)
    for field_name, value in (("title", title), ("theme", theme), ("font", font), ("color", color)):
        if value:
            setattr(site, field_name, value)

    console.print(f"[bold]Exporting {len(items)} item(s) to {output_dir}...[/bold]")
    result = asyncio.run(SiteExporter(site).export(items, output_dir, source_dir=Path(menu_path).parent))

    if result.status != ExportStatus.COMPLETED:
        console.print(f"[red]Export failed: {result.error_message}[/red]")
        raise SystemExit(1)

    table = Table(title="Export Summary")
    table.add_column("Property", style="cyan")
    table.add_column("Value")
    table.add_row("Output", result.output_dir)
    table.add_row("Items", str(result.item_count))
    table.add_row("AR ready", str(result.ar_ready_count))
    console.print(table)
    for warning in result.warnings:
        console.print(f"[yellow]Warning: {warning}[/yellow]")


@click.command()
@click.argument("bundle_dir", type=click.Path(exists=True, file_okay=False))
@click.option("--host", default=None, help="Host to bind to")
@click.option("--port", "-p", type=int, default=None, help="Server port")
@click.option("--no-browser", is_flag=True, help="Don't open browser")
def serve(bundle_dir: str, host: Optional[str], port: Optional[int], no_browser: bool) -> None:
    """Serve an exported bundle over HTTP.

    Camera access needs HTTP(S); pages opened from disk cannot start AR.

    Examples:
        dishcovery serve site/
        dishcovery serve site/ --port 9000 --no-browser
    """
    from dishcovery.ar.bundle import BundleError, SiteBundle
    from dishcovery.server import BundleServer

    try:
        bundle = SiteBundle.open(bundle_dir)
    except BundleError as e:
        console.print(f"[red]{e}[/red]")
        raise SystemExit(1)

    broken = [name for name, ok in bundle.verify_runtime().items() if not ok]
    if broken:
        console.print(f"[yellow]Runtime files modified since export: {', '.join(broken)}[/yellow]")

    async def run():
        server = BundleServer(bundle, host=host, port=port)
        await server.start()

        console.print()
        console.print(Panel(
            f"[bold green]Menu Ready[/bold green]\n\n"
            f"Title: {bundle.title}\n"
            f"Items: {len(bundle.items)}\n"
            f"URL: {server.base_url}",
            title="Bundle Server",
        ))

        if not no_browser:
            import webbrowser
            webbrowser.open(server.base_url)

        console.print()
        console.print("[dim]Press Ctrl+C to stop the server[/dim]")
        try:
            while True:
                await asyncio.sleep(1)
        finally:
            await server.stop()

    try:
        asyncio.run(run())
    except KeyboardInterrupt:
        console.print()
        console.print("[yellow]Server stopped[/yellow]")
