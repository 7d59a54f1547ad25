"""Main CLI entry point for Dishcovery."""

import click
from rich.console import Console

from dishcovery import __version__
from dishcovery.config import get_settings
from dishcovery.utils import setup_logging

console = Console()


@click.group()
@click.version_option(version=__version__, prog_name="Dishcovery")
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose output")
@click.pass_context
def cli(ctx: click.Context, verbose: bool) -> None:
    """Dishcovery - AR placement for restaurant menus.

    Place 3D dish models on photographed markers, preview the placement
    and export self-contained AR menu sites.
    """
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    setup_logging("DEBUG" if verbose else get_settings().log_level)


# Import and register commands
from dishcovery.cli.placement_cmd import place, preview
from dishcovery.cli.bundle_cmd import export, serve

cli.add_command(place)
cli.add_command(preview)
cli.add_command(export)
cli.add_command(serve)


@cli.command()
def status() -> None:
    """Show configuration and installed tracking backends."""
    from dishcovery.ar.engine import discover_trackers

    settings = get_settings()
    trackers = discover_trackers()

    console.print("[bold]Dishcovery Status[/bold]")
    console.print(f"Version: {__version__}")
    console.print()
    console.print("[bold]Configuration:[/bold]")
    console.print(f"  Output Directory: {settings.output_dir}")
    console.print(f"  Data Directory: {settings.data_dir}")
    console.print(f"  Render FPS: {settings.render_fps}")
    console.print(f"  Bundle Server: {settings.web_host}:{settings.web_port}")
    console.print()
    console.print("[bold]Tracking:[/bold]")
    if trackers:
        for name in trackers:
            marker = " [green](selected)[/green]" if name == settings.tracker_backend else ""
            console.print(f"  {name}{marker}")
    else:
        console.print("  [yellow]No tracking backend installed[/yellow] (editor preview and export still work)")
    console.print(f"  Filter: min_cf={settings.tracker_filter_min_cf} beta={settings.tracker_filter_beta}")


if __name__ == "__main__":
    cli()
