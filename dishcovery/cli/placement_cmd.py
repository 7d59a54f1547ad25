"""CLI commands for placing and previewing a model."""

import asyncio
import json
from pathlib import Path
from typing import Optional

import click
from rich.console import Console
from rich.table import Table

console = Console()


def _read_config(config_path: Optional[str], scale: Optional[float]):
    """ModelConfig from a JSON file and/or a --scale override."""
    from dishcovery.ar.placement import ModelConfig

    data = json.loads(Path(config_path).read_text()) if config_path else None
    if scale is not None:
        data = dict(data or {}, scale=scale)
    return ModelConfig.from_dict(data)


def _fmt(vec) -> str:
    return f"({vec.x:.4f}, {vec.y:.4f}, {vec.z:.4f})"


@click.command()
@click.argument("model_path", type=click.Path(exists=True))
@click.option("--config", "-c", "config_path", type=click.Path(exists=True), help="Model config JSON")
@click.option("--scale", "-s", type=float, default=None, help="Author scale multiplier")
def place(model_path: str, config_path: Optional[str], scale: Optional[float]) -> None:
    """Show how a model is placed on its marker.

    Examples:
        dishcovery place burger.glb
        dishcovery place burger.glb --scale 1.5
        dishcovery place burger.glb --config burger.json
    """
    from dishcovery.ar.assets import TrimeshAssetLoader
    from dishcovery.ar.errors import AssetLoadFailure
    from dishcovery.ar.placement import compose_placement, compute_base_transform

    try:
        config = _read_config(config_path, scale)
    except ValueError as e:
        console.print(f"[red]Invalid model config: {e}[/red]")
        raise SystemExit(1)

    try:
        asset = asyncio.run(TrimeshAssetLoader().load(model_path))
    except AssetLoadFailure as e:
        console.print(f"[red]{e}[/red]")
        raise SystemExit(1)

    base = compute_base_transform(asset.volume)
    placement = compose_placement(base, config)

    table = Table(title=f"Placement: {Path(model_path).name}")
    table.add_column("Property", style="cyan")
    table.add_column("Value")
    table.add_row("Meshes", str(asset.mesh_count))
    table.add_row("Size", _fmt(asset.volume.size))
    table.add_row("Center", _fmt(base.center))
    table.add_row("Base scale", f"{base.scale:.4f}")
    table.add_row("Config scale", f"{config.effective_scale:.4f}" if config else "-")
    table.add_row("Final scale", f"{placement.scale:.4f}")
    table.add_row("Position", _fmt(placement.position))
    table.add_row("Rotation", _fmt(placement.rotation))
    console.print(table)


@click.command()
@click.argument("model_path", type=click.Path(exists=True))
@click.option("--output", "-o", default="preview.png", help="Output PNG path")
@click.option("--marker", "-m", type=click.Path(exists=True), help="Marker image shown under the model")
@click.option("--config", "-c", "config_path", type=click.Path(exists=True), help="Model config JSON")
@click.option("--width", "-w", default=0, help="Image width (0 = configured fallback)")
@click.option("--height", "-h", default=0, help="Image height (0 = configured fallback)")
@click.option("--no-grid", is_flag=True, help="Hide the grid and axes")
@click.option("--no-shadows", is_flag=True, help="Disable shadows")
def preview(
    model_path: str,
    output: str,
    marker: Optional[str],
    config_path: Optional[str],
    width: int,
    height: int,
    no_grid: bool,
    no_shadows: bool,
) -> None:
    """Render an editor preview thumbnail of a placed model.

    Examples:
        dishcovery preview burger.glb -o thumb.png
        dishcovery preview burger.glb --marker menu-photo.jpg --no-grid
    """
    from dishcovery.ar.engine import Engine, RenderSurface
    from dishcovery.ar.hosts import EditorPreviewHost
    from dishcovery.utils import decode_data_url

    try:
        config = _read_config(config_path, None)
    except ValueError as e:
        console.print(f"[red]Invalid model config: {e}[/red]")
        raise SystemExit(1)

    async def run() -> Optional[str]:
        captured = {}

        def on_model_load(capture) -> None:
            captured["image"] = capture()

        host = EditorPreviewHost(
            Engine(),
            RenderSurface(width, height),
            model_path,
            config=config,
            marker_image=marker,
            show_grid=not no_grid,
            show_shadows=not no_shadows,
            on_model_load=on_model_load,
        )
        await host.start()
        try:
            await host.load_task
        finally:
            await host.close()
        if host.asset_error:
            console.print(f"[red]{host.asset_error}[/red]")
        return captured.get("image")

    console.print(f"[bold]Rendering preview of {model_path}...[/bold]")
    data_url = asyncio.run(run())
    if not data_url:
        raise SystemExit(1)

    out = Path(output)
    out.parent.mkdir(parents=True, exist_ok=True)
    out.write_bytes(decode_data_url(data_url))
    console.print(f"[green]Preview saved to: {out}[/green]")
