"""Static menu site exporter.

Writes a self-contained bundle directory:

    index.html            menu page
    menu.json             manifest (site config, runtime hashes, items)
    assets/<id>/          target image, model file, targets.mind
    assets/site/          logo and hero images
    runtime/              verbatim copies of the placement/gesture modules

The bundle host (``dishcovery.ar.bundle``) reads it back and runs AR views
with the embedded runtime only.
"""

import asyncio
import html
import json
import shutil
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Union
from urllib.parse import urlparse
from uuid import uuid4

from dishcovery.ar import gestures as gestures_module
from dishcovery.ar import placement as placement_module
from dishcovery.ar.assets import MarkerArtifact
from dishcovery.ar.errors import ConfigurationError
from dishcovery.ar.placement import ModelConfig
from dishcovery.config import get_settings
from dishcovery.utils import ensure_dir, file_hash, get_logger, safe_filename

logger = get_logger("export.site_exporter")

MANIFEST_NAME = "menu.json"
MANIFEST_FORMAT = 1
MARKER_NAME = "targets.mind"
RUNTIME_DIR = "runtime"
RUNTIME_MODULES = {
    "placement.py": Path(placement_module.__file__),
    "gestures.py": Path(gestures_module.__file__),
}
RUNTIME_INIT = '"""Placement runtime embedded by the Dishcovery site exporter."""\n'

THEMES = {
    "midnight": {"bg": "#121212", "card": "#1e1e1e", "text": "#ffffff", "muted": "#9ca3af", "border": "rgba(255,255,255,0.1)"},
    "paper": {"bg": "#f8fafc", "card": "#ffffff", "text": "#0f172a", "muted": "#64748b", "border": "#e2e8f0"},
    "luxury": {"bg": "#0f0f0f", "card": "#1a1a1a", "text": "#e5e5e5", "muted": "#a1a1aa", "border": "#d4af37"},
}

FONTS = {
    "sans": ("'Inter', sans-serif", "https://fonts.googleapis.com/css2?family=Inter:wght@400;600;700&display=swap"),
    "serif": ("'Playfair Display', serif", "https://fonts.googleapis.com/css2?family=Playfair+Display:wght@400;700&display=swap"),
    "mono": ("'Space Mono', monospace", "https://fonts.googleapis.com/css2?family=Space+Mono:wght@400;700&display=swap"),
}


class ExportStatus(str, Enum):
    """Site export status."""
    PENDING = "pending"
    EXPORTING = "exporting"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class SiteConfig:
    """Look and contact details of the exported menu page."""
    title: str = "Dishcovery"
    color: str = "#d946ef"  # accent
    theme: str = "midnight"
    font: str = "sans"
    border_radius: str = "12px"
    phone: Optional[str] = None
    address: Optional[str] = None
    instagram: Optional[str] = None
    logo_path: Optional[str] = None
    hero_path: Optional[str] = None

    def __post_init__(self):
        if self.theme not in THEMES:
            logger.warning(f"Unknown theme '{self.theme}', using midnight")
            self.theme = "midnight"
        if self.font not in FONTS:
            logger.warning(f"Unknown font '{self.font}', using sans")
            self.font = "sans"

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "SiteConfig":
        data = data or {}
        known = {name for name in cls.__dataclass_fields__}
        return cls(**{k: v for k, v in data.items() if k in known and v is not None})

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return {
            "title": self.title,
            "color": self.color,
            "theme": self.theme,
            "font": self.font,
            "border_radius": self.border_radius,
            "phone": self.phone,
            "address": self.address,
            "instagram": self.instagram,
        }


def _pick(data: Dict[str, Any], *keys: str) -> Any:
    """First present key; the dashboard sends camelCase, files use snake_case."""
    for key in keys:
        if data.get(key) is not None:
            return data[key]
    return None


@dataclass
class MenuItem:
    """One dish as exported from the dashboard."""
    id: str
    name: str
    description: str = ""
    price: float = 0.0
    calories: Optional[int] = None
    tags: List[str] = field(default_factory=list)
    target_image: Optional[str] = None
    model: Optional[str] = None
    compiled_target: Optional[str] = None  # base64
    model_config: Optional[ModelConfig] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MenuItem":
        return cls(
            id=str(data["id"]),
            name=data.get("name") or str(data["id"]),
            description=data.get("description") or "",
            price=float(data.get("price") or 0.0),
            calories=data.get("calories"),
            tags=list(data.get("tags") or []),
            target_image=_pick(data, "target_image", "targetImageUrl"),
            model=_pick(data, "model", "modelUrl"),
            compiled_target=_pick(data, "compiled_target", "compiledTarget"),
            model_config=ModelConfig.from_dict(_pick(data, "model_config", "modelConfig")),
        )


@dataclass
class ExportResult:
    """Result of a site export."""
    export_id: str
    output_dir: str
    status: ExportStatus
    item_count: int = 0
    ar_ready_count: int = 0
    exported_at: Optional[str] = None
    error_message: Optional[str] = None
    warnings: List[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return {
            "export_id": self.export_id,
            "output_dir": self.output_dir,
            "status": self.status.value,
            "item_count": self.item_count,
            "ar_ready_count": self.ar_ready_count,
            "exported_at": self.exported_at,
            "error_message": self.error_message,
            "warnings": self.warnings,
        }


def load_menu(path: Union[str, Path]) -> tuple:
    """
    Read a dashboard menu file.

    The file is either a list of items or ``{"site": {...}, "items": [...]}``.

    Returns:
        ``(site_config, items)``

    Raises:
        OSError: if the file cannot be read
        ValueError: if it is not valid JSON or an item is malformed
    """
    data = json.loads(Path(path).read_text(encoding="utf-8"))
    if isinstance(data, list):
        site, raw_items = SiteConfig(), data
    elif isinstance(data, dict):
        site, raw_items = SiteConfig.from_dict(data.get("site")), data.get("items", [])
    else:
        raise ValueError("Menu file must hold a list of items or an object with 'items'")
    try:
        return site, [MenuItem.from_dict(item) for item in raw_items]
    except KeyError as e:
        raise ValueError(f"Menu item is missing {e}") from e
    except TypeError as e:
        raise ValueError(f"Malformed menu item: {e}") from e


class SiteExporter:
    """
    Exports menu items to a static AR menu bundle.
    """

    def __init__(self, site: Optional[SiteConfig] = None):
        """
        Initialize the exporter.

        Args:
            site: Page look and contact details
        """
        self.site = site or SiteConfig()

    async def export(
        self,
        items: List[MenuItem],
        output_dir: Optional[Union[str, Path]] = None,
        source_dir: Optional[Union[str, Path]] = None,
    ) -> ExportResult:
        """
        Export ``items`` into a bundle directory.

        Args:
            items: Menu items to export
            output_dir: Bundle directory (default: ``<output_dir>/site``)
            source_dir: Directory relative asset paths are resolved against

        Returns:
            Export result with status and counts
        """
        export_id = str(uuid4())[:8]
        out = Path(output_dir) if output_dir else Path(get_settings().output_dir) / "site"
        source = Path(source_dir) if source_dir else Path.cwd()

        if out.exists() and any(out.iterdir()) and not (out / MANIFEST_NAME).exists():
            return ExportResult(
                export_id=export_id,
                output_dir=str(out),
                status=ExportStatus.FAILED,
                error_message=f"Refusing to export into non-empty directory: {out}",
            )

        logger.info(f"Exporting {len(items)} item(s) to {out}")
        result = ExportResult(export_id=export_id, output_dir=str(out), status=ExportStatus.EXPORTING)
        try:
            await asyncio.to_thread(self._write_bundle, items, out, source, result)
        except (OSError, ValueError) as e:
            logger.error(f"Site export failed: {e}")
            result.status = ExportStatus.FAILED
            result.error_message = str(e)
            return result

        result.status = ExportStatus.COMPLETED
        result.exported_at = datetime.now().isoformat()
        logger.info(f"Exported {result.ar_ready_count}/{result.item_count} AR-ready item(s)")
        return result

    def _write_bundle(self, items: List[MenuItem], out: Path, source: Path, result: ExportResult) -> None:
        ensure_dir(out)
        runtime = self._write_runtime(out)

        entries = []
        for item in items:
            entry = self._export_item(item, out, source, result.warnings)
            entries.append(entry)
            if entry["ar_ready"]:
                result.ar_ready_count += 1
        result.item_count = len(entries)

        site_assets = {
            "logo": self._copy_site_asset(self.site.logo_path, out, "logo", source, result.warnings),
            "hero": self._copy_site_asset(self.site.hero_path, out, "hero", source, result.warnings),
        }

        manifest = {
            "format": MANIFEST_FORMAT,
            "export_id": result.export_id,
            "site": self.site.to_dict(),
            "site_assets": site_assets,
            "runtime": runtime,
            "items": entries,
        }
        (out / MANIFEST_NAME).write_text(json.dumps(manifest, indent=2), encoding="utf-8")
        (out / "index.html").write_text(self.render_html(entries, site_assets), encoding="utf-8")

    def _write_runtime(self, out: Path) -> Dict[str, str]:
        runtime_dir = ensure_dir(out / RUNTIME_DIR)
        (runtime_dir / "__init__.py").write_text(RUNTIME_INIT, encoding="utf-8")
        hashes = {}
        for name, module_path in RUNTIME_MODULES.items():
            shutil.copyfile(module_path, runtime_dir / name)
            hashes[name] = file_hash(runtime_dir / name)
        return hashes

    def _export_item(self, item: MenuItem, out: Path, source: Path, warnings: List[str]) -> dict:
        item_dir = out / "assets" / safe_filename(item.id)

        taken = {MARKER_NAME}
        target_image = self._copy_asset(item.target_image, item_dir, source, warnings, "image", taken)
        model = self._copy_asset(item.model, item_dir, source, warnings, "model", taken)

        marker = None
        if item.compiled_target:
            try:
                artifact = MarkerArtifact.from_base64(item.compiled_target)
            except ConfigurationError as e:
                warnings.append(f"{item.id}: {e}")
            else:
                ensure_dir(item_dir)
                (item_dir / MARKER_NAME).write_bytes(artifact.data)
                marker = (item_dir / MARKER_NAME).relative_to(out).as_posix()

        ar_ready = bool(model and marker)
        if not ar_ready:
            logger.debug(f"Item {item.id} has no AR data, AR button disabled")

        return {
            "id": item.id,
            "name": item.name,
            "description": item.description,
            "price": item.price,
            "calories": item.calories,
            "tags": item.tags,
            "target_image": self._relative(target_image, out),
            "model": self._relative(model, out),
            "marker": marker,
            "model_config": item.model_config.to_dict() if item.model_config else None,
            "ar_ready": ar_ready,
        }

    @staticmethod
    def _relative(value: Optional[Union[str, Path]], out: Path) -> Optional[str]:
        if isinstance(value, Path):
            return value.relative_to(out).as_posix()
        return value

    @staticmethod
    def _copy_asset(
        ref: Optional[str],
        item_dir: Path,
        source: Path,
        warnings: List[str],
        role: str = "asset",
        taken: Optional[set] = None,
    ) -> Optional[Union[str, Path]]:
        """
        Copy a local asset into the bundle; remote URLs are kept as they are.

        A file name already in ``taken`` gets ``role`` as a prefix so two
        assets of one item never overwrite each other.
        """
        if not ref:
            return None
        if urlparse(ref).scheme in ("http", "https"):
            return ref
        path = Path(ref)
        if not path.is_absolute():
            path = source / path
        if not path.exists():
            warnings.append(f"Asset not found: {ref}")
            logger.warning(f"Asset not found: {ref}")
            return None
        ensure_dir(item_dir)
        name = path.name
        if taken is not None:
            if name in taken:
                renamed = f"{role}-{name}"
                warnings.append(f"Asset name {name} is used twice, {ref} copied as {renamed}")
                logger.warning(f"Asset name {name} is used twice, copying {ref} as {renamed}")
                name = renamed
            taken.add(name)
        destination = item_dir / name
        shutil.copyfile(path, destination)
        return destination

    def _copy_site_asset(self, ref: Optional[str], out: Path, name: str, source: Path, warnings: List[str]) -> Optional[str]:
        copied = self._copy_asset(ref, out / "assets" / "site", source, warnings)
        if isinstance(copied, Path):
            renamed = copied.with_name(f"{name}{copied.suffix}")
            copied.replace(renamed)
            return renamed.relative_to(out).as_posix()
        return copied

    def render_html(self, entries: List[dict], site_assets: Optional[dict] = None) -> str:
        """Render the menu page."""
        site = self.site
        theme = THEMES[site.theme]
        font_family, font_url = FONTS[site.font]
        site_assets = site_assets or {}
        esc = html.escape

        cards = "".join(self._render_card(entry) for entry in entries)
        hero = site_assets.get("hero")
        logo = site_assets.get("logo")
        hero_html = f'<img class="cover" src="{esc(hero)}" alt="">' if hero else ""
        logo_html = f'<img src="{esc(logo)}" alt="" height="48">' if logo else ""

        contact = ""
        if site.instagram:
            handle = site.instagram.lstrip("@")
            contact += f'<a href="https://instagram.com/{esc(handle)}" target="_blank">Instagram</a>'
        if site.phone:
            contact += f"<span>{esc(site.phone)}</span>"
        address = f"<p>{esc(site.address)}</p>" if site.address else ""

        return f"""<!DOCTYPE html>
<html lang="en">
<head>
    <meta charset="UTF-8">
    <meta name="viewport" content="width=device-width, initial-scale=1.0, maximum-scale=1.0, user-scalable=no">
    <title>{esc(site.title)}</title>
    <link href="{font_url}" rel="stylesheet">
    <style>
        :root {{
            --bg-color: {theme["bg"]};
            --card-bg: {theme["card"]};
            --text-main: {theme["text"]};
            --text-muted: {theme["muted"]};
            --border-color: {theme["border"]};
            --accent-color: {esc(site.color)};
            --font-family: {font_family};
            --radius: {esc(site.border_radius)};
        }}
        body {{
            background-color: var(--bg-color);
            color: var(--text-main);
            font-family: var(--font-family);
            margin: 0;
        }}
        .hero {{ position: relative; height: 16rem; overflow: hidden; }}
        .hero img.cover {{ width: 100%; height: 100%; object-fit: cover; opacity: 0.6; }}
        .hero .title {{ position: absolute; bottom: 0; left: 0; padding: 1.5rem; }}
        .grid {{ display: grid; grid-template-columns: repeat(auto-fill, minmax(280px, 1fr)); gap: 1.5rem; padding: 1.5rem; max-width: 64rem; margin: 0 auto; }}
        .card {{ background-color: var(--card-bg); border: 1px solid var(--border-color); border-radius: var(--radius); overflow: hidden; }}
        .card img {{ width: 100%; height: 12rem; object-fit: cover; }}
        .card .body {{ padding: 1rem; }}
        .price {{ color: var(--accent-color); font-weight: bold; }}
        .muted {{ color: var(--text-muted); }}
        .btn {{ width: 100%; border: 0; padding: 0.75rem; border-radius: var(--radius); background-color: var(--accent-color); color: white; }}
        .btn:disabled {{ opacity: 0.4; }}
        footer {{ border-top: 1px solid var(--border-color); padding: 2rem; text-align: center; }}
        footer .contact {{ display: flex; justify-content: center; gap: 1rem; }}
    </style>
</head>
<body>
    <div class="hero">
        {hero_html}
        <div class="title">
            {logo_html}
            <h1>{esc(site.title)}</h1>
            <p class="muted">Augmented Reality Menu</p>
        </div>
    </div>
    <main class="grid">
        {cards}
    </main>
    <footer class="muted">
        <p><strong>{esc(site.title)}</strong></p>
        <div class="contact">{contact}</div>
        {address}
        <p>Open this bundle with <code>dishcovery serve</code> to use the AR view.</p>
    </footer>
</body>
</html>
"""

    @staticmethod
    def _render_card(entry: dict) -> str:
        esc = html.escape
        image = entry.get("target_image")
        image_html = f'<img src="{esc(image)}" alt="{esc(entry["name"])}">' if image else ""
        disabled = "" if entry["ar_ready"] else " disabled"
        label = "View in AR" if entry["ar_ready"] else "AR unavailable"
        return f"""
        <div class="card" data-item-id="{esc(entry["id"])}">
            {image_html}
            <div class="body">
                <h3>{esc(entry["name"])} <span class="price">${entry["price"]:.2f}</span></h3>
                <p class="muted">{esc(entry["description"])}</p>
                <button class="btn" data-item-id="{esc(entry["id"])}"{disabled}>{label}</button>
            </div>
        </div>"""
