"""Reader for exported site bundles.

Only relies on the bundle's own files: the manifest, the assets and the
runtime modules embedded next to them. Nothing here imports the export
tooling.
"""

import hashlib
import importlib
import importlib.util
import json
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from dishcovery.ar.assembly import SceneKit
from dishcovery.ar.assets import MarkerArtifact
from dishcovery.ar.errors import ConfigurationError
from dishcovery.ar.session import PlacementTarget
from dishcovery.utils import file_hash, get_logger

logger = get_logger("ar.bundle")

MANIFEST_NAME = "menu.json"
RUNTIME_DIR = "runtime"


class BundleError(Exception):
    """Raised when a directory is not a usable bundle."""


@dataclass
class BundleItem:
    """One menu item as recorded in the bundle manifest."""
    id: str
    name: str
    description: str = ""
    price: float = 0.0
    target_image: Optional[str] = None
    model: Optional[str] = None
    marker: Optional[str] = None
    model_config: Optional[Dict[str, Any]] = None
    ar_ready: bool = False
    tags: List[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "BundleItem":
        return cls(
            id=str(data["id"]),
            name=data.get("name", ""),
            description=data.get("description") or "",
            price=float(data.get("price") or 0.0),
            target_image=data.get("target_image"),
            model=data.get("model"),
            marker=data.get("marker"),
            model_config=data.get("model_config"),
            ar_ready=bool(data.get("ar_ready")),
            tags=list(data.get("tags") or []),
        )

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "price": self.price,
            "target_image": self.target_image,
            "model": self.model,
            "marker": self.marker,
            "model_config": self.model_config,
            "ar_ready": self.ar_ready,
            "tags": self.tags,
        }


class SiteBundle:
    """An exported bundle directory."""

    def __init__(self, root: Path, manifest: Dict[str, Any]):
        self.root = root
        self.manifest = manifest
        self.items = [BundleItem.from_dict(item) for item in manifest.get("items", [])]
        self._kit: Optional[SceneKit] = None

    @classmethod
    def open(cls, path: Union[str, Path]) -> "SiteBundle":
        """
        Open a bundle directory.

        Raises:
            BundleError: if the manifest is missing or unreadable
        """
        root = Path(path)
        manifest_path = root / MANIFEST_NAME
        if not manifest_path.exists():
            raise BundleError(f"No {MANIFEST_NAME} in {root}")
        try:
            manifest = json.loads(manifest_path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as e:
            raise BundleError(f"Invalid manifest {manifest_path}: {e}") from e
        logger.debug(f"Opened bundle {root} ({len(manifest.get('items', []))} items)")
        return cls(root, manifest)

    @property
    def title(self) -> str:
        return self.manifest.get("site", {}).get("title", "")

    @property
    def runtime_dir(self) -> Path:
        return self.root / RUNTIME_DIR

    def get_item(self, item_id: str) -> Optional[BundleItem]:
        return next((item for item in self.items if item.id == item_id), None)

    def resolve(self, relative: Optional[str]) -> Optional[str]:
        """Bundle-relative path to a local path; URLs pass through."""
        if not relative:
            return None
        if "://" in relative:
            return relative
        return str(self.root / relative)

    def verify_runtime(self) -> Dict[str, bool]:
        """Check the embedded runtime files against the manifest hashes."""
        results = {}
        for name, expected in self.manifest.get("runtime", {}).items():
            path = self.runtime_dir / name
            results[name] = path.exists() and file_hash(path) == expected
        return results

    def load_runtime(self) -> SceneKit:
        """
        Import the embedded placement/gesture modules.

        They are imported under a package name private to this bundle, so
        several bundles (and this package) can coexist in one process.

        Raises:
            BundleError: if the runtime is missing or fails verification
        """
        if self._kit is not None:
            return self._kit

        checks = self.verify_runtime()
        if not checks:
            raise BundleError(f"Bundle {self.root} has no embedded runtime")
        broken = [name for name, ok in checks.items() if not ok]
        if broken:
            raise BundleError(f"Runtime files failed verification: {', '.join(broken)}")

        digest = hashlib.sha256(str(self.root.resolve()).encode()).hexdigest()[:12]
        package_name = f"_dishcovery_bundle_{digest}"
        if package_name not in sys.modules:
            spec = importlib.util.spec_from_file_location(
                package_name,
                self.runtime_dir / "__init__.py",
                submodule_search_locations=[str(self.runtime_dir)],
            )
            package = importlib.util.module_from_spec(spec)
            sys.modules[package_name] = package
            spec.loader.exec_module(package)

        self._kit = SceneKit(
            placement=importlib.import_module(f"{package_name}.placement"),
            gestures=importlib.import_module(f"{package_name}.gestures"),
        )
        logger.info(f"Loaded embedded runtime from {self.runtime_dir}")
        return self._kit

    def target_for(self, item_id: str) -> PlacementTarget:
        """
        Build the placement target of one item.

        An unreadable marker file leaves the target without a marker, so
        the session ends in its missing-data error state.

        Raises:
            KeyError: if the item does not exist
        """
        item = self.get_item(item_id)
        if item is None:
            raise KeyError(item_id)
        marker = None
        if item.marker:
            try:
                marker = MarkerArtifact.from_file(self.root / item.marker)
            except ConfigurationError as e:
                logger.error(f"Item {item_id}: {e}")

        return PlacementTarget(
            name=item.name,
            marker=marker,
            asset_ref=self.resolve(item.model),
            config=item.model_config,
        )
