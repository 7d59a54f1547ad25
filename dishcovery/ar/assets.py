"""Asset and marker artifact loading.

Assets are parsed with trimesh in a worker thread and converted into scene
graph meshes. Marker artifacts are opaque blobs produced by an external
compiler; the runtime only turns them into a file handle the tracking
backend can open.
"""

import asyncio
import base64
import binascii
import io
import os
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Protocol, Union, runtime_checkable
from urllib.parse import urlparse

import aiohttp
import trimesh
from PIL import Image

from dishcovery.ar.errors import AssetLoadFailure, ConfigurationError
from dishcovery.ar.placement import BoundingVolume
from dishcovery.ar.scene import Group, Mesh, compute_bounds
from dishcovery.utils import get_logger

logger = get_logger("ar.assets")

SUPPORTED_FORMATS = [".glb", ".gltf", ".obj", ".stl", ".ply", ".off"]
DEFAULT_COLOR = (200, 200, 200)


@dataclass
class MarkerResource:
    """A marker artifact materialised on disk for the tracking backend."""
    path: Path

    @property
    def uri(self) -> str:
        return self.path.as_uri()

    def release(self) -> None:
        """Delete the backing file. Safe to call more than once."""
        self.path.unlink(missing_ok=True)


@dataclass(frozen=True)
class MarkerArtifact:
    """Compiled marker fingerprint, kept as raw bytes."""
    data: bytes

    @classmethod
    def from_base64(cls, text: str) -> "MarkerArtifact":
        try:
            data = base64.b64decode(text, validate=True)
        except (binascii.Error, ValueError) as e:
            raise ConfigurationError(f"Marker artifact is not valid base64: {e}") from e
        if not data:
            raise ConfigurationError("Marker artifact is empty")
        return cls(data)

    @classmethod
    def from_file(cls, path: Union[str, Path]) -> "MarkerArtifact":
        path = Path(path)
        if not path.exists():
            raise ConfigurationError(f"Marker artifact not found: {path}")
        return cls(path.read_bytes())

    def open_resource(self, directory: Union[str, Path, None] = None) -> MarkerResource:
        """Write the artifact to a temporary ``.mind`` file."""
        if directory is not None:
            Path(directory).mkdir(parents=True, exist_ok=True)
        fd, name = tempfile.mkstemp(suffix=".mind", dir=directory)
        with os.fdopen(fd, "wb") as f:
            f.write(self.data)
        return MarkerResource(Path(name))


@dataclass
class LoadedAsset:
    """A parsed asset ready to be placed."""
    source: str
    root: Group
    volume: BoundingVolume

    @property
    def mesh_count(self) -> int:
        return sum(1 for node in self.root.traverse() if isinstance(node, Mesh))


@runtime_checkable
class AssetLoader(Protocol):
    """Loads an asset reference into scene graph nodes."""

    async def load(self, ref: str) -> LoadedAsset:
        ...


def _main_color(visual) -> tuple:
    """Best flat colour for a trimesh visual."""
    color = getattr(visual, "main_color", None)
    if color is None:
        material = getattr(visual, "material", None)
        color = getattr(material, "main_color", None)
    if color is None:
        return DEFAULT_COLOR
    return tuple(int(c) for c in color[:3])


def scene_to_group(scene: trimesh.Scene, name: str = "model") -> Group:
    """Flatten a trimesh scene into a group of world-space meshes."""
    root = Group(name=name)
    for node_name in scene.graph.nodes_geometry:
        transform, geometry_name = scene.graph[node_name]
        geometry = scene.geometry[geometry_name]
        if not isinstance(geometry, trimesh.Trimesh):
            continue
        mesh = geometry.copy()
        mesh.apply_transform(transform)
        node = Mesh(mesh.vertices, mesh.faces, name=node_name, color=_main_color(mesh.visual))
        node.cast_shadow = True
        node.receive_shadow = True
        root.add(node)
    return root


class TrimeshAssetLoader:
    """Loads local or remote assets with trimesh."""

    def __init__(self, timeout: Optional[float] = None):
        # No timeout by default: a stalled load simply never completes
        self.timeout = timeout

    async def load(self, ref: str) -> LoadedAsset:
        """
        Load an asset.

        Args:
            ref: Local path or http(s) URL

        Returns:
            Loaded asset with its bounding volume

        Raises:
            AssetLoadFailure: if the asset cannot be fetched or parsed
        """
        suffix = Path(urlparse(ref).path).suffix.lower()
        if suffix not in SUPPORTED_FORMATS:
            raise AssetLoadFailure(f"Unsupported format: {suffix or ref}")

        if urlparse(ref).scheme in ("http", "https"):
            data = await self._fetch(ref)
            source = io.BytesIO(data)
        else:
            path = Path(ref)
            if not path.exists():
                raise AssetLoadFailure(f"Asset not found: {ref}")
            source = str(path)

        logger.info(f"Loading asset {ref}")
        try:
            scene = await asyncio.to_thread(trimesh.load, source, file_type=suffix.lstrip("."), force="scene")
        except Exception as e:
            raise AssetLoadFailure(f"Failed to parse {ref}: {e}") from e

        root = scene_to_group(scene)
        return LoadedAsset(source=ref, root=root, volume=compute_bounds(root))

    async def _fetch(self, url: str) -> bytes:
        timeout = aiohttp.ClientTimeout(total=self.timeout)
        try:
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.get(url) as response:
                    response.raise_for_status()
                    return await response.read()
        except aiohttp.ClientError as e:
            raise AssetLoadFailure(f"Failed to fetch {url}: {e}") from e


async def load_image(path: Union[str, Path]) -> Image.Image:
    """Open an image (e.g. the marker photo) off the event loop."""
    def _open() -> Image.Image:
        with Image.open(path) as image:
            return image.convert("RGB")

    return await asyncio.to_thread(_open)
