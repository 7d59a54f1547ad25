"""Software renderer and render loop.

The default engine draws with numpy and Pillow: flat-shaded triangles
sorted back to front (painter's algorithm) plus helper lines. There are no
shadow maps; shadow-only meshes are skipped and textured meshes are drawn
with their texture's mean colour. It is meant for thumbnails and headless
previews; tracking backends normally bring their own GPU renderer.
"""

import asyncio
import io
from typing import Callable, List, Optional, Tuple

import numpy as np
from PIL import Image, ImageDraw, ImageStat

from dishcovery.ar.scene import (
    AxesHelper,
    DirectionalLight,
    GridHelper,
    HemisphereLight,
    Mesh,
    PerspectiveCamera,
    Scene,
)
from dishcovery.utils import encode_data_url, get_logger

logger = get_logger("ar.renderer")

FrameCallback = Callable[[], None]


class RenderLoop:
    """Calls a frame callback at a fixed rate from an asyncio task."""

    def __init__(self, fps: int = 60):
        self.fps = fps
        self.frames = 0
        self.errors = 0
        self._callback: Optional[FrameCallback] = None
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self, callback: FrameCallback) -> None:
        """Start (or retarget) the loop. Must be called from a running event loop."""
        self._callback = callback
        if not self.running:
            self._task = asyncio.get_running_loop().create_task(self._run())

    def cancel(self) -> None:
        self._callback = None
        if self._task is not None:
            self._task.cancel()
            self._task = None

    async def _run(self) -> None:
        loop = asyncio.get_running_loop()
        frame_interval = 1.0 / self.fps

        while self._callback is not None:
            started = loop.time()
            try:
                self._callback()
                self.frames += 1
            except Exception as e:
                logger.error(f"Frame callback error: {e}")
                self.errors += 1
            elapsed = loop.time() - started
            await asyncio.sleep(max(0.0, frame_interval - elapsed))


class SoftwareRenderer:
    """CPU renderer producing Pillow images."""

    def __init__(self, width: int = 300, height: int = 300, pixel_ratio: float = 1.0, fps: int = 60):
        self.width = width
        self.height = height
        self.pixel_ratio = pixel_ratio
        self.shadow_map_enabled = False
        self.last_frame: Optional[Image.Image] = None
        self.disposed = False
        self._loop = RenderLoop(fps)

    @property
    def animating(self) -> bool:
        return self._loop.running

    @property
    def frame_count(self) -> int:
        return self._loop.frames

    def set_size(self, width: int, height: int) -> None:
        self.width = width
        self.height = height

    def set_pixel_ratio(self, ratio: float) -> None:
        self.pixel_ratio = ratio

    def set_animation_loop(self, callback: Optional[FrameCallback]) -> None:
        """Run ``callback`` once per frame; ``None`` stops the loop."""
        if callback is None:
            self._loop.cancel()
        else:
            self._loop.start(callback)

    def dispose(self) -> None:
        self._loop.cancel()
        self.last_frame = None
        self.disposed = True

    def render(self, scene: Scene, camera: PerspectiveCamera) -> Image.Image:
        """Draw ``scene`` as seen from ``camera``."""
        size = (max(1, int(self.width * self.pixel_ratio)), max(1, int(self.height * self.pixel_ratio)))
        background = (*scene.background, 255) if scene.background else (0, 0, 0, 0)
        image = Image.new("RGBA", size, background)
        draw = ImageDraw.Draw(image, "RGBA")

        view_projection = camera.projection_matrix() @ camera.view_matrix()
        eye = camera.world_matrix()[:3, 3]
        hemispheres, directionals = [], []
        lines, meshes = [], []
        for node in scene.traverse_visible():
            if isinstance(node, HemisphereLight):
                hemispheres.append(node)
            elif isinstance(node, DirectionalLight):
                directionals.append(node)
            elif isinstance(node, (GridHelper, AxesHelper)):
                lines.append(node)
            elif isinstance(node, Mesh) and not node.shadow_only:
                meshes.append(node)

        for helper in lines:
            self._draw_lines(draw, helper, view_projection, size)

        triangles = []
        for mesh in meshes:
            triangles.extend(self._shade_mesh(mesh, view_projection, eye, size, hemispheres, directionals))
        # Farthest first
        triangles.sort(key=lambda t: t[0], reverse=True)
        for _, polygon, fill in triangles:
            draw.polygon(polygon, fill=fill)

        self.last_frame = image
        return image

    def to_bytes(self, format: str = "PNG") -> bytes:
        """Encode the last rendered frame."""
        if self.last_frame is None:
            raise RuntimeError("Nothing has been rendered yet")
        buffer = io.BytesIO()
        self.last_frame.save(buffer, format=format)
        return buffer.getvalue()

    def to_data_url(self, format: str = "PNG") -> str:
        return encode_data_url(self.to_bytes(format), f"image/{format.lower()}")

    @staticmethod
    def _project(points: np.ndarray, view_projection: np.ndarray, size: Tuple[int, int]):
        homogeneous = np.hstack([points, np.ones((len(points), 1))]) @ view_projection.T
        w = homogeneous[:, 3]
        safe_w = np.where(np.abs(w) < 1e-9, 1e-9, w)
        ndc = homogeneous[:, :3] / safe_w[:, None]
        pixels = np.empty((len(points), 2))
        pixels[:, 0] = (ndc[:, 0] + 1) / 2 * size[0]
        pixels[:, 1] = (1 - ndc[:, 1]) / 2 * size[1]
        return pixels, ndc[:, 2], w > 1e-6

    def _draw_lines(self, draw: ImageDraw.ImageDraw, helper, view_projection, size) -> None:
        matrix = helper.world_matrix()
        alpha = int(255 * getattr(helper, "opacity", 1.0))
        for start, end, color in helper.segments():
            points = np.array([start, end]) @ matrix[:3, :3].T + matrix[:3, 3]
            pixels, _, in_front = self._project(points, view_projection, size)
            if in_front.all():
                draw.line([tuple(pixels[0]), tuple(pixels[1])], fill=(*color, alpha))

    def _shade_mesh(self, mesh: Mesh, view_projection, eye, size, hemispheres, directionals) -> List:
        if not len(mesh.faces):
            return []
        matrix = mesh.world_matrix()
        world = mesh.vertices @ matrix[:3, :3].T + matrix[:3, 3]
        pixels, depth, in_front = self._project(world, view_projection, size)

        tri = world[mesh.faces]
        normals = np.cross(tri[:, 1] - tri[:, 0], tri[:, 2] - tri[:, 0])
        lengths = np.linalg.norm(normals, axis=1)
        normals = normals / np.where(lengths == 0, 1, lengths)[:, None]
        # Double sided: light the side facing the camera
        to_eye = eye - tri.mean(axis=1)
        away = np.einsum("ij,ij->i", normals, to_eye) < 0
        normals[away] *= -1

        light = np.zeros((len(normals), 3))
        for hemi in hemispheres:
            blend = (normals[:, 1:2] + 1) / 2
            sky, ground = np.array(hemi.color) / 255, np.array(hemi.ground_color) / 255
            light += hemi.intensity * (ground + (sky - ground) * blend)
        for sun in directionals:
            lambert = np.clip(normals @ -sun.direction, 0, None)[:, None]
            light += sun.intensity * lambert * (np.array(sun.color) / 255)
        if not hemispheres and not directionals:
            light += 1.0

        base = np.array(self._base_color(mesh), dtype=float)
        colors = np.clip(base * light, 0, 255).astype(int)
        alpha = int(255 * mesh.opacity)

        triangles = []
        for index, face in enumerate(mesh.faces):
            if not in_front[face].all():
                continue
            polygon = [tuple(pixels[v]) for v in face]
            triangles.append((float(depth[face].mean()), polygon, (*(int(c) for c in colors[index]), alpha)))
        return triangles

    @staticmethod
    def _base_color(mesh: Mesh):
        if mesh.texture is not None:
            return ImageStat.Stat(mesh.texture.convert("RGB")).mean
        return mesh.color
