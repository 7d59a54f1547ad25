"""Render hosts: editor preview and exported bundle.

The live tracking host is ``ARSession`` itself. The editor preview runs
the same assembly on a static anchor laid flat on the ground, and the
bundle host runs sessions with the runtime embedded in an exported bundle.
"""

import asyncio
import math
from pathlib import Path
from typing import Any, Callable, Optional, Union

from dishcovery.ar.assembly import (
    DEFAULT_KIT,
    EDITOR_LIGHTING,
    SceneAssembler,
    SceneKit,
    SessionResources,
)
from dishcovery.ar.assets import LoadedAsset, load_image
from dishcovery.ar.bundle import BundleItem, SiteBundle
from dishcovery.ar.engine import Engine, RenderSurface
from dishcovery.ar.errors import AssetLoadFailure
from dishcovery.ar.scene import (
    Anchor,
    AxesHelper,
    GridHelper,
    PerspectiveCamera,
    Scene,
    plane_mesh,
)
from dishcovery.ar.session import ARSession
from dishcovery.config import get_settings
from dishcovery.utils import get_logger

logger = get_logger("ar.hosts")

EDITOR_BACKGROUND = 0xF0F0F0
AUTO_ROTATE_SPEED = 2.0

CaptureFn = Callable[[], str]


class OrbitControls:
    """Keeps a camera orbiting its target; only auto-rotate is driven here."""

    def __init__(self, camera: PerspectiveCamera, auto_rotate: bool = False, speed: float = AUTO_ROTATE_SPEED):
        self.camera = camera
        self.auto_rotate = auto_rotate
        self.auto_rotate_speed = speed

    @property
    def step(self) -> float:
        """Radians per frame (one turn per 30 s at 60 fps and speed 2)."""
        return 2 * math.pi / 60 / 60 * self.auto_rotate_speed

    def update(self) -> None:
        if not self.auto_rotate:
            return
        angle = self.step
        offset = self.camera.position - self.camera.target
        cos, sin = math.cos(angle), math.sin(angle)
        x, z = offset[0], offset[2]
        offset[0] = x * cos + z * sin
        offset[2] = -x * sin + z * cos
        self.camera.position = self.camera.target + offset


class EditorPreviewHost:
    """
    Non-tracking preview used while authoring a placement.

    The marker image lies on the ground and the asset stands on it exactly
    as it would on the tracked marker.
    """

    def __init__(
        self,
        engine: Engine,
        surface: RenderSurface,
        asset_ref: str,
        config: Any = None,
        marker_image: Optional[Union[str, Path]] = None,
        show_shadows: bool = True,
        show_grid: bool = True,
        auto_rotate: bool = False,
        on_model_load: Optional[Callable[[CaptureFn], None]] = None,
        kit: SceneKit = DEFAULT_KIT,
    ):
        self.engine = engine
        self.surface = surface
        self.asset_ref = asset_ref
        self.config = config
        self.marker_image = marker_image
        self.on_model_load = on_model_load

        self.assembler = SceneAssembler(kit)
        self.resources: Optional[SessionResources] = None
        self.controls: Optional[OrbitControls] = None
        self.grid: Optional[GridHelper] = None
        self.axes: Optional[AxesHelper] = None
        self.marker_plane = None
        self.asset: Optional[LoadedAsset] = None
        self.asset_error: Optional[AssetLoadFailure] = None

        self._show_shadows = show_shadows
        self._show_grid = show_grid
        self._auto_rotate = auto_rotate
        self._generation = 0
        self._closed = False
        self._load_task: Optional[asyncio.Task] = None

    @property
    def load_task(self) -> Optional[asyncio.Task]:
        return self._load_task

    def _size(self):
        settings = get_settings()
        return (self.surface.width or settings.preview_width, self.surface.height or settings.preview_height)

    async def start(self) -> None:
        """Build the preview scene, start the asset load and the render loop."""
        width, height = self._size()
        renderer = self.engine.create_renderer(width, height, fps=get_settings().render_fps)
        scene = Scene(background=EDITOR_BACKGROUND)
        camera = PerspectiveCamera(fov=45, aspect=width / height, near=0.1, far=100, position=(0, 1.5, 1.5))
        camera.look_at(0, 0, 0)

        # Static anchor: marker frame laid flat on the ground
        anchor = Anchor(0)
        anchor.group.rotation[0] = -math.pi / 2
        scene.add(anchor.group)
        anchor.set_tracked(True)

        self.resources = SessionResources(renderer=renderer, camera=camera, scene=scene, anchor=anchor)
        self.assembler.prepare(self.resources, EDITOR_LIGHTING)

        self.grid = GridHelper(2, 20, center_color=0x000000, grid_color=0xCCCCCC, opacity=0.1)
        self.axes = AxesHelper(0.5)
        scene.add(self.grid, self.axes)

        if self.marker_image:
            await self._add_marker_plane(scene)

        self.controls = OrbitControls(camera, auto_rotate=self._auto_rotate)
        self.set_show_shadows(self._show_shadows)
        self.set_show_grid(self._show_grid)

        self.surface.attach(renderer)
        generation = self._generation
        self._load_task = asyncio.get_running_loop().create_task(self._load_model(generation))
        renderer.set_animation_loop(self._render_frame)
        logger.debug(f"Editor preview started ({width}x{height})")

    async def _add_marker_plane(self, scene: Scene) -> None:
        try:
            image = await load_image(self.marker_image)
        except OSError as e:
            logger.warning(f"Could not load marker image {self.marker_image}: {e}")
            return
        aspect = image.width / image.height
        self.marker_plane = plane_mesh(aspect, 1, name="marker-image", texture=image)
        self.marker_plane.rotation[0] = -math.pi / 2
        scene.add(self.marker_plane)

    async def _load_model(self, generation: int) -> None:
        try:
            asset = await self.engine.asset_loader.load(self.asset_ref)
        except Exception as e:
            if generation == self._generation:
                failure = e if isinstance(e, AssetLoadFailure) else AssetLoadFailure(str(e))
                logger.error(f"Preview asset failed to load: {failure}")
                self.asset_error = failure
            return
        if generation != self._generation:
            return
        self.asset = asset
        try:
            self.assembler.place(asset, self.config)
        except Exception as e:
            failure = AssetLoadFailure(f"Could not place asset: {e}")
            logger.error(f"Preview asset placement failed: {failure}")
            self.asset_error = failure
            return

        await asyncio.sleep(get_settings().capture_settle_delay)
        if generation != self._generation:
            return
        if self.on_model_load is not None:
            self.on_model_load(self.capture_frame)

    def _render_frame(self) -> None:
        self.controls.update()
        self.assembler.apply_interaction(None)
        self.resources.renderer.render(self.resources.scene, self.resources.camera)

    def capture_frame(self) -> str:
        """Render the current view and return it as a PNG data URL."""
        renderer = self.resources.renderer
        renderer.render(self.resources.scene, self.resources.camera)
        return renderer.to_data_url()

    def set_show_shadows(self, show: bool) -> None:
        self._show_shadows = show
        if self.resources is None:
            return
        if hasattr(self.resources.renderer, "shadow_map_enabled"):
            self.resources.renderer.shadow_map_enabled = show
        self.assembler.sun.cast_shadow = show
        self.assembler.shadow_plane.visible = show

    def set_show_grid(self, show: bool) -> None:
        self._show_grid = show
        if self.grid is not None:
            self.grid.visible = show
            self.axes.visible = show

    def set_auto_rotate(self, enabled: bool) -> None:
        self._auto_rotate = enabled
        if self.controls is not None:
            self.controls.auto_rotate = enabled

    def update_config(self, config: Any) -> None:
        """Apply a new author override to the loaded model."""
        self.config = config
        self.assembler.update_config(config)

    def resize(self, width: int, height: int) -> None:
        """Follow the container size; zero sizes are ignored."""
        if not width or not height or self.resources is None:
            return
        self.surface.width, self.surface.height = width, height
        self.resources.renderer.set_size(width, height)
        self.resources.camera.aspect = width / height

    async def close(self) -> None:
        """Stop the preview and release its resources. Idempotent."""
        if self._closed:
            return
        self._closed = True
        self._generation += 1
        if self._load_task is not None and not self._load_task.done():
            self._load_task.cancel()
        if self.resources is not None:
            renderer = self.resources.renderer
            renderer.set_animation_loop(None)
            renderer.dispose()
        self.surface.clear()


class BundleHost:
    """Runs AR sessions from an exported bundle using its embedded runtime."""

    def __init__(self, engine: Engine, bundle: Union[SiteBundle, str, Path]):
        self.engine = engine
        self.bundle = bundle if isinstance(bundle, SiteBundle) else SiteBundle.open(bundle)
        self.kit = self.bundle.load_runtime()
        self.session: Optional[ARSession] = None

    @property
    def items(self):
        return self.bundle.items

    def ar_items(self):
        return [item for item in self.bundle.items if item.ar_ready]

    async def open_item(self, item_id: str, surface: RenderSurface) -> ARSession:
        """
        Start an AR view for one menu item, closing the current one first.

        Returns:
            The session (``READY`` or ``ERROR``)
        """
        await self.close_item()
        target = self.bundle.target_for(item_id)
        self.session = ARSession(self.engine, surface, target, kit=self.kit)
        await self.session.start()
        return self.session

    async def close_item(self) -> None:
        if self.session is not None:
            await self.session.close()
            self.session = None


def describe_item(item: BundleItem) -> dict:
    """Summary row used by the bundle server and CLI."""
    return {
        "id": item.id,
        "name": item.name,
        "price": item.price,
        "ar_ready": item.ar_ready,
    }
