"""Marker-tracking AR session lifecycle.

A session goes ``idle -> initializing -> ready | error``. While ``ready``
the ``tracked`` flag follows the tracking backend's found/lost events.
Every continuation that outlives an ``await`` (asset load, tracking
callbacks, the start sequence itself) checks the session generation and
the destroyed flag first, so a closed session never touches the scene.
"""

import asyncio
import inspect
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, List, Optional, Tuple

from dishcovery.ar.assembly import (
    DEFAULT_KIT,
    TRACKING_LIGHTING,
    SceneAssembler,
    SceneKit,
    SessionResources,
)
from dishcovery.ar.assets import LoadedAsset, MarkerArtifact, MarkerResource
from dishcovery.ar.engine import Engine, RenderSurface, TrackingContext
from dishcovery.ar.errors import (
    AcquisitionError,
    ARError,
    AssetLoadFailure,
    ConfigurationError,
    TeardownFailure,
)
from dishcovery.config import get_settings
from dishcovery.utils import get_logger

logger = get_logger("ar.session")


class SessionStatus(str, Enum):
    """AR session status."""
    IDLE = "idle"
    INITIALIZING = "initializing"
    READY = "ready"
    ERROR = "error"


@dataclass
class PlacementTarget:
    """What a session places: marker, asset and the author's override."""
    name: str
    marker: Optional[MarkerArtifact]
    asset_ref: Optional[str]
    config: Any = None  # ModelConfig, its dict form, or None

    @property
    def is_complete(self) -> bool:
        return self.marker is not None and bool(self.asset_ref)

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        config = self.config
        if config is not None and hasattr(config, "to_dict"):
            config = config.to_dict()
        return {
            "name": self.name,
            "has_marker": self.marker is not None,
            "asset_ref": self.asset_ref,
            "config": config,
        }


class ARSession:
    """
    One live AR view of a placement target.

    Owns the camera lease, the marker resource, the tracking context and
    the scene resources between ``start()`` and ``close()``.
    """

    def __init__(
        self,
        engine: Engine,
        surface: RenderSurface,
        target: PlacementTarget,
        kit: SceneKit = DEFAULT_KIT,
        on_change: Optional[Callable[["ARSession"], None]] = None,
    ):
        """
        Initialize the session.

        Args:
            engine: Rendering/tracking capability
            surface: Host element the camera view is attached to
            target: Marker and asset to place
            kit: Placement/gesture modules to compute with
            on_change: Called after every status or tracked change
        """
        self.engine = engine
        self.surface = surface
        self.target = target
        self.kit = kit
        self.on_change = on_change

        self.status = SessionStatus.IDLE
        self.message: Optional[str] = None
        self.tracked = False
        self.asset: Optional[LoadedAsset] = None
        self.asset_error: Optional[AssetLoadFailure] = None
        self.teardown_errors: List[TeardownFailure] = []
        self.teardown_steps: List[str] = []

        self.assembler = SceneAssembler(kit)
        self.interpreter = kit.interpreter()
        self.resources: Optional[SessionResources] = None
        self.config = None

        self._generation = 0
        self._destroyed = False
        self._closed = False
        self._lease_held = False
        self._marker_resource: Optional[MarkerResource] = None
        self._context: Optional[TrackingContext] = None
        self._load_task: Optional[asyncio.Task] = None

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def destroyed(self) -> bool:
        return self._destroyed

    @property
    def load_task(self) -> Optional[asyncio.Task]:
        return self._load_task

    @property
    def interaction(self):
        return self.interpreter.state.transform

    def _is_current(self, generation: int) -> bool:
        return not self._destroyed and generation == self._generation

    def _set_status(self, status: SessionStatus, message: Optional[str] = None) -> None:
        self.status = status
        self.message = message
        logger.debug(f"Session '{self.target.name}' -> {status.value}")
        self._notify()

    def _notify(self) -> None:
        if self.on_change is not None:
            try:
                self.on_change(self)
            except Exception as e:
                logger.error(f"Session listener error: {e}")

    async def start(self) -> SessionStatus:
        """
        Run the start sequence.

        Returns:
            The status after starting (``READY`` or ``ERROR``)
        """
        if self.status != SessionStatus.IDLE or self._destroyed:
            raise RuntimeError(f"Session already {self.status.value}")

        if not self.target.is_complete:
            missing = "marker artifact" if self.target.marker is None else "asset reference"
            error = ConfigurationError(f"Target '{self.target.name}' has no {missing}")
            logger.error(str(error))
            self._set_status(SessionStatus.ERROR, error.user_message)
            return self.status

        try:
            self.config = self.assembler.coerce_config(self.target.config)
        except (TypeError, ValueError) as e:
            error = ConfigurationError(f"Target '{self.target.name}' has an invalid model config: {e}")
            logger.error(str(error))
            self._set_status(SessionStatus.ERROR, error.user_message)
            return self.status

        self._set_status(SessionStatus.INITIALIZING)
        generation = self._generation
        try:
            await self._acquire(generation)
        except ARError as e:
            await self._fail(generation, e)
        except Exception as e:
            await self._fail(generation, AcquisitionError(str(e)))
        return self.status

    async def _acquire(self, generation: int) -> None:
        await self.engine.camera_lease.acquire()
        if not self._is_current(generation):
            # Closed while waiting for the camera
            self.engine.camera_lease.release()
            return
        self._lease_held = True

        settings = get_settings()
        self._marker_resource = self.target.marker.open_resource(settings.data_dir / "markers")
        self._context = await self.engine.create_tracking_context(
            self.surface,
            self._marker_resource,
            filter_min_cf=settings.tracker_filter_min_cf,
            filter_beta=settings.tracker_filter_beta,
        )
        context = self._context
        if not self._is_current(generation):
            # Teardown already ran without this context
            self._context = None
            await context.stop()
            return

        anchor = context.add_anchor(0)
        self.resources = SessionResources(
            renderer=context.renderer,
            camera=context.camera,
            scene=context.scene,
            anchor=anchor,
        )
        self.assembler.prepare(self.resources, TRACKING_LIGHTING)
        anchor.on_target_found = lambda: self._set_tracked(generation, True)
        anchor.on_target_lost = lambda: self._set_tracked(generation, False)

        self._load_task = asyncio.get_running_loop().create_task(self._load_asset(generation))

        try:
            await context.start()
        except Exception as e:
            raise AcquisitionError(f"Tracking failed to start: {e}") from e
        if not self._is_current(generation):
            return

        context.renderer.set_animation_loop(self._render_frame)
        self._set_status(SessionStatus.READY)
        logger.info(f"AR session ready for '{self.target.name}'")

    async def _fail(self, generation: int, error: ARError) -> None:
        if not self._is_current(generation):
            return
        logger.error(f"AR session failed: {error}")
        self._set_status(SessionStatus.ERROR, error.user_message)
        await self._teardown()

    async def _load_asset(self, generation: int) -> None:
        try:
            asset = await self.engine.asset_loader.load(self.target.asset_ref)
        except Exception as e:
            if not self._is_current(generation):
                return
            failure = e if isinstance(e, AssetLoadFailure) else AssetLoadFailure(str(e))
            # The session stays usable, the anchor is just empty
            logger.error(f"Asset load failed for '{self.target.name}': {failure}")
            self.asset_error = failure
            return

        if not self._is_current(generation):
            return
        self.asset = asset
        try:
            self.assembler.place(asset, self.config)
        except Exception as e:
            failure = AssetLoadFailure(f"Could not place asset: {e}")
            logger.error(f"Asset placement failed for '{self.target.name}': {failure}")
            self.asset_error = failure
            return
        logger.info(f"Placed {asset.mesh_count} mesh(es) for '{self.target.name}'")

    def _set_tracked(self, generation: int, found: bool) -> None:
        if not self._is_current(generation) or self.tracked == found:
            return
        self.tracked = found
        self._notify()

    def _render_frame(self) -> None:
        self.assembler.apply_interaction(self.interaction)
        self.resources.renderer.render(self.resources.scene, self.resources.camera)

    # Gestures

    def handle_contacts(self, contacts):
        """Feed a contact snapshot to the gesture interpreter."""
        return self.interpreter.contacts_changed(contacts)

    def reset(self):
        """Return the viewer's transform to rest."""
        return self.interpreter.reset()

    def set_scale(self, value: float):
        return self.interpreter.state.set_scale(value)

    def nudge_scale(self, delta: float):
        return self.interpreter.state.nudge_scale(delta)

    # Teardown

    async def close(self) -> None:
        """Tear the session down. Idempotent and never raises."""
        if self._closed:
            return
        self._destroyed = True
        self._generation += 1
        await self._teardown()

    async def _teardown(self) -> None:
        if self._closed:
            return
        self._closed = True
        context = self._context
        renderer = getattr(context, "renderer", None)
        video = getattr(context, "video", None)

        steps: List[Tuple[str, Optional[Callable[[], Any]]]] = [
            ("stop tracking", context.stop if context else None),
            ("cancel render loop", (lambda: renderer.set_animation_loop(None)) if renderer else None),
            ("cancel asset load", self._cancel_load if self._load_task else None),
            ("stop media tracks", (lambda: self._stop_tracks(video)) if video else None),
            ("remove video surface", video.remove if video else None),
            ("dispose renderer", renderer.dispose if renderer else None),
            ("clear host surface", self.surface.clear),
            ("release marker", self._marker_resource.release if self._marker_resource else None),
            ("release camera lease", self._release_lease if self._lease_held else None),
        ]
        for name, step in steps:
            if step is None:
                continue
            self.teardown_steps.append(name)
            try:
                result = step()
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                failure = TeardownFailure(f"{name}: {e}")
                logger.error(f"Teardown step failed: {failure}")
                self.teardown_errors.append(failure)

        self.tracked = False
        self._context = None
        self._marker_resource = None
        logger.debug(f"Session '{self.target.name}' torn down")

    def _cancel_load(self) -> None:
        if not self._load_task.done():
            self._load_task.cancel()

    @staticmethod
    def _stop_tracks(video) -> None:
        for track in video.tracks:
            track.stop()

    def _release_lease(self) -> None:
        self._lease_held = False
        self.engine.camera_lease.release()

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return {
            "target": self.target.to_dict(),
            "status": self.status.value,
            "message": self.message,
            "tracked": self.tracked,
            "asset_loaded": self.asset is not None,
            "asset_error": str(self.asset_error) if self.asset_error else None,
            "scale": self.interaction.user_scale,
            "rotation": list(self.interaction.user_rotation),
        }
