"""The rendering/tracking capability injected into every render host.

``Engine`` bundles the asset loader, the renderer factory and the tracking
backend. It is handed explicitly to each host; the process-wide
``EngineLoader`` builds one lazily and announces readiness through an
``asyncio.Event`` instead of a global flag.

Tracking backends are third-party packages registering a factory in the
``dishcovery.trackers`` entry-point group. A factory is called as
``factory(surface=..., marker=..., renderer_factory=..., **options)`` and
returns a ``TrackingContext``.
"""

import asyncio
from dataclasses import dataclass, field
from importlib.metadata import entry_points
from typing import Any, Callable, Dict, List, Optional, Protocol, runtime_checkable

from dishcovery.ar.assets import AssetLoader, MarkerResource, TrimeshAssetLoader
from dishcovery.ar.errors import AcquisitionError
from dishcovery.ar.renderer import SoftwareRenderer
from dishcovery.ar.scene import Anchor, PerspectiveCamera, Scene
from dishcovery.config import get_settings
from dishcovery.utils import get_logger

logger = get_logger("ar.engine")

TRACKER_GROUP = "dishcovery.trackers"

ProgressCallback = Callable[[float], None]


class MediaTrack:
    """One camera media track (video or audio) held by a session."""

    def __init__(self, kind: str = "video", label: str = ""):
        self.kind = kind
        self.label = label
        self.stopped = False

    def stop(self) -> None:
        self.stopped = True


class RenderSurface:
    """The host element render output and camera video are attached to."""

    def __init__(self, width: int = 0, height: int = 0):
        self.width = width
        self.height = height
        self.elements: List[Any] = []

    def attach(self, element: Any) -> None:
        if element not in self.elements:
            self.elements.append(element)

    def detach(self, element: Any) -> None:
        if element in self.elements:
            self.elements.remove(element)

    def clear(self) -> None:
        self.elements.clear()


class VideoSurface:
    """Camera preview element feeding the tracker."""

    def __init__(self, tracks: Optional[List[MediaTrack]] = None):
        self.tracks: List[MediaTrack] = tracks if tracks is not None else []
        self.host: Optional[RenderSurface] = None

    def mount(self, host: RenderSurface) -> None:
        self.host = host
        host.attach(self)

    def remove(self) -> None:
        """Take the video element out of its host."""
        if self.host is not None:
            self.host.detach(self)
            self.host = None


@runtime_checkable
class TrackingContext(Protocol):
    """What a tracking backend hands to a session."""

    renderer: Any
    scene: Scene
    camera: PerspectiveCamera
    video: Optional[VideoSurface]

    def add_anchor(self, target_index: int) -> Anchor:
        ...

    async def start(self) -> None:
        """Open the camera and begin tracking."""
        ...

    async def stop(self) -> None:
        ...


TrackerFactory = Callable[..., TrackingContext]


def discover_trackers() -> Dict[str, TrackerFactory]:
    """Installed tracking backends, keyed by entry-point name."""
    return {ep.name: ep for ep in entry_points(group=TRACKER_GROUP)}


@dataclass
class Engine:
    """Capability object shared by the render hosts."""
    asset_loader: AssetLoader = field(default_factory=TrimeshAssetLoader)
    renderer_factory: Callable[..., Any] = SoftwareRenderer
    tracker_factory: Optional[TrackerFactory] = None
    _camera_lease: Optional[asyncio.Lock] = field(default=None, init=False, repr=False)

    @property
    def camera_lease(self) -> asyncio.Lock:
        """Held by the session that currently owns the camera."""
        if self._camera_lease is None:
            self._camera_lease = asyncio.Lock()
        return self._camera_lease

    @property
    def can_track(self) -> bool:
        return self.tracker_factory is not None

    def create_renderer(self, width: int, height: int, **options) -> Any:
        return self.renderer_factory(width=width, height=height, **options)

    async def create_tracking_context(
        self,
        surface: RenderSurface,
        marker: MarkerResource,
        **options,
    ) -> TrackingContext:
        """
        Acquire a tracking context bound to ``surface``.

        Raises:
            AcquisitionError: if no backend is installed or it fails to start
        """
        if self.tracker_factory is None:
            raise AcquisitionError("No marker tracking backend is installed")
        try:
            context = self.tracker_factory(
                surface=surface,
                marker=marker,
                renderer_factory=self.renderer_factory,
                **options,
            )
            if asyncio.iscoroutine(context):
                context = await context
        except AcquisitionError:
            raise
        except Exception as e:
            raise AcquisitionError(f"Tracking backend failed to initialise: {e}") from e
        return context


class EngineLoader:
    """
    Lazily builds the process-wide ``Engine``.

    ``load()`` is idempotent; ``ready()`` waits for the engine (or re-raises
    the load error).
    """

    def __init__(self, factory: Optional[Callable[[], List[Callable[[dict], None]]]] = None):
        self._steps_factory = factory or self._default_steps
        self._engine: Optional[Engine] = None
        self._error: Optional[BaseException] = None
        self._ready: Optional[asyncio.Event] = None
        self._task: Optional[asyncio.Task] = None
        self.progress = 0.0

    @property
    def is_ready(self) -> bool:
        return self._engine is not None

    def load(self, on_progress: Optional[ProgressCallback] = None) -> asyncio.Task:
        """Start loading (once) and return the loading task."""
        if self._task is None:
            self._ready = asyncio.Event()
            self._task = asyncio.get_running_loop().create_task(self._load(on_progress))
        return self._task

    async def ready(self) -> Engine:
        """Wait until the engine is available."""
        if self._engine is not None:
            return self._engine
        self.load()
        await self._ready.wait()
        if self._error is not None:
            raise self._error
        return self._engine

    def set_engine(self, engine: Engine) -> None:
        """Install a prebuilt engine and mark the loader ready."""
        self._engine = engine
        self.progress = 100.0
        if self._ready is not None:
            self._ready.set()

    async def _load(self, on_progress: Optional[ProgressCallback]) -> None:
        def report(value: float) -> None:
            self.progress = value
            if on_progress:
                on_progress(value)

        parts: Dict[str, Any] = {}
        steps = self._steps_factory()
        report(10)
        try:
            for index, step in enumerate(steps, start=1):
                await asyncio.to_thread(step, parts)
                report(10 + index / len(steps) * 80)
            self._engine = Engine(**parts)
            report(100)
            logger.info("Engine ready")
        except Exception as e:
            logger.error(f"Engine failed to load: {e}")
            self._error = e
        finally:
            self._ready.set()

    @staticmethod
    def _default_steps() -> List[Callable[[dict], None]]:
        def asset_loader(parts: dict) -> None:
            parts["asset_loader"] = TrimeshAssetLoader()

        def renderer(parts: dict) -> None:
            parts["renderer_factory"] = SoftwareRenderer

        def tracker(parts: dict) -> None:
            trackers = discover_trackers()
            wanted = get_settings().tracker_backend
            if wanted and wanted not in trackers:
                logger.warning(f"Tracking backend '{wanted}' is not installed")
            name = wanted if wanted in trackers else next(iter(trackers), None)
            if name is None:
                logger.warning("No tracking backend installed; AR sessions will fail to start")
                return
            parts["tracker_factory"] = trackers[name].load()
            logger.info(f"Using tracking backend: {name}")

        return [asset_loader, renderer, tracker]


# Global loader instance
_loader: Optional[EngineLoader] = None


def get_engine_loader() -> EngineLoader:
    """Get the process-wide engine loader."""
    global _loader
    if _loader is None:
        _loader = EngineLoader()
    return _loader


def configure_engine(engine: Optional[Engine]) -> None:
    """Install ``engine`` globally (``None`` resets the loader)."""
    global _loader
    _loader = EngineLoader()
    if engine is not None:
        _loader.set_engine(engine)
