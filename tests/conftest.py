"""Shared fixtures and fakes for the Dishcovery tests."""

import asyncio
import base64

import pytest
import trimesh

from dishcovery.ar.assets import LoadedAsset, MarkerArtifact
from dishcovery.ar.engine import Engine, MediaTrack, RenderSurface, VideoSurface
from dishcovery.ar.scene import Anchor, Group, Mesh, PerspectiveCamera, Scene, compute_bounds
from dishcovery.ar.session import PlacementTarget
from dishcovery.config import Settings, configure

MARKER_BYTES = b"compiled-marker-fingerprint"
MARKER_B64 = base64.b64encode(MARKER_BYTES).decode("ascii")


class FakeRenderer:
    """Records what a session does with its renderer."""

    def __init__(self, width=64, height=64, **options):
        self.width = width
        self.height = height
        self.options = options
        self.shadow_map_enabled = False
        self.loop_callback = None
        self.renders = 0
        self.disposed = False

    def set_animation_loop(self, callback):
        self.loop_callback = callback

    def render(self, scene, camera):
        self.renders += 1

    def dispose(self):
        self.disposed = True


class FakeTrackingContext:
    """Tracking backend double: no camera, anchors driven by the test."""

    def __init__(self, surface, marker, renderer_factory=FakeRenderer, start_error=None, start_gate=None, **options):
        self.surface = surface
        self.marker = marker
        self.options = options
        self.renderer = renderer_factory(width=surface.width or 64, height=surface.height or 64)
        self.scene = Scene()
        self.camera = PerspectiveCamera(position=(0, 0, 2))
        self.video = VideoSurface([MediaTrack("video"), MediaTrack("audio")])
        self.video.mount(surface)
        surface.attach(self.renderer)
        self.anchors = []
        self.started = False
        self.stopped = False
        self.start_error = start_error
        self.start_gate = start_gate

    def add_anchor(self, target_index):
        anchor = Anchor(target_index)
        self.scene.add(anchor.group)
        self.anchors.append(anchor)
        return anchor

    async def start(self):
        if self.start_gate is not None:
            await self.start_gate.wait()
        if self.start_error is not None:
            raise self.start_error
        self.started = True

    async def stop(self):
        self.stopped = True


class FakeTrackerFactory:
    """Tracker entry point double that remembers the contexts it created."""

    def __init__(self, **context_options):
        self.context_options = context_options
        self.contexts = []

    def __call__(self, surface, marker, renderer_factory, **options):
        context = FakeTrackingContext(
            surface, marker, renderer_factory=renderer_factory, **self.context_options, **options
        )
        self.contexts.append(context)
        return context

    @property
    def last(self):
        return self.contexts[-1]


class FakeAssetLoader:
    """Asset loader double; ``hold=True`` keeps loads pending until ``release()``."""

    def __init__(self, asset=None, error=None, hold=False):
        self.asset = asset
        self.error = error
        self.hold = hold
        self.calls = []
        self._gate = None

    def release(self):
        self.hold = False
        if self._gate is not None:
            self._gate.set()

    async def load(self, ref):
        self.calls.append(ref)
        if self.hold:
            self._gate = asyncio.Event()
            await self._gate.wait()
        if self.error is not None:
            raise self.error
        return self.asset


def make_box_asset(extents=(2.0, 1.0, 1.0), offset=(0.0, 0.0, 0.0), name="box.glb"):
    """A loaded asset made of one box mesh."""
    box = trimesh.creation.box(extents=extents)
    box.apply_translation(offset)
    root = Group(name="model")
    root.add(Mesh(box.vertices, box.faces, name="box"))
    return LoadedAsset(source=name, root=root, volume=compute_bounds(root))


async def settle(rounds=5):
    """Let pending tasks run."""
    for _ in range(rounds):
        await asyncio.sleep(0)


@pytest.fixture(autouse=True)
def settings(tmp_path):
    """Isolated settings with paths under tmp_path."""
    settings = Settings(
        _env_file=None,
        output_dir=tmp_path / "output",
        data_dir=tmp_path / "data",
        capture_settle_delay=0.0,
    )
    configure(settings)
    yield settings
    configure(None)


@pytest.fixture
def surface():
    return RenderSurface(320, 240)


@pytest.fixture
def marker():
    return MarkerArtifact(MARKER_BYTES)


@pytest.fixture
def box_asset():
    return make_box_asset()


@pytest.fixture
def loader(box_asset):
    return FakeAssetLoader(asset=box_asset)


@pytest.fixture
def tracker():
    return FakeTrackerFactory()


@pytest.fixture
def engine(loader, tracker):
    return Engine(asset_loader=loader, renderer_factory=FakeRenderer, tracker_factory=tracker)


@pytest.fixture
def target(marker):
    return PlacementTarget(name="Burger", marker=marker, asset_ref="models/burger.glb")
