"""AR placement runtime for Dishcovery.

Anchors a dish's 3D model to its photographed marker and lets the viewer
rotate and scale it, with identical placement in the live AR session, the
editor preview and exported menu bundles.
"""

from dishcovery.ar.placement import (
    BoundingVolume,
    InteractionTransform,
    ModelConfig,
    compose_placement,
    compose_transform,
    compute_base_transform,
)
from dishcovery.ar.gestures import (
    Contact,
    GestureInterpreter,
    InteractionState,
)
from dishcovery.ar.errors import (
    ARError,
    AcquisitionError,
    AssetLoadFailure,
    ConfigurationError,
    TeardownFailure,
)
from dishcovery.ar.engine import (
    Engine,
    EngineLoader,
    RenderSurface,
    configure_engine,
    get_engine_loader,
)
from dishcovery.ar.session import (
    ARSession,
    PlacementTarget,
    SessionStatus,
)
from dishcovery.ar.hosts import (
    BundleHost,
    EditorPreviewHost,
)
from dishcovery.ar.bundle import (
    SiteBundle,
)

__all__ = [
    "BoundingVolume",
    "InteractionTransform",
    "ModelConfig",
    "compose_placement",
    "compose_transform",
    "compute_base_transform",
    "Contact",
    "GestureInterpreter",
    "InteractionState",
    "ARError",
    "AcquisitionError",
    "AssetLoadFailure",
    "ConfigurationError",
    "TeardownFailure",
    "Engine",
    "EngineLoader",
    "RenderSurface",
    "configure_engine",
    "get_engine_loader",
    "ARSession",
    "PlacementTarget",
    "SessionStatus",
    "BundleHost",
    "EditorPreviewHost",
    "SiteBundle",
]
