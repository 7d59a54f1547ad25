"""Scene assembly shared by every render host.

Each host (live tracking session, editor preview, exported bundle) runs the
same sequence through a ``SceneAssembler``: lighting, shadow ground plane,
asset placement, anchor insertion. The placement and gesture math comes
from a ``SceneKit`` so a bundle host can run the copies embedded in the
bundle instead of this package's own modules.

Node layout under the anchor::

    anchor.group
    └── frame      (rotation.x = +pi/2, model stands up from the marker)
        ├── shadow plane
        └── user   (viewer interaction: scale + rotation)
            └── model  (author placement)
"""

import math
from dataclasses import dataclass
from types import ModuleType
from typing import Any, Mapping, Optional, Tuple

from dishcovery.ar import gestures as gestures_module
from dishcovery.ar import placement as placement_module
from dishcovery.ar.assets import LoadedAsset
from dishcovery.ar.scene import (
    Anchor,
    DirectionalLight,
    Group,
    HemisphereLight,
    Node,
    PerspectiveCamera,
    Scene,
    plane_mesh,
)
from dishcovery.utils import get_logger

logger = get_logger("ar.assembly")


@dataclass
class SceneKit:
    """The placement/gesture module pair a host computes with."""
    placement: ModuleType
    gestures: ModuleType

    def interpreter(self):
        return self.gestures.GestureInterpreter()


DEFAULT_KIT = SceneKit(placement=placement_module, gestures=gestures_module)


@dataclass(frozen=True)
class LightingPreset:
    """Lights and ground plane a host installs before placing the asset."""
    sky_color: int
    ground_color: int
    hemisphere_intensity: float
    hemisphere_position: Tuple[float, float, float]
    sun_color: int
    sun_intensity: float
    sun_position: Tuple[float, float, float]
    cast_shadows: bool = True
    shadow_map_size: Tuple[int, int] = (1024, 1024)
    shadow_bias: float = -0.0001
    plane_size: float = 10.0
    plane_opacity: float = 0.3
    plane_offset: float = 0.0


TRACKING_LIGHTING = LightingPreset(
    sky_color=0xFFFFFF,
    ground_color=0xBBBBFF,
    hemisphere_intensity=1.0,
    hemisphere_position=(0.0, 0.0, 0.0),
    sun_color=0xFFFFFF,
    sun_intensity=1.0,
    sun_position=(0.0, 1.0, 0.0),
)

EDITOR_LIGHTING = LightingPreset(
    sky_color=0xFFFFFF,
    ground_color=0x444444,
    hemisphere_intensity=0.6,
    hemisphere_position=(0.0, 20.0, 0.0),
    sun_color=0xFFFFFF,
    sun_intensity=1.2,
    sun_position=(2.0, 4.0, 2.0),
    plane_offset=0.001,
)


@dataclass
class SessionResources:
    """Host-owned handles the assembler works on."""
    renderer: Any
    camera: PerspectiveCamera
    scene: Scene
    anchor: Anchor


class SceneAssembler:
    """Builds and updates the anchored asset for one host."""

    def __init__(self, kit: SceneKit = DEFAULT_KIT):
        self.kit = kit
        self.resources: Optional[SessionResources] = None
        self.hemisphere: Optional[HemisphereLight] = None
        self.sun: Optional[DirectionalLight] = None
        self.frame = Group(name="frame")
        self.user = Group(name="user")
        self.shadow_plane = None
        self.model: Optional[Node] = None
        self.placement = None
        self._base = None

    def prepare(self, resources: SessionResources, preset: LightingPreset = TRACKING_LIGHTING) -> None:
        """Install lighting and the frame/shadow/user nodes under the anchor."""
        self.resources = resources
        scene = resources.scene

        self.hemisphere = HemisphereLight(
            preset.sky_color, preset.ground_color, preset.hemisphere_intensity,
            position=preset.hemisphere_position,
        )
        self.sun = DirectionalLight(preset.sun_color, preset.sun_intensity, position=preset.sun_position)
        self.sun.cast_shadow = preset.cast_shadows
        self.sun.shadow_map_size = preset.shadow_map_size
        self.sun.shadow_bias = preset.shadow_bias
        scene.add(self.hemisphere, self.sun)

        if hasattr(resources.renderer, "shadow_map_enabled"):
            resources.renderer.shadow_map_enabled = preset.cast_shadows

        self.shadow_plane = plane_mesh(
            preset.plane_size, preset.plane_size,
            name="shadow-plane",
            color=(0, 0, 0),
            opacity=preset.plane_opacity,
            shadow_only=True,
        )
        self.shadow_plane.rotation[0] = -math.pi / 2
        self.shadow_plane.position[1] = preset.plane_offset
        self.shadow_plane.receive_shadow = True

        self.frame.rotation[0] = math.pi / 2
        self.frame.add(self.shadow_plane, self.user)
        resources.anchor.group.add(self.frame)
        self.apply_interaction(None)

    def coerce_config(self, config: Any):
        """Turn a dict or a foreign ``ModelConfig`` into the kit's own type."""
        ModelConfig = self.kit.placement.ModelConfig
        if config is None or isinstance(config, ModelConfig):
            return config
        if isinstance(config, Mapping):
            return ModelConfig.from_dict(config)
        return ModelConfig.from_dict(config.to_dict())

    def place(self, asset: LoadedAsset, config: Any = None):
        """
        Normalise ``asset`` and insert it under the user wrapper.

        Computing the placement and inserting the node happen in one
        synchronous block, so no frame ever shows the raw asset transform.
        Placing the same asset again only updates its transform.

        Returns:
            The model placement that was applied
        """
        placement = self.kit.placement
        volume = placement.BoundingVolume.from_bounds(asset.volume.min.as_tuple(), asset.volume.max.as_tuple())
        base = placement.compute_base_transform(volume)
        self.placement = placement.compose_placement(base, self.coerce_config(config))
        self._base = base

        if self.model is not asset.root:
            if self.model is not None:
                self.user.remove(self.model)
            self.model = asset.root
        self._apply_placement()
        if self.model.parent is not self.user:
            self.user.add(self.model)
        logger.debug(f"Placed asset at scale {self.placement.scale:.4f}")
        return self.placement

    def update_config(self, config: Any):
        """Recompose the current asset with a new author override."""
        if self.model is None:
            return None
        self.placement = self.kit.placement.compose_placement(self._base, self.coerce_config(config))
        self._apply_placement()
        return self.placement

    def apply_interaction(self, interaction) -> None:
        """Copy the viewer interaction onto the user wrapper."""
        placement = self.placement or self.kit.placement.Placement(scale=1.0)
        composed = self.kit.placement.compose_transform(placement, interaction)
        self.user.set_uniform_scale(composed.wrapper_scale)
        self.user.rotation[:] = composed.wrapper_rotation.as_tuple()

    def remove_model(self) -> None:
        if self.model is not None:
            self.user.remove(self.model)
        self.model = None
        self.placement = None

    def _apply_placement(self) -> None:
        self.model.set_uniform_scale(self.placement.scale)
        self.model.position[:] = self.placement.position.as_tuple()
        self.model.rotation[:] = self.placement.rotation.as_tuple()
