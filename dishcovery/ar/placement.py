"""Placement math for anchoring an asset inside a marker frame.

The tracked marker image spans one unit of width in the anchor frame. An
asset is normalised so that its longest side measures half a unit, centred
on the marker origin, then offset/rotated/scaled by the author's
``ModelConfig`` and finally by the viewer's ``InteractionTransform``.

This module only depends on the standard library. The site exporter copies
it verbatim into every bundle, so keep it free of package-level imports.
"""

import math
from dataclasses import dataclass, field
from typing import Any, Mapping, Optional, Tuple

# Longest side of a normalised asset, in marker-frame units
TARGET_SIZE = 0.5
# Largest dimensions below this (or non-finite) are treated as 1.0
MIN_DIMENSION = 0.001

MIN_USER_SCALE = 0.1
MAX_USER_SCALE = 3.0


def clamp(value: float, low: float, high: float) -> float:
    """Clamp ``value`` into ``[low, high]``."""
    return min(max(value, low), high)


def _axis(data: Optional[Mapping[str, Any]], key: str) -> float:
    if not data:
        return 0.0
    value = data.get(key)
    return float(value) if value else 0.0


@dataclass(frozen=True)
class Vec3:
    """An immutable x/y/z triple."""
    x: float = 0.0
    y: float = 0.0
    z: float = 0.0

    @classmethod
    def from_dict(cls, data: Optional[Mapping[str, Any]]) -> "Vec3":
        """Build from a mapping, treating missing or null axes as 0."""
        return cls(_axis(data, "x"), _axis(data, "y"), _axis(data, "z"))

    def as_tuple(self) -> Tuple[float, float, float]:
        return (self.x, self.y, self.z)

    def to_dict(self) -> dict:
        return {"x": self.x, "y": self.y, "z": self.z}

    def __add__(self, other: "Vec3") -> "Vec3":
        return Vec3(self.x + other.x, self.y + other.y, self.z + other.z)

    def __mul__(self, factor: float) -> "Vec3":
        return Vec3(self.x * factor, self.y * factor, self.z * factor)

    def __neg__(self) -> "Vec3":
        return Vec3(-self.x, -self.y, -self.z)


ORIGIN = Vec3()


@dataclass(frozen=True)
class ModelConfig:
    """Author-supplied placement override."""
    scale: float = 1.0
    position: Vec3 = ORIGIN
    rotation: Vec3 = ORIGIN  # radians

    def __post_init__(self):
        if not math.isfinite(self.scale) or self.scale < 0:
            raise ValueError(f"Model scale must be a finite number >= 0, got {self.scale!r}")

    @property
    def effective_scale(self) -> float:
        """Scale multiplier actually applied (0 means "unset", i.e. 1)."""
        return self.scale or 1.0

    @classmethod
    def from_dict(cls, data: Optional[Mapping[str, Any]]) -> Optional["ModelConfig"]:
        """Decode the authoring surface's JSON. ``None`` stays ``None``."""
        if data is None:
            return None
        return cls(
            scale=float(data.get("scale") or 1.0),
            position=Vec3.from_dict(data.get("position")),
            rotation=Vec3.from_dict(data.get("rotation")),
        )

    def to_dict(self) -> dict:
        return {
            "scale": self.scale,
            "position": self.position.to_dict(),
            "rotation": self.rotation.to_dict(),
        }


IDENTITY_CONFIG = ModelConfig()


@dataclass(frozen=True)
class BoundingVolume:
    """Axis-aligned bounds of an asset in its local space."""
    min: Vec3
    max: Vec3

    def __post_init__(self):
        for axis, extent in zip("xyz", self.size.as_tuple()):
            if extent < 0:
                raise ValueError(f"Bounding volume has a negative {axis} extent ({extent})")

    @classmethod
    def empty(cls) -> "BoundingVolume":
        """Bounds of a model without geometry: a point at the origin."""
        return cls(ORIGIN, ORIGIN)

    @classmethod
    def from_bounds(cls, lower, upper) -> "BoundingVolume":
        """Build from two ``(x, y, z)`` sequences."""
        return cls(Vec3(*map(float, lower)), Vec3(*map(float, upper)))

    @property
    def size(self) -> Vec3:
        return Vec3(self.max.x - self.min.x, self.max.y - self.min.y, self.max.z - self.min.z)

    @property
    def center(self) -> Vec3:
        return Vec3(
            (self.min.x + self.max.x) / 2,
            (self.min.y + self.max.y) / 2,
            (self.min.z + self.max.z) / 2,
        )

    @property
    def max_dimension(self) -> float:
        extents = self.size.as_tuple()
        # max() drops a NaN unless it comes first
        if not all(math.isfinite(e) for e in extents):
            return math.nan
        return max(extents)


@dataclass(frozen=True)
class BaseTransform:
    """Geometry-derived normalisation: uniform scale plus the box center."""
    scale: float
    center: Vec3 = ORIGIN


@dataclass(frozen=True)
class Placement:
    """Transform applied to the asset's own node."""
    scale: float
    position: Vec3 = ORIGIN
    rotation: Vec3 = ORIGIN


@dataclass(frozen=True)
class InteractionTransform:
    """Viewer-owned adjustment layered on top of the author placement."""
    user_scale: float = 1.0
    user_rotation_x: float = 0.0
    user_rotation_y: float = 0.0

    @property
    def user_rotation(self) -> Tuple[float, float]:
        return (self.user_rotation_x, self.user_rotation_y)


REST_INTERACTION = InteractionTransform()


@dataclass(frozen=True)
class ComposedTransform:
    """Model placement plus the user wrapper that encloses it.

    The wrapper sits between the marker frame and the model node, so user
    rotation spins the already placed object about the marker's axes.
    """
    model: Placement
    wrapper_scale: float = 1.0
    wrapper_rotation: Vec3 = field(default=ORIGIN)

    @property
    def final_scale(self) -> float:
        return self.model.scale * self.wrapper_scale


def compute_base_transform(volume: BoundingVolume) -> BaseTransform:
    """Scale that fits the longest side of ``volume`` to ``TARGET_SIZE``."""
    max_dim = volume.max_dimension
    if not math.isfinite(max_dim) or max_dim <= MIN_DIMENSION:
        max_dim = 1.0
    center = volume.center
    if not all(math.isfinite(c) for c in center.as_tuple()):
        center = ORIGIN
    return BaseTransform(scale=TARGET_SIZE / max_dim, center=center)


def compose_placement(base: BaseTransform, config: Optional[ModelConfig] = None) -> Placement:
    """Apply the author override to the base transform.

    The box center is moved to the marker origin before the author offset
    is added, so ``position`` is relative to the centred model.
    """
    config = config or IDENTITY_CONFIG
    scale = base.scale * config.effective_scale
    return Placement(
        scale=scale,
        position=-(base.center * scale) + config.position,
        rotation=config.rotation,
    )


def compose_transform(
    placement: Placement,
    interaction: Optional[InteractionTransform] = None,
) -> ComposedTransform:
    """Layer the viewer's interaction over an author placement."""
    interaction = interaction or REST_INTERACTION
    return ComposedTransform(
        model=placement,
        wrapper_scale=interaction.user_scale,
        wrapper_rotation=Vec3(interaction.user_rotation_x, interaction.user_rotation_y, 0.0),
    )
