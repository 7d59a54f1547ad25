"""Touch gesture interpretation for the placed asset.

One active contact rotates (horizontal drag = yaw, vertical drag = pitch),
two active contacts pinch-scale. Every change in the set of active contacts
re-baselines the gesture, so single-finger baselines never leak into
two-finger math or the other way around.

Like ``placement``, this module is copied verbatim into exported bundles and
must only import the standard library and its sibling module.
"""

import math
from dataclasses import dataclass, replace
from enum import Enum
from typing import Hashable, Optional, Sequence, Tuple, Union

from .placement import (
    MAX_USER_SCALE,
    MIN_USER_SCALE,
    REST_INTERACTION,
    InteractionTransform,
    clamp,
)

# Radians of rotation per pixel of drag
ROTATION_SENSITIVITY = 0.01
# Step used by the +/- scale buttons
SCALE_STEP = 0.1


@dataclass(frozen=True)
class Contact:
    """One active touch/pointer point."""
    x: float
    y: float
    id: Optional[Hashable] = None


ContactLike = Union[Contact, Tuple[float, float]]


def _as_contact(value: ContactLike) -> Contact:
    if isinstance(value, Contact):
        return value
    x, y = value
    return Contact(float(x), float(y))


def contact_distance(a: Contact, b: Contact) -> float:
    return math.hypot(a.x - b.x, a.y - b.y)


class GestureMode(str, Enum):
    """What the active contacts are currently doing."""
    IDLE = "idle"
    ROTATE = "rotate"
    SCALE = "scale"
    SUSPENDED = "suspended"  # three or more contacts


class InteractionState:
    """Holds the viewer's transform separately from the author placement."""

    def __init__(self):
        self._transform = REST_INTERACTION

    @property
    def transform(self) -> InteractionTransform:
        return self._transform

    @property
    def scale(self) -> float:
        return self._transform.user_scale

    @property
    def rotation(self) -> Tuple[float, float]:
        return self._transform.user_rotation

    def set_scale(self, value: float) -> InteractionTransform:
        """Set the user scale, clamped to the allowed range."""
        self._transform = replace(
            self._transform, user_scale=clamp(value, MIN_USER_SCALE, MAX_USER_SCALE)
        )
        return self._transform

    def nudge_scale(self, delta: float = SCALE_STEP) -> InteractionTransform:
        """Step the scale up or down (the zoom buttons)."""
        return self.set_scale(self.scale + delta)

    def set_rotation(self, x: float, y: float) -> InteractionTransform:
        self._transform = replace(self._transform, user_rotation_x=x, user_rotation_y=y)
        return self._transform

    def reset(self) -> InteractionTransform:
        """Return to rest: scale 1, no rotation. Idempotent."""
        self._transform = REST_INTERACTION
        return self._transform


class GestureInterpreter:
    """
    Turns contact snapshots into updates of an ``InteractionState``.

    Feed it every "contacts changed" snapshot from the host's pointer layer,
    including the empty snapshot when the last finger lifts.
    """

    def __init__(self, state: Optional[InteractionState] = None):
        self.state = state or InteractionState()
        self._mode = GestureMode.IDLE
        self._active = 0
        self._contact_ids: Tuple = ()
        # Rotation baseline
        self._start: Optional[Contact] = None
        self._current: Optional[Contact] = None
        self._rotation_baseline: Tuple[float, float] = (0.0, 0.0)
        # Scale baseline
        self._start_distance: Optional[float] = None
        self._current_distance: Optional[float] = None
        self._scale_baseline = 1.0

    @property
    def mode(self) -> GestureMode:
        return self._mode

    def contacts_changed(self, contacts: Sequence[ContactLike]) -> InteractionTransform:
        """
        Process one snapshot of the active contacts.

        Args:
            contacts: Current positions, one per active contact

        Returns:
            The interaction transform after this snapshot
        """
        points = [_as_contact(c) for c in contacts]
        ids = tuple(p.id for p in points)

        if len(points) != self._active or ids != self._contact_ids:
            self._rebaseline(points)
            return self.state.transform

        if self._mode == GestureMode.ROTATE:
            self._rotate(points[0])
        elif self._mode == GestureMode.SCALE:
            self._scale(points[0], points[1])

        return self.state.transform

    def reset(self) -> InteractionTransform:
        """Reset the interaction; an in-progress gesture continues from rest."""
        self.state.reset()
        self._rotation_baseline = self.state.rotation
        self._scale_baseline = self.state.scale
        if self._mode == GestureMode.ROTATE and self._current is not None:
            self._start = self._current
        if self._mode == GestureMode.SCALE:
            self._start_distance = self._current_distance or None
        return self.state.transform

    def _rebaseline(self, points: Sequence[Contact]) -> None:
        self._start = None
        self._current = None
        self._start_distance = None
        self._current_distance = None
        self._contact_ids = tuple(p.id for p in points)
        self._active = len(points)

        if len(points) == 1:
            self._mode = GestureMode.ROTATE
            self._start = self._current = points[0]
            self._rotation_baseline = self.state.rotation
        elif len(points) == 2:
            self._mode = GestureMode.SCALE
            self._capture_distance(points[0], points[1])
        elif len(points) == 0:
            self._mode = GestureMode.IDLE
        else:
            self._mode = GestureMode.SUSPENDED

    def _capture_distance(self, a: Contact, b: Contact) -> None:
        distance = contact_distance(a, b)
        self._current_distance = distance
        if distance > 0:
            self._start_distance = distance
            self._scale_baseline = self.state.scale

    def _rotate(self, point: Contact) -> None:
        self._current = point
        dx = point.x - self._start.x
        dy = point.y - self._start.y
        base_x, base_y = self._rotation_baseline
        self.state.set_rotation(
            x=base_x + dy * ROTATION_SENSITIVITY,
            y=base_y + dx * ROTATION_SENSITIVITY,
        )

    def _scale(self, a: Contact, b: Contact) -> None:
        if self._start_distance is None:
            # Both contacts started on the same spot
            self._capture_distance(a, b)
            return
        distance = contact_distance(a, b)
        self._current_distance = distance
        self.state.set_scale(self._scale_baseline * (distance / self._start_distance))
