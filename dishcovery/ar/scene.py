"""Host-owned scene graph used by the render hosts.

A small retained-mode graph in the spirit of three.js: nodes carry a
position, an XYZ Euler rotation and a per-axis scale, and compose to world
matrices as ``T @ R @ S`` down the parent chain.
"""

import math
from typing import Callable, Iterator, List, Optional, Sequence, Tuple

import numpy as np

from dishcovery.ar.placement import BoundingVolume

Color = Tuple[int, int, int]


def hex_to_rgb(value: int) -> Color:
    """Convert ``0xRRGGBB`` to an ``(r, g, b)`` tuple."""
    return ((value >> 16) & 0xFF, (value >> 8) & 0xFF, value & 0xFF)


def rotation_matrix(rx: float, ry: float, rz: float) -> np.ndarray:
    """3x3 rotation for XYZ-ordered Euler angles (``Rx @ Ry @ Rz``)."""
    cx, sx = math.cos(rx), math.sin(rx)
    cy, sy = math.cos(ry), math.sin(ry)
    cz, sz = math.cos(rz), math.sin(rz)
    rot_x = np.array([[1, 0, 0], [0, cx, -sx], [0, sx, cx]])
    rot_y = np.array([[cy, 0, sy], [0, 1, 0], [-sy, 0, cy]])
    rot_z = np.array([[cz, -sz, 0], [sz, cz, 0], [0, 0, 1]])
    return rot_x @ rot_y @ rot_z


class Node:
    """A transformable node with children."""

    def __init__(
        self,
        name: str = "",
        position: Sequence[float] = (0.0, 0.0, 0.0),
        rotation: Sequence[float] = (0.0, 0.0, 0.0),
        scale: Sequence[float] = (1.0, 1.0, 1.0),
    ):
        self.name = name
        self.position = np.array(position, dtype=float)
        self.rotation = np.array(rotation, dtype=float)
        self.scale = np.array(scale, dtype=float)
        self.visible = True
        self.cast_shadow = False
        self.receive_shadow = False
        self.parent: Optional["Node"] = None
        self.children: List["Node"] = []

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.name!r}, children={len(self.children)})"

    def add(self, *nodes: "Node") -> "Node":
        """Attach nodes, detaching them from any previous parent."""
        for node in nodes:
            if node.parent is not None:
                node.parent.remove(node)
            node.parent = self
            self.children.append(node)
        return self

    def remove(self, node: "Node") -> None:
        if node in self.children:
            self.children.remove(node)
            node.parent = None

    def clear(self) -> None:
        for child in list(self.children):
            self.remove(child)

    def traverse(self) -> Iterator["Node"]:
        yield self
        for child in self.children:
            yield from child.traverse()

    def traverse_visible(self) -> Iterator["Node"]:
        if not self.visible:
            return
        yield self
        for child in self.children:
            yield from child.traverse_visible()

    def find(self, name: str) -> Optional["Node"]:
        return next((n for n in self.traverse() if n.name == name), None)

    def set_uniform_scale(self, value: float) -> None:
        self.scale[:] = value

    def local_matrix(self) -> np.ndarray:
        matrix = np.eye(4)
        matrix[:3, :3] = rotation_matrix(*self.rotation) * self.scale
        matrix[:3, 3] = self.position
        return matrix

    def world_matrix(self) -> np.ndarray:
        matrix = self.local_matrix()
        node = self.parent
        while node is not None:
            matrix = node.local_matrix() @ matrix
            node = node.parent
        return matrix


class Group(Node):
    """A node that only groups other nodes."""


class Mesh(Node):
    """Triangle geometry with a flat material."""

    def __init__(
        self,
        vertices,
        faces,
        name: str = "",
        color: Color = (200, 200, 200),
        opacity: float = 1.0,
        shadow_only: bool = False,
        texture=None,
        **kwargs,
    ):
        super().__init__(name=name, **kwargs)
        self.vertices = np.asarray(vertices, dtype=float).reshape(-1, 3)
        self.faces = np.asarray(faces, dtype=int).reshape(-1, 3)
        self.color = color
        self.opacity = opacity
        # Shadow catchers only show received shadows, never their own surface
        self.shadow_only = shadow_only
        self.texture = texture


class Light(Node):
    def __init__(self, color: int = 0xFFFFFF, intensity: float = 1.0, **kwargs):
        super().__init__(**kwargs)
        self.color = hex_to_rgb(color)
        self.intensity = intensity


class HemisphereLight(Light):
    """Sky/ground ambient light."""

    def __init__(self, sky_color: int, ground_color: int, intensity: float = 1.0, **kwargs):
        super().__init__(color=sky_color, intensity=intensity, **kwargs)
        self.ground_color = hex_to_rgb(ground_color)


class DirectionalLight(Light):
    """Parallel light shining from its position towards the origin."""

    def __init__(self, color: int = 0xFFFFFF, intensity: float = 1.0, **kwargs):
        super().__init__(color=color, intensity=intensity, **kwargs)
        self.target = np.zeros(3)
        self.shadow_map_size = (512, 512)
        self.shadow_bias = 0.0

    @property
    def direction(self) -> np.ndarray:
        """Unit vector from the light towards its target."""
        world = self.world_matrix()[:3, 3]
        vector = self.target - world
        norm = np.linalg.norm(vector)
        return vector / norm if norm else np.array([0.0, -1.0, 0.0])


class GridHelper(Node):
    """Square line grid in the XZ plane."""

    def __init__(self, size: float = 10.0, divisions: int = 10, center_color: int = 0x444444,
                 grid_color: int = 0x888888, opacity: float = 1.0, **kwargs):
        super().__init__(**kwargs)
        self.size = size
        self.divisions = divisions
        self.center_color = hex_to_rgb(center_color)
        self.grid_color = hex_to_rgb(grid_color)
        self.opacity = opacity

    def segments(self) -> List[Tuple[np.ndarray, np.ndarray, Color]]:
        half = self.size / 2
        step = self.size / self.divisions
        lines = []
        for i in range(self.divisions + 1):
            k = -half + i * step
            color = self.center_color if i == self.divisions // 2 else self.grid_color
            lines.append((np.array([-half, 0, k]), np.array([half, 0, k]), color))
            lines.append((np.array([k, 0, -half]), np.array([k, 0, half]), color))
        return lines


class AxesHelper(Node):
    """X/Y/Z axes drawn in red/green/blue."""

    def __init__(self, size: float = 1.0, **kwargs):
        super().__init__(**kwargs)
        self.size = size

    def segments(self) -> List[Tuple[np.ndarray, np.ndarray, Color]]:
        origin = np.zeros(3)
        return [
            (origin, np.array([self.size, 0, 0]), (255, 0, 0)),
            (origin, np.array([0, self.size, 0]), (0, 255, 0)),
            (origin, np.array([0, 0, self.size]), (0, 0, 255)),
        ]


class Scene(Group):
    """Root of a render graph."""

    def __init__(self, background: Optional[int] = None, **kwargs):
        super().__init__(name=kwargs.pop("name", "scene"), **kwargs)
        self.background = hex_to_rgb(background) if background is not None else None


class PerspectiveCamera(Node):
    """Pinhole camera looking at ``target``."""

    def __init__(self, fov: float = 50.0, aspect: float = 1.0, near: float = 0.1, far: float = 2000.0, **kwargs):
        super().__init__(name=kwargs.pop("name", "camera"), **kwargs)
        self.fov = fov
        self.aspect = aspect
        self.near = near
        self.far = far
        self.target = np.array([0.0, 0.0, -1.0])
        self.up = np.array([0.0, 1.0, 0.0])

    def look_at(self, x: float, y: float, z: float) -> None:
        self.target = np.array([x, y, z], dtype=float)

    def view_matrix(self) -> np.ndarray:
        eye = self.world_matrix()[:3, 3]
        forward = self.target - eye
        forward = forward / (np.linalg.norm(forward) or 1.0)
        right = np.cross(forward, self.up)
        if not np.linalg.norm(right):
            right = np.array([1.0, 0.0, 0.0])
        right = right / np.linalg.norm(right)
        true_up = np.cross(right, forward)
        view = np.eye(4)
        view[0, :3], view[1, :3], view[2, :3] = right, true_up, -forward
        view[:3, 3] = -view[:3, :3] @ eye
        return view

    def projection_matrix(self) -> np.ndarray:
        f = 1.0 / math.tan(math.radians(self.fov) / 2)
        near, far = self.near, self.far
        return np.array([
            [f / self.aspect, 0, 0, 0],
            [0, f, 0, 0],
            [0, 0, (far + near) / (near - far), 2 * far * near / (near - far)],
            [0, 0, -1, 0],
        ])


class Anchor:
    """Scene node whose pose is driven by the tracking backend."""

    def __init__(self, target_index: int = 0):
        self.target_index = target_index
        self.group = Group(name=f"anchor-{target_index}")
        self.is_tracked = False
        self.on_target_found: Optional[Callable[[], None]] = None
        self.on_target_lost: Optional[Callable[[], None]] = None

    def set_tracked(self, found: bool) -> None:
        """Called by the tracking backend when the marker appears or vanishes."""
        if found == self.is_tracked:
            return
        self.is_tracked = found
        callback = self.on_target_found if found else self.on_target_lost
        if callback is not None:
            callback()


def plane_mesh(width: float, height: float, **kwargs) -> Mesh:
    """A ``width`` x ``height`` rectangle in the XY plane, centred at the origin."""
    w, h = width / 2, height / 2
    vertices = [(-w, -h, 0), (w, -h, 0), (w, h, 0), (-w, h, 0)]
    return Mesh(vertices, [(0, 1, 2), (0, 2, 3)], **kwargs)


def compute_bounds(root: Node) -> BoundingVolume:
    """World-space bounds of every mesh under ``root`` (including itself)."""
    corners = []
    for node in root.traverse():
        if isinstance(node, Mesh) and len(node.vertices):
            matrix = node.world_matrix()
            corners.append(node.vertices @ matrix[:3, :3].T + matrix[:3, 3])
    if not corners:
        return BoundingVolume.empty()
    points = np.vstack(corners)
    return BoundingVolume.from_bounds(points.min(axis=0), points.max(axis=0))
