"""Tests for the placement math."""

import math

import pytest

from dishcovery.ar.placement import (
    IDENTITY_CONFIG,
    MAX_USER_SCALE,
    MIN_USER_SCALE,
    ORIGIN,
    BaseTransform,
    BoundingVolume,
    InteractionTransform,
    ModelConfig,
    Vec3,
    clamp,
    compose_placement,
    compose_transform,
    compute_base_transform,
)


def box(x, y, z, center=(0.0, 0.0, 0.0)):
    cx, cy, cz = center
    return BoundingVolume(
        Vec3(cx - x / 2, cy - y / 2, cz - z / 2),
        Vec3(cx + x / 2, cy + y / 2, cz + z / 2),
    )


class TestVec3:
    """Tests for Vec3."""

    def test_from_dict_defaults_missing_axes(self):
        """Missing and null axes decode to zero."""
        assert Vec3.from_dict({"x": 1.5, "z": None}) == Vec3(1.5, 0.0, 0.0)
        assert Vec3.from_dict(None) == ORIGIN
        assert Vec3.from_dict({}) == ORIGIN

    def test_arithmetic(self):
        """Test add, scale and negate."""
        v = Vec3(1, 2, 3)
        assert v + Vec3(1, 1, 1) == Vec3(2, 3, 4)
        assert v * 2 == Vec3(2, 4, 6)
        assert -v == Vec3(-1, -2, -3)


class TestModelConfig:
    """Tests for ModelConfig decoding."""

    def test_defaults(self):
        """Test the identity override."""
        config = ModelConfig()
        assert config.scale == 1.0
        assert config.position == ORIGIN
        assert config.rotation == ORIGIN

    def test_from_dict(self):
        """Test decoding the authoring surface's JSON."""
        config = ModelConfig.from_dict({
            "scale": 2,
            "position": {"x": 0.1, "y": 0.2, "z": 0.3},
            "rotation": {"y": math.pi},
        })
        assert config.scale == 2.0
        assert config.position == Vec3(0.1, 0.2, 0.3)
        assert config.rotation == Vec3(0.0, math.pi, 0.0)

    def test_from_none_stays_none(self):
        """Absent config is not turned into an object."""
        assert ModelConfig.from_dict(None) is None

    def test_zero_or_missing_scale_means_one(self):
        """A zero scale is treated as unset."""
        assert ModelConfig.from_dict({"scale": 0}).scale == 1.0
        assert ModelConfig.from_dict({}).scale == 1.0
        assert ModelConfig(scale=0).effective_scale == 1.0

    @pytest.mark.parametrize("scale", [-1.0, float("nan"), float("inf")])
    def test_rejects_invalid_scale(self, scale):
        """Negative and non-finite scales are rejected."""
        with pytest.raises(ValueError):
            ModelConfig(scale=scale)

    def test_round_trip(self):
        """to_dict output decodes to an equal config."""
        config = ModelConfig(1.5, Vec3(1, 2, 3), Vec3(0.1, 0.2, 0.3))
        assert ModelConfig.from_dict(config.to_dict()) == config


class TestBoundingVolume:
    """Tests for BoundingVolume."""

    def test_size_and_center(self):
        """Test derived size, center and max dimension."""
        volume = box(2, 1, 4, center=(1, 1, 1))
        assert volume.size == Vec3(2, 1, 4)
        assert volume.center == Vec3(1, 1, 1)
        assert volume.max_dimension == 4

    def test_empty(self):
        """An empty model is a point at the origin."""
        volume = BoundingVolume.empty()
        assert volume.size == ORIGIN
        assert volume.center == ORIGIN

    def test_rejects_negative_extent(self):
        """min above max on any axis is invalid."""
        with pytest.raises(ValueError):
            BoundingVolume(Vec3(1, 0, 0), Vec3(0, 1, 1))


class TestComputeBaseTransform:
    """Tests for compute_base_transform."""

    def test_scenario_longest_side(self):
        """A 2x1x1 box normalises to a 0.25 scale."""
        base = compute_base_transform(box(2, 1, 1))
        assert base.scale == pytest.approx(0.25)
        assert base.center == ORIGIN

    @pytest.mark.parametrize("dims", [(1, 1, 1), (0.01, 0.02, 0.005), (100, 3, 7), (0.3, 5, 0.3)])
    def test_longest_side_becomes_half_unit(self, dims):
        """The longest side of any box ends up 0.5 units long."""
        base = compute_base_transform(box(*dims))
        assert max(dims) * base.scale == pytest.approx(0.5)

    def test_empty_volume_uses_unit_divisor(self):
        """Degenerate boxes fall back to a divisor of 1."""
        assert compute_base_transform(BoundingVolume.empty()).scale == 0.5
        assert compute_base_transform(box(0.0008, 0.0005, 0.0)).scale == 0.5

    def test_non_finite_volume(self):
        """Non-finite bounds never produce a non-finite scale."""
        volume = BoundingVolume(Vec3(0, 0, 0), Vec3(float("inf"), 1, 1))
        base = compute_base_transform(volume)
        assert base.scale == 0.5
        assert base.center == ORIGIN

    @pytest.mark.parametrize("upper", [
        (float("nan"), 1, 1),
        (2, float("nan"), 1),
        (2, 1, float("nan")),
    ])
    def test_nan_extent_on_any_axis(self, upper):
        """A NaN extent anywhere makes the max dimension non-finite."""
        volume = BoundingVolume(Vec3(0, 0, 0), Vec3(*upper))
        assert math.isnan(volume.max_dimension)
        base = compute_base_transform(volume)
        assert base.scale == 0.5
        assert base.center == ORIGIN


class TestComposePlacement:
    """Tests for compose_placement."""

    def test_absent_config_centres_model(self):
        """Without config the box center lands on the marker origin."""
        volume = box(2, 1, 1, center=(3, -1, 2))
        base = compute_base_transform(volume)
        placement = compose_placement(base, None)

        assert placement.scale == pytest.approx(0.25)
        center = volume.center * placement.scale + placement.position
        assert center.as_tuple() == pytest.approx((0, 0, 0))
        assert placement.rotation == ORIGIN

    def test_identity_config_matches_absent(self):
        """The identity override is the same as no override."""
        base = BaseTransform(0.4, Vec3(1, 2, 3))
        assert compose_placement(base, IDENTITY_CONFIG) == compose_placement(base, None)

    def test_config_scale_and_offset(self):
        """Author scale multiplies, author offset adds after centring."""
        base = BaseTransform(0.25, Vec3(1, 0, 0))
        config = ModelConfig(2.0, Vec3(0, 0.1, 0), Vec3(0, math.pi / 2, 0))
        placement = compose_placement(base, config)

        assert placement.scale == pytest.approx(0.5)
        assert placement.position.as_tuple() == pytest.approx((-0.5, 0.1, 0.0))
        assert placement.rotation == Vec3(0, math.pi / 2, 0)

    def test_is_pure(self):
        """Same inputs, same output."""
        base = compute_base_transform(box(1, 2, 3, center=(0.5, 0.5, 0.5)))
        config = ModelConfig(1.2, Vec3(0.1, 0, 0))
        assert compose_placement(base, config) == compose_placement(base, config)


class TestComposeTransform:
    """Tests for compose_transform."""

    def test_rest_interaction(self):
        """No interaction leaves the wrapper at identity."""
        placement = compose_placement(compute_base_transform(box(2, 1, 1)))
        composed = compose_transform(placement)
        assert composed.wrapper_scale == 1.0
        assert composed.wrapper_rotation == ORIGIN
        assert composed.final_scale == pytest.approx(0.25)

    def test_final_scale_is_product(self):
        """Final scale = base x config x user."""
        base = compute_base_transform(box(4, 1, 1))
        placement = compose_placement(base, ModelConfig(scale=3.0))
        composed = compose_transform(placement, InteractionTransform(user_scale=2.0))
        assert composed.final_scale == pytest.approx(0.125 * 3.0 * 2.0)

    def test_wrapper_rotation(self):
        """User rotation maps to the wrapper's x/y with z fixed at 0."""
        placement = compose_placement(BaseTransform(1.0))
        composed = compose_transform(placement, InteractionTransform(1.0, 0.3, -0.7))
        assert composed.wrapper_rotation == Vec3(0.3, -0.7, 0.0)
        assert composed.model is placement


def test_clamp():
    """Test clamping into the user scale range."""
    assert clamp(5.0, MIN_USER_SCALE, MAX_USER_SCALE) == MAX_USER_SCALE
    assert clamp(0.0, MIN_USER_SCALE, MAX_USER_SCALE) == MIN_USER_SCALE
    assert clamp(1.2, MIN_USER_SCALE, MAX_USER_SCALE) == 1.2
