"""
Unit tests for vector primitives.

Tests polar conversion, frame rotation and variance propagation.
"""

import math
import sys
from pathlib import Path

import numpy as np
import pytest

sys.path.insert(0, str(Path(__file__).parent.parent))

from speedcurrent.vectors import (
    KNOTS_PER_MS,
    Vector2,
    angle_difference,
    knots_to_ms,
    ms_to_knots,
    rotate,
    rotate_variance,
    to_polar,
    to_vector,
    wrap_angle,
)


def rotation_matrix(angle):
    c, s = math.cos(angle), math.sin(angle)
    return np.array([[c, s], [-s, c]])


class TestVector2:
    """Unit tests for Vector2."""

    def test_polar_round_trip(self):
        """Test magnitude/angle survive conversion to Cartesian and back."""
        v = to_vector(3.2, 0.7)
        magnitude, angle = to_polar(v)

        assert magnitude == pytest.approx(3.2)
        assert angle == pytest.approx(0.7)

    def test_arithmetic(self):
        """Test componentwise addition, subtraction and negation."""
        a = Vector2(1.0, 2.0)
        b = Vector2(0.5, -1.0)

        assert a + b == Vector2(1.5, 1.0)
        assert a - b == Vector2(0.5, 3.0)
        assert -a == Vector2(-1.0, -2.0)

    def test_from_array(self):
        """Test building from a column vector."""
        v = Vector2.from_array(np.array([[0.1], [0.2]]))

        assert v == Vector2(0.1, 0.2)
        np.testing.assert_array_equal(v.to_array(), [0.1, 0.2])

    def test_is_finite(self):
        assert Vector2(1.0, 2.0).is_finite()
        assert not Vector2(math.nan, 0.0).is_finite()
        assert not Vector2(0.0, math.inf).is_finite()

    def test_zero_vector(self):
        v = Vector2()
        assert v.magnitude == 0.0
        assert v.angle == 0.0


class TestRotate:
    """Unit tests for frame rotation."""

    def test_quarter_turn(self):
        """Test rotating x by +90 degrees gives -y."""
        v = rotate(Vector2(1.0, 0.0), math.pi / 2)

        assert v.x == pytest.approx(0.0, abs=1e-12)
        assert v.y == pytest.approx(-1.0)

    def test_ground_to_boat_frame(self):
        """Test a velocity along the heading becomes pure surge."""
        heading = 0.7
        ground = Vector2.from_polar(3.0, heading)
        boat = rotate(ground, heading)

        assert boat.x == pytest.approx(3.0)
        assert boat.y == pytest.approx(0.0, abs=1e-12)

    @pytest.mark.parametrize("angle", [0.0, 0.3, -1.2, math.pi, 5.0, -7.5])
    @pytest.mark.parametrize("vector", [Vector2(1.0, 0.0), Vector2(-2.5, 0.7), Vector2(0.01, -4.0)])
    def test_round_trip(self, vector, angle):
        """Test rotating forward then back returns the original vector."""
        back = rotate(rotate(vector, angle), -angle)

        assert back.x == pytest.approx(vector.x, abs=1e-9)
        assert back.y == pytest.approx(vector.y, abs=1e-9)

    def test_preserves_magnitude(self):
        v = Vector2(3.0, -4.0)
        assert rotate(v, 1.1).magnitude == pytest.approx(5.0)


class TestRotateVariance:
    """Unit tests for covariance propagation through rotation."""

    @pytest.mark.parametrize("angle", [0.0, 0.4, math.pi / 2, 2.0, -0.9])
    def test_matches_matrix_form(self, angle):
        """Test result equals R^T diag(v) R for the rotation used by rotate()."""
        variance = (0.04, 0.01)
        r = rotation_matrix(angle)
        expected = r.T @ np.diag(variance) @ r

        np.testing.assert_allclose(rotate_variance(variance, angle), expected, atol=1e-15)

    def test_off_diagonal_sign(self):
        """Test the cross term is (var_x - var_y) * cos * sin."""
        cov = rotate_variance((1.0, 0.0), math.pi / 4)

        assert cov[0, 1] == pytest.approx(0.5)
        assert cov[0, 0] == pytest.approx(0.5)
        assert cov[1, 1] == pytest.approx(0.5)

    def test_symmetric(self):
        cov = rotate_variance((0.3, 0.1), 0.8)
        assert cov[0, 1] == cov[1, 0]

    def test_isotropic_unchanged(self):
        """Test equal variances are rotation invariant."""
        cov = rotate_variance((0.02, 0.02), 1.3)
        np.testing.assert_allclose(cov, 0.02 * np.eye(2), atol=1e-15)

    def test_trace_preserved(self):
        cov = rotate_variance((0.5, 0.2), 2.2)
        assert np.trace(cov) == pytest.approx(0.7)


class TestAngles:
    """Unit tests for angle wrapping."""

    def test_wrap_negative(self):
        assert wrap_angle(-0.1) == pytest.approx(2 * math.pi - 0.1)

    def test_wrap_full_turn(self):
        assert wrap_angle(2 * math.pi) == pytest.approx(0.0)
        assert wrap_angle(4 * math.pi + 0.5) == pytest.approx(0.5)

    def test_wrap_tiny_negative_stays_below_period(self):
        assert 0.0 <= wrap_angle(-1e-20) < 2 * math.pi

    def test_wrap_custom_period(self):
        assert wrap_angle(370.0, 360.0) == pytest.approx(10.0)

    def test_difference_across_north(self):
        """Test the shortest arc is taken across zero."""
        assert angle_difference(0.1, 2 * math.pi - 0.1) == pytest.approx(0.2)
        assert angle_difference(2 * math.pi - 0.1, 0.1) == pytest.approx(-0.2)

    def test_difference_half_turn(self):
        """Test a half turn maps to the lower end of the range."""
        assert angle_difference(math.pi, 0.0) == pytest.approx(-math.pi)


class TestUnits:
    def test_knots_round_trip(self):
        assert ms_to_knots(knots_to_ms(6.5)) == pytest.approx(6.5)

    def test_one_knot(self):
        assert knots_to_ms(KNOTS_PER_MS) == pytest.approx(1.0)
