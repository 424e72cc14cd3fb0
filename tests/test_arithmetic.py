"""Tests for checked integer arithmetic."""
import pytest

from django_isa.arithmetic import (
    AMOUNT_MAX,
    WIDE_MAX,
    checked_add,
    checked_div,
    checked_mul,
    checked_sub,
    mul_div,
    saturating_sub,
)
from django_isa.exceptions import ArithmeticOverflow, IsaError


class TestCheckedAdd:

    def test_adds(self):
        assert checked_add(2, 3) == 5

    def test_at_limit(self):
        """Reaching AMOUNT_MAX exactly should be allowed."""
        assert checked_add(AMOUNT_MAX - 1, 1) == AMOUNT_MAX

    def test_overflow(self):
        with pytest.raises(ArithmeticOverflow):
            checked_add(AMOUNT_MAX, 1)

    def test_wide_limit(self):
        """The wide accumulator should hold sums past AMOUNT_MAX."""
        assert checked_add(AMOUNT_MAX, AMOUNT_MAX, limit=WIDE_MAX) == 2 * AMOUNT_MAX

    def test_rejects_negative_operand(self):
        with pytest.raises(ArithmeticOverflow):
            checked_add(-1, 5)

    def test_overflow_is_isa_error(self):
        with pytest.raises(IsaError):
            checked_add(AMOUNT_MAX, AMOUNT_MAX)


class TestCheckedSub:

    def test_subtracts(self):
        assert checked_sub(10, 4) == 6

    def test_to_zero(self):
        assert checked_sub(4, 4) == 0

    def test_underflow(self):
        with pytest.raises(ArithmeticOverflow):
            checked_sub(3, 4)


class TestCheckedMulDiv:

    def test_mul(self):
        assert checked_mul(2000, 10) == 20000

    def test_mul_overflow(self):
        with pytest.raises(ArithmeticOverflow):
            checked_mul(AMOUNT_MAX, 2)

    def test_mul_wide(self):
        assert checked_mul(AMOUNT_MAX, AMOUNT_MAX, limit=WIDE_MAX) == AMOUNT_MAX ** 2

    def test_div_floors(self):
        assert checked_div(7, 2) == 3

    def test_div_by_zero(self):
        """A zero divisor should raise instead of ZeroDivisionError."""
        with pytest.raises(ArithmeticOverflow):
            checked_div(1, 0)

    def test_saturating_sub_clamps_at_zero(self):
        assert saturating_sub(300, 200) == 100
        assert saturating_sub(200, 300) == 0
        assert saturating_sub(5, 5) == 0


class TestMulDiv:

    def test_multiplies_before_dividing(self):
        """Dividing first would lose the whole share: 600 // 1000 == 0."""
        assert mul_div(150, 600, 1000) == 90
        assert mul_div(150, 400, 1000) == 60

    def test_floors_result(self):
        assert mul_div(100, 1, 3) == 33

    def test_large_values_stay_exact(self):
        """Products past AMOUNT_MAX are fine inside the wide range."""
        assert mul_div(AMOUNT_MAX, AMOUNT_MAX, AMOUNT_MAX) == AMOUNT_MAX

    def test_product_past_wide_range(self):
        with pytest.raises(ArithmeticOverflow):
            mul_div(WIDE_MAX, 2, 1)

    def test_zero_divisor(self):
        with pytest.raises(ArithmeticOverflow):
            mul_div(1, 1, 0)
