"""
test_quantity_resolver.py — Unit tests for effective quantity resolution.

Tests cover:
  - Work-like items keep their entered quantity
  - Linked materials: work quantity × consumption × conversion
  - Unlinked materials: base_quantity × consumption, conversion ignored
  - Coefficient precedence (item, then link copy, then 1)
  - Coefficient floors, non-finite input, storage ceiling and dangling links
"""

import pytest

from tender_estimator.config import MAX_STORED_QUANTITY
from tender_estimator.services.errors import (
    DanglingLinkError,
    QuantityOverflowError,
    ValidationError,
)
from tender_estimator.services.quantity_resolver import (
    check_ceiling,
    effective_coefficients,
    resolve_quantity,
    validate_coefficients,
)


# ===========================================================================
# Class 1: Work-like items
# ===========================================================================

class TestWorkQuantity:
    """Works and sub-works are never derived."""

    def test_work_returns_entered_quantity(self, make_work):
        assert resolve_quantity(make_work(quantity=42.5)) == 42.5

    def test_sub_work_returns_entered_quantity(self, make_work):
        sub_work = make_work("SW1", quantity=7.0, kind="sub_work")
        assert resolve_quantity(sub_work) == 7.0

    def test_work_above_ceiling_rejected(self, make_work):
        with pytest.raises(QuantityOverflowError):
            resolve_quantity(make_work(quantity=MAX_STORED_QUANTITY * 2))


# ===========================================================================
# Class 2: Linked materials
# ===========================================================================

class TestLinkedQuantity:
    """quantity = work.quantity × consumption × conversion"""

    def test_coefficient_propagation(self, make_work, make_material, make_link):
        work = make_work(quantity=10.0)
        material = make_material(base_quantity=None, consumption=2.0, conversion=1.5)
        link = make_link(work, material)
        assert resolve_quantity(material, link, work) == pytest.approx(30.0)

    def test_work_edit_changes_dependent_quantity(self, make_work, make_material, make_link):
        work = make_work(quantity=10.0)
        material = make_material(base_quantity=None, consumption=2.0)
        link = make_link(work, material)
        before = resolve_quantity(material, link, work)
        after = resolve_quantity(material, link, work.copy(quantity=25.0))
        assert before == pytest.approx(20.0)
        assert after == pytest.approx(50.0)

    def test_zero_conversion_counts_as_unset(self, make_work, make_material, make_link):
        work = make_work(quantity=10.0)
        material = make_material(base_quantity=None)
        link = make_link(work, material, conversion=0.0)
        # Item value 0 counts as unset; link copy 0 falls through to 1
        assert resolve_quantity(material.copy(conversion_coefficient=0.0), link, work) == pytest.approx(10.0)

    def test_linked_ignores_base_quantity(self, make_work, make_material, make_link):
        work = make_work(quantity=4.0)
        material = make_material(base_quantity=999.0, consumption=1.5)
        link = make_link(work, material)
        assert resolve_quantity(material, link, work) == pytest.approx(6.0)

    def test_missing_work_is_dangling(self, make_work, make_material, make_link):
        work = make_work()
        material = make_material(base_quantity=None)
        link = make_link(work, material)
        with pytest.raises(DanglingLinkError):
            resolve_quantity(material, link, None)

    def test_wrong_work_is_dangling(self, make_work, make_material, make_link):
        work = make_work("W1")
        other = make_work("W2")
        material = make_material(base_quantity=None)
        link = make_link(work, material)
        with pytest.raises(DanglingLinkError):
            resolve_quantity(material, link, other)

    def test_work_kind_changed_is_dangling(self, make_work, make_material, make_link):
        work = make_work("W1")
        material = make_material(base_quantity=None)
        link = make_link(work, material)
        with pytest.raises(DanglingLinkError):
            resolve_quantity(material, link, work.copy(kind="sub_work"))

    def test_overflow_guard(self, make_work, make_material, make_link):
        work = make_work(quantity=60_000_000.0)
        material = make_material(base_quantity=None, consumption=2.0)
        link = make_link(work, material)
        with pytest.raises(OverflowError):
            resolve_quantity(material, link, work)


# ===========================================================================
# Class 3: Unlinked materials
# ===========================================================================

class TestUnlinkedQuantity:
    """quantity = base_quantity × consumption"""

    def test_unlinked_quantity(self, make_material):
        material = make_material(base_quantity=5.0, consumption=3.0)
        assert resolve_quantity(material) == pytest.approx(15.0)

    def test_conversion_has_no_effect(self, make_material):
        plain = make_material(base_quantity=5.0, consumption=3.0, conversion=1.0)
        scaled = make_material(base_quantity=5.0, consumption=3.0, conversion=4.0)
        assert resolve_quantity(plain) == resolve_quantity(scaled)

    def test_legacy_row_without_base_quantity(self, make_material):
        material = make_material(base_quantity=None, quantity=12.0, consumption=2.0)
        assert resolve_quantity(material) == 12.0

    def test_overflow_guard(self, make_material):
        material = make_material(base_quantity=MAX_STORED_QUANTITY, consumption=1.5)
        with pytest.raises(QuantityOverflowError) as exc_info:
            resolve_quantity(material)
        assert exc_info.value.ceiling == MAX_STORED_QUANTITY


# ===========================================================================
# Class 4: Coefficients
# ===========================================================================

class TestCoefficients:

    def test_consumption_below_one_rejected(self):
        with pytest.raises(ValidationError) as exc_info:
            validate_coefficients(0.5, 1.0)
        assert exc_info.value.field == "consumption_coefficient"

    def test_negative_conversion_rejected(self):
        with pytest.raises(ValidationError) as exc_info:
            validate_coefficients(1.0, -0.1)
        assert exc_info.value.field == "conversion_coefficient"

    def test_floor_values_accepted(self):
        validate_coefficients(1.0, 0.0)

    @pytest.mark.parametrize("consumption,conversion,field", [
        (float("nan"), 1.0, "consumption_coefficient"),
        (float("inf"), 1.0, "consumption_coefficient"),
        (1.0, float("nan"), "conversion_coefficient"),
    ])
    def test_non_finite_rejected(self, consumption, conversion, field):
        with pytest.raises(ValidationError) as exc_info:
            validate_coefficients(consumption, conversion)
        assert exc_info.value.field == field

    def test_nan_quantity_is_not_stored(self, make_work):
        with pytest.raises(ValidationError):
            check_ceiling(float("nan"))
        with pytest.raises(ValidationError):
            resolve_quantity(make_work(quantity=float("nan")))

    def test_item_value_wins(self, make_work, make_material, make_link):
        material = make_material(consumption=2.0, conversion=3.0)
        link = make_link(make_work(), material, consumption=5.0, conversion=6.0)
        assert effective_coefficients(material, link) == (2.0, 3.0)

    def test_link_copy_when_item_unset(self, make_work, make_material, make_link):
        material = make_material()
        link = make_link(make_work(), material, consumption=5.0, conversion=6.0)
        unset = material.copy(consumption_coefficient=None, conversion_coefficient=None)
        assert effective_coefficients(unset, link) == (5.0, 6.0)

    def test_defaults_to_one(self, make_material):
        unset = make_material().copy(consumption_coefficient=None, conversion_coefficient=None)
        assert effective_coefficients(unset) == (1.0, 1.0)
