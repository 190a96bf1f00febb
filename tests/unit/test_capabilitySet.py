"""
Unit tests for CapabilitySet and requirement normalisation.
"""

import pytest

from towmech.algorithms.capabilitySet import CapabilitySet, normalize_requirement


class TestNormalizeRequirement:

    @pytest.mark.parametrize("value", [None, "", "   ", "null", "NULL", "undefined", "None"])
    def test_absent_values_mean_no_requirement(self, value):
        assert normalize_requirement(value) is None

    def test_strips_whitespace(self):
        assert normalize_requirement("  Flatbed ") == "Flatbed"

    def test_keeps_case(self):
        assert normalize_requirement("Rollback") == "Rollback"


class TestStrictCapabilitySet:
    """Tow-truck types: an empty set supports nothing."""

    def test_member_is_supported(self):
        caps = CapabilitySet.strict(["Flatbed", "Hook and Chain"])
        assert caps.supports("Flatbed") is True

    def test_non_member_is_not_supported(self):
        caps = CapabilitySet.strict(["Hook and Chain"])
        assert caps.supports("Flatbed") is False

    def test_empty_supports_no_specific_type(self):
        caps = CapabilitySet.strict([])
        assert caps.is_universal is False
        assert caps.supports("Flatbed") is False

    def test_no_requirement_always_supported(self):
        assert CapabilitySet.strict([]).supports(None) is True
        assert CapabilitySet.strict([]).supports("null") is True

    def test_members_are_normalized(self):
        caps = CapabilitySet.strict([" Flatbed ", "", "undefined", None])
        assert caps.members == frozenset({"Flatbed"})
        assert len(caps) == 1

    def test_requirement_is_normalized(self):
        caps = CapabilitySet.strict(["Flatbed"])
        assert caps.supports("  Flatbed  ") is True


class TestUniversalWhenEmptyCapabilitySet:
    """Vehicle types: an empty set supports every vehicle."""

    def test_empty_supports_everything(self):
        caps = CapabilitySet.universal_when_empty([])
        assert caps.is_universal is True
        assert caps.supports("SUV") is True

    def test_none_is_treated_as_empty(self):
        assert CapabilitySet.universal_when_empty(None).supports("Bakkie") is True

    def test_declared_types_restrict(self):
        caps = CapabilitySet.universal_when_empty(["Sedan", "Hatchback"])
        assert caps.is_universal is False
        assert caps.supports("Sedan") is True
        assert caps.supports("Truck") is False

    def test_only_placeholder_entries_count_as_empty(self):
        caps = CapabilitySet.universal_when_empty(["null", " "])
        assert caps.is_universal is True
