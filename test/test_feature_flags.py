"""
Feature Flags Tests - the flag registry and the defaults the engine runs with
"""

import pytest
from config.feature_flags import (
    is_enabled,
    set_flag,
    get_all_flags,
    FEATURE_FLAGS
)
from conftest import FEATURE_FLAG_DEFAULTS

pytestmark = [pytest.mark.fast]


class TestFeatureFlagsBasic:

    def test_is_enabled_existing_flag_true(self):
        assert is_enabled("solver_find_redundant") is True

    def test_is_enabled_existing_flag_false(self):
        assert is_enabled("solver_debug") is False

    def test_is_enabled_nonexistent_flag(self):
        """Unknown flags read as disabled."""
        assert is_enabled("nonexistent_flag_xyz123") is False

    def test_get_all_flags_returns_copy(self):
        flags = get_all_flags()
        flags["new_flag"] = True
        assert "new_flag" not in FEATURE_FLAGS

    def test_set_flag_runtime(self):
        set_flag("runtime_test_flag", True)
        assert is_enabled("runtime_test_flag") is True

        set_flag("runtime_test_flag", False)
        assert is_enabled("runtime_test_flag") is False

        # Cleanup
        del FEATURE_FLAGS["runtime_test_flag"]


class TestDefaults:

    def test_debug_modes_off(self):
        for flag in ("solver_debug", "regeneration_debug", "curve_debug"):
            assert is_enabled(flag) is False, f"Debug flag {flag} should be off"

    def test_behavior_switches_on(self):
        for flag in ("solver_find_redundant", "solver_banded_solve",
                     "tangent_arc_modify_original", "split_keep_construction"):
            assert is_enabled(flag) is True, f"Flag {flag} should be on"

    def test_test_defaults_match_registry(self):
        """The isolation fixture must know every flag, with its shipped value."""
        assert get_all_flags() == FEATURE_FLAG_DEFAULTS


def test_flag_changes_do_not_leak_part_1():
    set_flag("solver_banded_solve", False)
    assert is_enabled("solver_banded_solve") is False


def test_flag_changes_do_not_leak_part_2():
    assert is_enabled("solver_banded_solve") is True
