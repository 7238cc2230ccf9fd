"""
ParaCore - Feature Flags
========================

Feature flags allow incremental rollout and easy rollback.
New behavior is introduced behind a flag and becomes the default after validation.

This file only holds the active debug flags and behavior switches.
"""

from typing import Dict

FEATURE_FLAGS: Dict[str, bool] = {
    # Debug modes
    "solver_debug": False,  # Newton iteration detail ([Solver])
    "regeneration_debug": False,  # Per-group pipeline detail ([Regen])
    "curve_debug": False,  # Tangent arc / split iteration detail ([TangentArc], [Split])

    # Solver
    "solver_find_redundant": True,  # Search for the constraints that make the Jacobian rank deficient
    "solver_banded_solve": True,  # Use the banded elimination when J*J^T fits the band

    # Interactive curve operations
    "tangent_arc_modify_original": True,  # Trim the original curves instead of keeping them as construction
    "split_keep_construction": True,  # Construction requests survive a split
}


def is_enabled(flag: str) -> bool:
    """
    Checks whether a feature flag is enabled.

    Args:
        flag: Name of the feature flag

    Returns:
        True if enabled, False if disabled or unknown
    """
    return FEATURE_FLAGS.get(flag, False)


def set_flag(flag: str, value: bool) -> None:
    """
    Sets a feature flag at runtime.
    Useful for tests and debugging.
    """
    FEATURE_FLAGS[flag] = value


def get_all_flags() -> Dict[str, bool]:
    """Returns a copy of all feature flags."""
    return FEATURE_FLAGS.copy()
