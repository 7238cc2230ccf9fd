"""
ParaCore - Configuration Module
===============================

Central configuration: numeric tolerances, iteration caps and feature flags.
"""

from .tolerances import Tolerances, is_zero_length, points_coincident, solver_converged
from .feature_flags import is_enabled, set_flag, get_all_flags, FEATURE_FLAGS
