import pytest

from config.feature_flags import set_flag
from paracore_test_utils import RecordingKernel


# Global Feature Flag Defaults - Single Source of Truth for Test Isolation
# ========================================================================
# Every test starts from clean feature flags.
# Keep these defaults in sync with config/feature_flags.py.
FEATURE_FLAG_DEFAULTS = {
    # Debug modes
    "solver_debug": False,
    "regeneration_debug": False,
    "curve_debug": False,

    # Solver
    "solver_find_redundant": True,
    "solver_banded_solve": True,

    # Interactive curve operations
    "tangent_arc_modify_original": True,
    "split_keep_construction": True,
}


@pytest.fixture(autouse=True)
def _global_feature_flag_isolation():
    """
    Global feature flag isolation.

    Makes sure every test starts with clean, deterministic feature flags,
    so a test that flips a flag cannot leak into the next one.
    """
    # Pre-test: reset all flags to their defaults
    for key, value in FEATURE_FLAG_DEFAULTS.items():
        set_flag(key, value)

    yield

    # Post-test: reset all flags to their defaults (cleanup)
    for key, value in FEATURE_FLAG_DEFAULTS.items():
        set_flag(key, value)


@pytest.fixture
def kernel():
    """Solid kernel fake that records every call."""
    return RecordingKernel()


@pytest.fixture
def doc(kernel):
    """Fresh document (references group only) on the recording kernel."""
    from modeling.document import Document
    return Document(name="test", kernel=kernel)


@pytest.fixture
def sketch_xy(doc):
    """Workplane sketch group on the XY reference plane."""
    return doc.new_sketch("XY")
