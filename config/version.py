"""
ParaCore - Version information
==============================

All version information is maintained here.
Import: from config.version import VERSION, VERSION_STRING, APP_NAME
"""

# Semantic Versioning: MAJOR.MINOR.PATCH
VERSION_MAJOR = 0
VERSION_MINOR = 3
VERSION_PATCH = 0

# Release type: "alpha", "beta", "rc1", "" for a stable release
VERSION_SUFFIX = "alpha"

APP_NAME = "ParaCore"

VERSION = f"{VERSION_MAJOR}.{VERSION_MINOR}.{VERSION_PATCH}"
VERSION_STRING = f"{VERSION}-{VERSION_SUFFIX}" if VERSION_SUFFIX else VERSION
