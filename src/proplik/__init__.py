from importlib import metadata

try:
    __version__ = metadata.version("proplik")
except Exception:
    __version__ = "unknown"

from .opt import (
    Parameter,
    LinearConstraints,
    ParameterSet,
    Property,
    PropertySet,
    ProfileOptions,
    get_multi_starts,
    compute_profiles,
)
