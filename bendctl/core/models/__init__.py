"""
Domain models — pydantic and dataclass types for bendctl.

All models are re-exported here for convenient access:

    from bendctl.core.models import InstalledVersion, VersionIndex, Platform
"""

from bendctl.core.models.config import DEFAULT_PLATFORMS, CtlConfig
from bendctl.core.models.profile import Profile
from bendctl.core.models.release import Platform, ReleaseRef
from bendctl.core.models.version import InstalledVersion, VersionIndex

__all__ = [
    # config.py
    "CtlConfig",
    "DEFAULT_PLATFORMS",
    # version.py
    "InstalledVersion",
    # release.py
    "Platform",
    # profile.py
    "Profile",
    "ReleaseRef",
    "VersionIndex",
]
