"""The source module.

This module resolves an Application's repository, path and revision into a
`DesiredManifestSet`. Git repositories are mirrored into a local cache with
GitPython; plain local directories are read directly.
"""

from .adapter import SourceAdapter, SourceConfig
from .loader import load_manifests

__all__ = [
    "SourceAdapter",
    "SourceConfig",
    "load_manifests",
]
