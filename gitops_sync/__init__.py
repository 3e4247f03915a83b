"""
gitops-sync keeps Kubernetes clusters in sync with manifests stored in git.

An `Application` points at a directory of manifests in a git repository and
a destination namespace on a cluster. The `reconciler.Reconciler` resolves
the manifests, reads the live objects tracked by the Application, computes a
field level diff and applies it according to the Application's sync policy.
"""

__all__ = [
    "cluster",
    "config",
    "exceptions",
    "manifest",
    "reconciler",
    "registry",
    "resource_diff",
    "source",
    "sync",
    # Note this is exposed for CLI documentation, not to be used as a library
    "tool",
]
