"""
crdwise - CRD-aware lifecycle engine for Kubernetes packs.

crdwise installs, upgrades and removes bundles of manifests ("packs") with
special handling for CustomResourceDefinitions:
- Deterministic, tiered installation plans across pack dependencies
- Schema diffs that classify every CRD change by severity
- Per-CRD ownership and policy (managed, shared, external)
- Readiness waits before custom resources are applied
- Deletion protection for CRDs that still have live instances

Example usage:
    $ crdwise plan ./my-pack --release demo
    $ crdwise install ./my-pack --release demo --kube-url https://127.0.0.1:6443
    $ crdwise diff ./my-pack --kube-url https://127.0.0.1:6443
"""

__version__ = "0.1.0"
__author__ = "crdwise Contributors"

__all__ = [
    "__version__",
    "__author__",
]
