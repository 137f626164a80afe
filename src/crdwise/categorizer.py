"""
Resource categorizer.

Maps a rendered manifest to the ResourceCategory that decides where it
lands in an installation plan. The kind table below is the single source of
ordering truth for built-in kinds.
"""

from crdwise.schema import CRD_KIND, Manifest, ResourceCategory


# API groups served by the cluster itself. A kind outside the table whose
# group is in this set is "other"; any other group means a custom resource.
BUILTIN_GROUPS = frozenset({
    "",
    "v1",
    "apps",
    "batch",
    "autoscaling",
    "policy",
    "networking.k8s.io",
    "rbac.authorization.k8s.io",
    "storage.k8s.io",
    "admissionregistration.k8s.io",
    "apiextensions.k8s.io",
    "apiregistration.k8s.io",
    "certificates.k8s.io",
    "coordination.k8s.io",
    "discovery.k8s.io",
    "events.k8s.io",
    "flowcontrol.apiserver.k8s.io",
    "node.k8s.io",
    "scheduling.k8s.io",
})

KIND_CATEGORIES: dict[str, ResourceCategory] = {
    CRD_KIND: ResourceCategory.CRD,
    "Namespace": ResourceCategory.NAMESPACE,
    "ClusterRole": ResourceCategory.CLUSTER_SCOPED_RBAC,
    "ClusterRoleBinding": ResourceCategory.CLUSTER_SCOPED_RBAC,
    "ServiceAccount": ResourceCategory.SERVICE_ACCOUNT,
    "Role": ResourceCategory.SERVICE_ACCOUNT,
    "RoleBinding": ResourceCategory.SERVICE_ACCOUNT,
    "ConfigMap": ResourceCategory.CONFIG_MAP,
    "Secret": ResourceCategory.SECRET,
    "Service": ResourceCategory.SERVICE,
    "Endpoints": ResourceCategory.SERVICE,
    "Ingress": ResourceCategory.SERVICE,
    "Deployment": ResourceCategory.WORKLOAD,
    "StatefulSet": ResourceCategory.WORKLOAD,
    "DaemonSet": ResourceCategory.WORKLOAD,
    "ReplicaSet": ResourceCategory.WORKLOAD,
    "ReplicationController": ResourceCategory.WORKLOAD,
    "Pod": ResourceCategory.WORKLOAD,
    "Job": ResourceCategory.WORKLOAD,
    "CronJob": ResourceCategory.WORKLOAD,
}


def api_group(api_version: str) -> str:
    """Return the group part of an apiVersion ("" for the core group)."""
    if "/" not in api_version:
        return ""
    return api_version.split("/", 1)[0]


def is_builtin_group(group: str) -> bool:
    return group in BUILTIN_GROUPS


def categorize(manifest: Manifest) -> ResourceCategory:
    """
    Classify a manifest.

    Pure and total: every manifest maps to exactly one category.
    """
    category = KIND_CATEGORIES.get(manifest.kind)
    if category is not None:
        return category
    if is_builtin_group(api_group(manifest.api_version)):
        return ResourceCategory.OTHER
    return ResourceCategory.CUSTOM_RESOURCE
