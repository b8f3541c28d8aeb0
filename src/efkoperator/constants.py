"""Global constants."""

from datetime import timedelta
from pathlib import Path

__all__ = [
    "CONFIGURATION_PATH",
    "CONFIG_HASH_ANNOTATION",
    "CONFIG_UPDATED_ANNOTATION",
    "DEFAULT_NAMESPACE",
    "DEFAULT_TOLERATED_EFFECTS",
    "EFKSTACK_GROUP",
    "EFKSTACK_KIND",
    "EFKSTACK_PLURAL",
    "EFKSTACK_VERSION",
    "ELASTICSEARCH_INDEX",
    "ELASTICSEARCH_PORT",
    "ERROR_REQUEUE_DELAY",
    "FINGERPRINT_LENGTH",
    "HELM_INIT_REQUEUE_DELAY",
    "INGRESS_CLASS_ANNOTATION",
    "INSTANCE_LABEL",
    "KUBERNETES_REQUEST_TIMEOUT",
    "NOT_READY_REQUEUE_DELAY",
    "READY_REQUEUE_DELAY",
    "RELEASE_DEPLOYED",
    "RELEASE_NOT_FOUND",
    "WATCH_RESTART_DELAY",
    "WATCH_TIMEOUT",
]

CONFIGURATION_PATH = Path("/etc/efk-operator/config.yaml")
"""Default path to operator configuration."""

CONFIG_HASH_ANNOTATION = "efk.crds.io/config-hash"
"""Pod template annotation holding the fingerprint of release configuration.

Changing the value of this annotation changes the pod template, which causes
Kubernetes to roll out new pods for the workload.
"""

CONFIG_UPDATED_ANNOTATION = "efk.crds.io/config-updated"
"""Pod template annotation holding the time the fingerprint last changed."""

DEFAULT_NAMESPACE = "default"
"""Namespace used if neither the stack nor the request specify one."""

DEFAULT_TOLERATED_EFFECTS = ("NoSchedule", "NoExecute", "PreferNoSchedule")
"""Taint effects tolerated by components that must run on every node.

Fluent Bit runs as a ``DaemonSet`` and has to collect logs from every node,
including control plane nodes and nodes tainted for special workloads, so if
the user doesn't provide tolerations it tolerates all taints with these
effects.
"""

EFKSTACK_GROUP = "logging.efk.crds.io"
"""API group of the ``EFKStack`` custom resource."""

EFKSTACK_KIND = "EFKStack"
"""Kind of the ``EFKStack`` custom resource."""

EFKSTACK_PLURAL = "efkstacks"
"""API plural of the ``EFKStack`` custom resource."""

EFKSTACK_VERSION = "v1"
"""API version of the ``EFKStack`` custom resource."""

ELASTICSEARCH_INDEX = "fluent-bit"
"""Elasticsearch index to which Fluent Bit ships logs."""

ELASTICSEARCH_PORT = 9200
"""Port of the Elasticsearch HTTP service created by the chart."""

ERROR_REQUEUE_DELAY = timedelta(seconds=5)
"""How long to wait before retrying after a failed reconcile."""

FINGERPRINT_LENGTH = 16
"""Number of hex digits of the configuration digest to keep."""

HELM_INIT_REQUEUE_DELAY = timedelta(seconds=10)
"""How long to wait before retrying if a Helm session could not be created."""

INGRESS_CLASS_ANNOTATION = "kubernetes.io/ingress.class"
"""Legacy annotation promoted to ``className`` in the Kibana ingress values."""

INSTANCE_LABEL = "app.kubernetes.io/instance"
"""Label Helm charts put on every object belonging to a release."""

KUBERNETES_REQUEST_TIMEOUT = timedelta(seconds=30)
"""How long to wait for generic sequences of Kubernetes API calls.

This imposes an upper limit on how long we'll wait if the control plane is
nonresponsive. Each storage operation gets its own timeout of this length.
"""

NOT_READY_REQUEUE_DELAY = timedelta(seconds=5)
"""How frequently to reconcile a stack that is still converging."""

READY_REQUEUE_DELAY = timedelta(seconds=30)
"""How frequently to reconcile a stack once all components are ready."""

RELEASE_DEPLOYED = "deployed"
"""Helm release status for a successfully deployed release."""

RELEASE_NOT_FOUND = "NotFound"
"""Status reported for a Helm release that does not exist."""

WATCH_RESTART_DELAY = timedelta(seconds=1)
"""How long to wait before restarting a watch that failed."""

WATCH_TIMEOUT = timedelta(minutes=10)
"""How long a single Kubernetes watch runs before being restarted.

This can prevent the connection from unexpectedly getting closed, resulting
in 400 errors, or worse, events silently stopping.
"""
