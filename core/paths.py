"""Well-known node filesystem locations.

These follow kubeadm's own conventions and are not configurable.
"""

KUBERNETES_DIR = "/etc/kubernetes"
ADMIN_CONF = f"{KUBERNETES_DIR}/admin.conf"
CLUSTER_CA_CERT = f"{KUBERNETES_DIR}/pki/ca.crt"
STATIC_POD_DIR = f"{KUBERNETES_DIR}/manifests"

KUBELET_DIR = "/var/lib/kubelet"
KUBELET_CONFIG = f"{KUBELET_DIR}/config.yaml"
KUBELET_DEFAULTS = "/etc/default/kubelet"

CNI_CONF_DIR = "/etc/cni/net.d"

KUBEADM_CONFIG = "/tmp/kubeadm-config.yaml"
OVERLAY_MANIFEST = "/tmp/kube-flannel.yml"

BACKUP_DIR = "/var/backups/kubern"


def user_kube_dir(home: str) -> str:
    return f"{home.rstrip('/')}/.kube"


def user_kubeconfig(home: str) -> str:
    return f"{user_kube_dir(home)}/config"
