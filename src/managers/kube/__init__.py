from managers.kube.manager import KubernetesResourceManager

__all__ = ["KubernetesResourceManager"]
