"""Shared process state - thread-safe holder for the Kubernetes client."""

import threading
from dataclasses import dataclass, field

from kubernetes import config as k8s_config

from kube_client import KubeClient


@dataclass
class OperatorState:
    """Thread-safe process state container.

    Handlers run in kopf's thread pool, so the Kubernetes configuration is
    loaded once under the lock and the client is created lazily on first use.
    All handlers should use the global `state` instance rather than
    creating their own clients.
    """

    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)
    _kube_client: KubeClient | None = field(default=None, repr=False)
    _k8s_configured: bool = field(default=False, repr=False)

    def _ensure_k8s_config(self) -> None:
        """Ensure Kubernetes configuration is loaded (must hold lock)."""
        if not self._k8s_configured:
            try:
                k8s_config.load_incluster_config()
            except k8s_config.ConfigException:
                k8s_config.load_kube_config()
            self._k8s_configured = True

    def get_kube_client(self) -> KubeClient:
        """Get or create the Kubernetes client wrapper (thread-safe)."""
        with self._lock:
            self._ensure_k8s_config()
            if self._kube_client is None:
                self._kube_client = KubeClient()
            return self._kube_client

    def close(self) -> None:
        """Drop the client so a restart reconnects."""
        with self._lock:
            self._kube_client = None


# Global process state singleton
state = OperatorState()


def get_kube_client() -> KubeClient:
    """Get the shared Kubernetes client wrapper."""
    return state.get_kube_client()
