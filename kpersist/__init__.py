"""kpersist: persist the lifecycle of watched Kubernetes entities to disk."""

__version__ = "0.1.0"
