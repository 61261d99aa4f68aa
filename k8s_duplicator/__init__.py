"""
k8s-duplicator

Mirrors annotated Kubernetes Secrets into every namespace of a cluster
and keeps the copies in sync with their source.
"""

__version__ = "0.3.0"
