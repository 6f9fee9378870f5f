"""Kubernetes API access and the broker port-forward tunnel."""
