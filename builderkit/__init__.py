"""Builder store, platforms, build flags, progress events, drivers and Kubernetes manifests."""

__version__ = "0.1.0"