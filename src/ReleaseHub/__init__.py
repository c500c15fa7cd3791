"""
ReleaseHub: aggregation of CI builds and signed access to their artifacts.

Submodules are imported lazily by their callers; the package root only
exposes the version and the service entry point.
"""

from ReleaseHub.service import Service, build_service

__version__ = "0.1.0"

__all__ = ["Service", "build_service", "__version__"]
