"""lldap CI - build and publish orchestration for lldap.

This package compiles the lldap binaries for several architectures,
bundles the web frontend, and publishes multi-arch container images and
release assets from the resulting artifacts.
"""

__version__ = "0.1.0"
__all__ = ["__version__"]
