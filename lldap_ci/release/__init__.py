"""Release asset packaging and publishing."""

from lldap_ci.release.packager import ReleaseAssets, package_release

__all__ = ["ReleaseAssets", "package_release"]
