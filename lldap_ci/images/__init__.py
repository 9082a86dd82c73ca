"""Container image tagging, building and publishing."""

from lldap_ci.images.tags import compute_image_tags

__all__ = ["compute_image_tags"]
