"""Build job module.

This module handles:
- Cache key computation and the tarball build cache
- Step composition and execution
- The write-once artifact store
- Run, job and artifact records
"""

from lldap_ci.builds.models import ArtifactRecord, JobRecord, PipelineRun

__all__ = ["ArtifactRecord", "JobRecord", "PipelineRun"]

# Access submodules via lldap_ci.builds.runner, lldap_ci.builds.service, etc.
