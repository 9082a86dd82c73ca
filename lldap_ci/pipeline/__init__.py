"""Pipeline definition module.

This module handles:
- The pipeline definition schema and its built-in default
- Loading definitions from YAML/JSON
- The job graph derived from a definition
"""

from lldap_ci.pipeline.schema import PipelineSchema, default_pipeline

__all__ = ["PipelineSchema", "default_pipeline"]
