"""
itemflow — mutation pipeline

File: src/itemflow/pipeline/__init__.py

Purpose
- Permission gate, processors, validation, versioning, conflict resolution,
  side-effect fan-out and the orchestrator that composes them.
"""

from itemflow.pipeline.conflicts import ConflictStrategy, three_way_field_merge
from itemflow.pipeline.options import AuditSettings, MutationOptions, NotificationSettings
from itemflow.pipeline.orchestrator import MutationOrchestrator, PipelineStage
from itemflow.pipeline.processors import ProcessorChain, ProcessorFailure, ProcessorStep

__all__ = [
    "AuditSettings",
    "ConflictStrategy",
    "MutationOptions",
    "MutationOrchestrator",
    "NotificationSettings",
    "PipelineStage",
    "ProcessorChain",
    "ProcessorFailure",
    "ProcessorStep",
    "three_way_field_merge",
]
