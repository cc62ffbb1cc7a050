"""
Workflow orchestration package for the content improver.

ContentImprovementWorkflow runs the pipeline per workflow id:
analyze → improve → review (apply / reject) → rollback when needed
"""

from .content_improvement_workflow import ContentImprovementWorkflow

__all__ = [
    "ContentImprovementWorkflow",
]
