"""Upload pipeline: task orchestration and the fixed upload task graph."""

from .orchestrator import (
    Abort,
    Aborted,
    Completed,
    Failed,
    TaskOrchestrator,
    TaskState,
)
from .session import RunStatus, UploadSession
from .upload import TemplateUploadPipeline, UploadReport

__all__ = [
    "Abort",
    "Aborted",
    "Completed",
    "Failed",
    "RunStatus",
    "TaskOrchestrator",
    "TaskState",
    "TemplateUploadPipeline",
    "UploadReport",
    "UploadSession",
]
