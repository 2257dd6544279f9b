"""Upload session: per-run state shared by the upload tasks."""

import uuid
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

from template_uploader.schema.models import Category


class RunStatus(Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    ABORTED = "aborted"      # The user declined a prompt
    FAILED = "failed"        # A task raised


def new_session_id() -> str:
    return str(uuid.uuid4())


@dataclass
class UploadSession:
    """State of one extraction + upload run.

    Created at run start and discarded at run end.  ``session_id`` namespaces
    the temp directory and the remote asset slots of this run.
    """
    session_id: str = field(default_factory=new_session_id)
    selected_category: Category | None = None
    template_image_name: str | None = None
    remote_image_id: str | None = None
    font_file_paths: list[Path] = field(default_factory=list)
    status: RunStatus = RunStatus.RUNNING

    @property
    def aborted(self) -> bool:
        return self.status is RunStatus.ABORTED

    @property
    def failed(self) -> bool:
        return self.status is RunStatus.FAILED

    def temp_dir(self, tmp_root: Path) -> Path:
        return Path(tmp_root) / self.session_id
