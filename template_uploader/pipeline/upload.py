"""Upload pipeline: the fixed task graph that extracts a page and uploads it.

Tasks and their dependencies::

    get_categories
    select_category        <- get_categories
    get_image_name         <- select_category
    extract_template_data
    write_metadata_json    <- extract_template_data, the three uploads
    get_font_directory     <- extract_template_data, get_image_name
    resolve_fonts          <- extract_template_data, get_font_directory
    create_image_record    <- select_category, get_image_name, resolve_fonts
    upload_template        <- create_image_record, extract_template_data
    upload_background      <- create_image_record, extract_template_data
    upload_metadata        <- create_image_record, extract_template_data, resolve_fonts
    cleanup (always)       <- the three uploads, extract_template_data

The font directory prompt waits for the name prompt so that two prompts are
never on screen at once.  A cancelled prompt aborts the run; any other
failure fails only its branch.  Already-uploaded assets are not rolled back.
The local metadata JSON is written only after every upload succeeded.
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, AsyncIterator, Mapping

from template_uploader.analyzer.document_loader import LayerDocument
from template_uploader.config import UploaderConfig
from template_uploader.errors import (
    InvalidFontDirectoryError,
    MissingAssetError,
    ValidationError,
)
from template_uploader.extractor.font_resolver import FontResolver
from template_uploader.extractor.metadata_extractor import (
    ExtractionResult,
    MetadataExtractor,
)
from template_uploader.generator.asset_exporter import (
    AssetExporter,
    AssetSlot,
    ExportOptions,
)
from template_uploader.pipeline.orchestrator import (
    Abort,
    Aborted,
    Completed,
    Failed,
    Outcome,
    TaskOrchestrator,
    TaskState,
)
from template_uploader.pipeline.session import RunStatus, UploadSession
from template_uploader.prompts import Prompter, ask
from template_uploader.remote.client import RemoteClient
from template_uploader.schema.loader import save_metadata
from template_uploader.schema.models import Category, LayerNode

logger = logging.getLogger(__name__)

CATEGORY_PROMPT = "Please select a category for the template"
IMAGE_NAME_PROMPT = "Please enter a unique name for the template:"
FONT_DIR_PROMPT = "Directory containing the template's font files:"


@dataclass
class UploadReport:
    """Terminal result of one pipeline run."""
    outcome: Outcome
    session: UploadSession
    task_states: dict[str, TaskState] = field(default_factory=dict)

    @property
    def status(self) -> RunStatus:
        return self.session.status

    @property
    def message(self) -> str:
        """The single user-facing message for this run."""
        outcome = self.outcome
        if isinstance(outcome, Aborted):
            return f"Template extraction was aborted ({outcome.reason})"
        if isinstance(outcome, Failed):
            return f"Template upload failed in {outcome.task}: {outcome.cause}"
        extraction: ExtractionResult = outcome.results["extract_template_data"]
        return (
            f"Template {self.session.template_image_name!r} uploaded successfully "
            f"(image id {self.session.remote_image_id}, "
            f"{len(extraction.metadata)} layer(s), {len(extraction.fonts)} font(s))"
        )


class TemplateUploadPipeline:
    """Extracts one page of a document and uploads it to the template service.

    ``category``, ``image_name`` and ``font_dir`` pre-answer the matching
    prompts; ``font_dir`` defaults to the configured directory.
    """

    def __init__(
        self,
        document: LayerDocument,
        page: LayerNode,
        config: UploaderConfig,
        prompter: Prompter,
        *,
        client: RemoteClient | None = None,
        exporter: AssetExporter | None = None,
        resolver: FontResolver | None = None,
        session: UploadSession | None = None,
        category: str | None = None,
        image_name: str | None = None,
        font_dir: str | Path | None = None,
    ):
        self.document = document
        self.page = page
        self.config = config
        self.prompter = prompter
        self.session = session or UploadSession()
        self.client = client
        self.exporter = exporter or AssetExporter(config.tmp_root)
        self.resolver = resolver or FontResolver()
        self.category = category
        self.image_name = image_name
        self.font_dir = Path(font_dir) if font_dir is not None else config.font_dir

    # -- Graph ---------------------------------------------------------------

    def build(self, client: RemoteClient) -> TaskOrchestrator:
        self._active_client = client
        orch = TaskOrchestrator()
        orch.declare("get_categories", [], self._get_categories)
        orch.declare("select_category", ["get_categories"], self._select_category)
        orch.declare("get_image_name", ["select_category"], self._get_image_name)
        orch.declare("extract_template_data", [], self._extract_template_data)
        orch.declare("get_font_directory", ["extract_template_data", "get_image_name"],
                     self._get_font_directory)
        orch.declare("resolve_fonts", ["extract_template_data", "get_font_directory"],
                     self._resolve_fonts)
        orch.declare("create_image_record",
                     ["select_category", "get_image_name", "resolve_fonts"],
                     self._create_image_record)
        orch.declare("upload_template", ["create_image_record", "extract_template_data"],
                     self._upload_template)
        orch.declare("upload_background", ["create_image_record", "extract_template_data"],
                     self._upload_background)
        orch.declare("upload_metadata",
                     ["create_image_record", "extract_template_data", "resolve_fonts"],
                     self._upload_metadata)
        orch.declare("write_metadata_json",
                     ["extract_template_data", "upload_template", "upload_background",
                      "upload_metadata"],
                     self._write_metadata_json)
        orch.declare("cleanup",
                     ["upload_template", "upload_background", "upload_metadata",
                      "extract_template_data"],
                     self._cleanup, always=True)
        return orch

    @asynccontextmanager
    async def _open_client(self) -> AsyncIterator[RemoteClient]:
        if self.client is not None:
            yield self.client
            return
        async with RemoteClient(
            self.config.base_url,
            self.session.session_id,
            timeout=self.config.request_timeout,
        ) as client:
            yield client

    async def run(self) -> UploadReport:
        logger.info("Starting upload session %s for page %r",
                    self.session.session_id, self.page.name)
        async with self._open_client() as client:
            orchestrator = self.build(client)
            outcome = await orchestrator.run()

        if isinstance(outcome, Completed):
            self.session.status = RunStatus.COMPLETED
        elif isinstance(outcome, Aborted):
            self.session.status = RunStatus.ABORTED
        else:
            self.session.status = RunStatus.FAILED
        return UploadReport(outcome=outcome, session=self.session,
                            task_states=orchestrator.states())

    # -- User decisions ------------------------------------------------------

    async def _get_categories(self, deps: Mapping[str, Any]) -> list[Category]:
        categories = await self._active_client.list_categories()
        if not categories:
            raise ValidationError("The template service offered no categories")
        return categories

    async def _select_category(self, deps: Mapping[str, Any]) -> Category | Abort:
        categories: list[Category] = deps["get_categories"]
        names = [c.display_name for c in categories]

        if self.category is not None:
            wanted = self.category.casefold()
            matches = [c for c in categories if c.display_name.casefold() == wanted]
            if not matches:
                raise ValidationError(
                    f"Unknown category {self.category!r}; available: {', '.join(names)}"
                )
            selected = matches[0]
        else:
            index = await ask(self.prompter.select_one, CATEGORY_PROMPT, names)
            if index is None:
                return Abort("category selection cancelled")
            selected = categories[index]

        self.session.selected_category = selected
        return selected

    async def _get_image_name(self, deps: Mapping[str, Any]) -> str | Abort:
        name = self.image_name
        if name is None:
            name = await ask(self.prompter.get_string, IMAGE_NAME_PROMPT, self.page.name)
            if name is None:
                return Abort("template name entry cancelled")
        name = name.strip()
        if not name:
            raise ValidationError("Template image name must not be empty")
        self.session.template_image_name = name
        return name

    async def _get_font_directory(self, deps: Mapping[str, Any]) -> Path | Abort | None:
        extraction: ExtractionResult = deps["extract_template_data"]
        if not extraction.fonts:
            return None
        if self.font_dir is not None:
            return self.font_dir

        answer = await ask(self.prompter.get_string, FONT_DIR_PROMPT, "")
        if answer is None:
            return Abort("font directory entry cancelled")
        if not answer.strip():
            raise InvalidFontDirectoryError("", "no directory given")
        return Path(answer.strip()).expanduser()

    # -- Extraction ----------------------------------------------------------

    async def _extract_template_data(self, deps: Mapping[str, Any]) -> ExtractionResult:
        extractor = MetadataExtractor(
            self.document.lookup_font,
            exporter=self.exporter,
            session_id=self.session.session_id,
            export_options=ExportOptions(
                format=self.config.export_format,
                scale=self.config.export_scale,
            ),
            disambiguate_keys=self.config.disambiguate_keys,
        )
        return await extractor.extract_async(self.page)

    async def _write_metadata_json(self, deps: Mapping[str, Any]) -> Path | None:
        if not self.config.write_metadata_json:
            return None
        extraction: ExtractionResult = deps["extract_template_data"]
        path = Path(self.config.tmp_root) / f"{self.session.session_id}.json"
        await asyncio.to_thread(save_metadata, extraction.metadata, path)
        logger.info("Metadata written to %s", path)
        return path

    async def _resolve_fonts(self, deps: Mapping[str, Any]) -> list[Path]:
        extraction: ExtractionResult = deps["extract_template_data"]
        if not extraction.fonts:
            return []
        paths = await asyncio.to_thread(
            self.resolver.resolve, extraction.fonts, deps["get_font_directory"]
        )
        self.session.font_file_paths = list(paths)
        return paths

    # -- Remote --------------------------------------------------------------

    async def _create_image_record(self, deps: Mapping[str, Any]) -> str:
        category: Category = deps["select_category"]
        record = await self._active_client.create_image_record(
            deps["get_image_name"], category.id
        )
        self.session.remote_image_id = str(record["id"])
        logger.info("Created image record %s", self.session.remote_image_id)
        return self.session.remote_image_id

    async def _upload_template(self, deps: Mapping[str, Any]) -> Any:
        extraction: ExtractionResult = deps["extract_template_data"]
        path = extraction.template_path
        if path is None or not path.exists():
            raise MissingAssetError(path, AssetSlot.TEMPLATE.value)
        return await self._active_client.upload_asset(
            deps["create_image_record"], AssetSlot.TEMPLATE, path
        )

    async def _upload_background(self, deps: Mapping[str, Any]) -> Any:
        extraction: ExtractionResult = deps["extract_template_data"]
        if extraction.image_leaf_count == 0:
            logger.info("No image layers; skipping background upload")
            return None
        present = [p for p in extraction.background_paths if p.exists()]
        if len(present) < extraction.image_leaf_count:
            missing = next((p for p in extraction.background_paths if not p.exists()), None)
            raise MissingAssetError(missing, AssetSlot.BACKGROUND.value)
        return await self._active_client.upload_asset(
            deps["create_image_record"], AssetSlot.BACKGROUND, present
        )

    async def _upload_metadata(self, deps: Mapping[str, Any]) -> Any:
        extraction: ExtractionResult = deps["extract_template_data"]
        return await self._active_client.upload_metadata_and_fonts(
            deps["create_image_record"], extraction.metadata, deps["resolve_fonts"]
        )

    async def _cleanup(self, deps: Mapping[str, Any]) -> bool:
        removed = await asyncio.to_thread(self.exporter.cleanup_session,
                                          self.session.session_id)
        if removed:
            logger.info("Removed session files for %s", self.session.session_id)
        return removed

    def discard_session(self) -> bool:
        """Delete this session's files after an interrupted run."""
        return self.exporter.cleanup_session(self.session.session_id)
