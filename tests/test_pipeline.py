"""End-to-end tests for the upload pipeline against a fake template service."""

import json
import time

import httpx
import pytest

from template_uploader.analyzer.document_loader import LayerDocument
from template_uploader.generator.asset_exporter import AssetExporter, AssetSlot
from template_uploader.errors import (
    FontLookupError,
    MissingAssetError,
    MissingFontsError,
    RemoteError,
    ValidationError,
)
from template_uploader.pipeline.orchestrator import Aborted, Completed, Failed, TaskState
from template_uploader.pipeline.session import RunStatus, UploadSession
from template_uploader.pipeline.upload import (
    CATEGORY_PROMPT,
    FONT_DIR_PROMPT,
    IMAGE_NAME_PROMPT,
    TemplateUploadPipeline,
)
from template_uploader.remote.client import RemoteClient
from template_uploader.schema.models import Frame, LayerKind, LayerNode


class FakeService:
    """In-memory template service; ``fail`` maps a path fragment to a status."""

    def __init__(self, fail=None):
        self.fail = fail or {}
        self.requests = []
        self.bodies = {}

    async def __call__(self, request):
        path = request.url.path
        self.requests.append((request.method, path))
        self.bodies[path] = request.content
        for fragment, status in self.fail.items():
            if fragment in path:
                return httpx.Response(status, json={"message": "service unavailable"})
        if path == "/category/":
            return httpx.Response(200, json={"categories": [
                {"id": "c1", "displayName": "Posters"},
                {"id": "c2", "displayName": "Flyers"},
            ]})
        if path == "/image/":
            return httpx.Response(201, json={"id": 42})
        return httpx.Response(200, json={"ok": True})

    def paths(self, method=None):
        return [p for m, p in self.requests if method is None or m == method]


async def run_pipeline(document, config, prompter, service, **kwargs):
    session = UploadSession()
    async with httpx.AsyncClient(transport=httpx.MockTransport(service)) as http:
        client = RemoteClient(config.base_url, session.session_id, client=http)
        pipeline = TemplateUploadPipeline(
            document, document.page(0), config, prompter,
            client=client, session=session, **kwargs,
        )
        return await pipeline.run()


@pytest.fixture
def service():
    return FakeService()


# ---------------------------------------------------------------------------
# Success paths
# ---------------------------------------------------------------------------

class TestSuccessfulUpload:
    @pytest.mark.asyncio
    async def test_interactive_run(self, hero_document, config, prompter_factory, service,
                                   font_dir):
        prompter = prompter_factory(selections=[1], strings=["Spring Sale", str(font_dir)])
        report = await run_pipeline(hero_document, config, prompter, service)

        assert isinstance(report.outcome, Completed)
        assert report.status is RunStatus.COMPLETED
        assert report.session.selected_category.display_name == "Flyers"
        assert report.session.template_image_name == "Spring Sale"
        assert report.session.remote_image_id == "42"
        assert [p.name for p in report.session.font_file_paths] == ["Helvetica-Bold.ttf"]
        assert "uploaded successfully" in report.message

        assert [c[1] for c in prompter.calls] == [CATEGORY_PROMPT, IMAGE_NAME_PROMPT,
                                                 FONT_DIR_PROMPT]
        assert prompter.calls[1][2] == "Page 1"

    @pytest.mark.asyncio
    async def test_requests_sent(self, hero_document, config, prompter_factory, service,
                                 font_dir):
        prompter = prompter_factory(selections=[0], strings=["Spring Sale", str(font_dir)])
        report = await run_pipeline(hero_document, config, prompter, service)
        session_id = report.session.session_id

        assert service.requests[0] == ("GET", "/category/")
        assert json.loads(service.bodies["/image/"]) == {
            "imageName": "Spring Sale", "categoryId": "c1",
        }
        assert sorted(service.paths("PUT")) == [
            f"/image/42/background/{session_id}",
            f"/image/42/template/{session_id}",
        ]
        layers = json.loads(service.bodies["/layer/42"])
        assert layers["title"]["frame"] == {"x": 60, "y": 55, "width": 100, "height": 20}
        assert layers["bg"]["parent"] == "Hero"
        assert b'filename="Helvetica-Bold.ttf"' in service.bodies["/font/"]

    @pytest.mark.asyncio
    async def test_two_assets_exported_then_cleaned(self, hero_document, config,
                                                    prompter_factory, service, font_dir):
        prompter = prompter_factory(selections=[0], strings=["Spring Sale", str(font_dir)])
        report = await run_pipeline(hero_document, config, prompter, service)
        session_id = report.session.session_id

        assert b"\x89PNG" in service.bodies[f"/image/42/template/{session_id}"]
        assert b"\x89PNG" in service.bodies[f"/image/42/background/{session_id}"]
        assert not (config.tmp_root / session_id).exists()
        assert report.task_states["cleanup"] is TaskState.SUCCEEDED

    @pytest.mark.asyncio
    async def test_metadata_json_written(self, hero_document, config, prompter_factory,
                                         service, font_dir):
        prompter = prompter_factory(selections=[0], strings=["Spring Sale", str(font_dir)])
        report = await run_pipeline(hero_document, config, prompter, service)
        written = config.tmp_root / f"{report.session.session_id}.json"
        assert json.loads(written.read_text())["title"]["type"] == "text"

    @pytest.mark.asyncio
    async def test_metadata_json_disabled(self, hero_document, tmp_path, prompter_factory,
                                          service, font_dir):
        from template_uploader.config import UploaderConfig
        config = UploaderConfig(base_url="http://templates.test",
                                tmp_root=tmp_path / "tmp", write_metadata_json=False)
        prompter = prompter_factory(selections=[0], strings=["Spring Sale", str(font_dir)])
        report = await run_pipeline(hero_document, config, prompter, service)
        assert report.status is RunStatus.COMPLETED
        assert not (config.tmp_root / f"{report.session.session_id}.json").exists()

    @pytest.mark.asyncio
    async def test_presets_skip_prompts(self, hero_document, config, prompter_factory,
                                        service, font_dir):
        prompter = prompter_factory()
        report = await run_pipeline(
            hero_document, config, prompter, service,
            category="posters", image_name="  Spring Sale ", font_dir=font_dir,
        )
        assert report.status is RunStatus.COMPLETED
        assert prompter.calls == []
        assert report.session.selected_category.id == "c1"
        assert report.session.template_image_name == "Spring Sale"

    @pytest.mark.asyncio
    async def test_page_without_text_needs_no_fonts(self, config, prompter_factory, service,
                                                    png_bytes):
        bg = LayerNode(id="bg", name="Bg", kind=LayerKind.IMAGE, frame=Frame(0, 0, 20, 20),
                       image=png_bytes())
        group = LayerNode(id="g", name="G", kind=LayerKind.GROUP, frame=Frame(0, 0, 20, 20),
                          children=[bg])
        page = LayerNode(id="p", name="P", kind=LayerKind.PAGE, frame=Frame(0, 0, 20, 20),
                         children=[group])
        root = LayerNode(id="d", name="D", kind=LayerKind.DOCUMENT, frame=Frame(0, 0, 20, 20),
                         children=[page])
        prompter = prompter_factory(selections=[0], strings=["Plain"])

        report = await run_pipeline(LayerDocument(root=root), config, prompter, service)
        assert report.status is RunStatus.COMPLETED
        assert "/font/" not in service.paths()
        assert FONT_DIR_PROMPT not in [c[1] for c in prompter.calls]


# ---------------------------------------------------------------------------
# Abort paths
# ---------------------------------------------------------------------------

class TestAbortedUpload:
    @pytest.mark.asyncio
    async def test_cancelled_category(self, hero_document, config, prompter_factory, service):
        prompter = prompter_factory()
        report = await run_pipeline(hero_document, config, prompter, service)

        assert isinstance(report.outcome, Aborted)
        assert report.status is RunStatus.ABORTED
        assert report.outcome.task == "select_category"
        assert report.message.startswith("Template extraction was aborted")
        assert service.paths("POST") == []
        assert report.task_states["create_image_record"] is TaskState.SKIPPED
        assert report.task_states["get_font_directory"] is TaskState.SKIPPED
        assert not (config.tmp_root / report.session.session_id).exists()

    @pytest.mark.asyncio
    async def test_cancelled_font_directory(self, hero_document, config, prompter_factory,
                                            service):
        prompter = prompter_factory(selections=[0], strings=["Spring Sale"])
        report = await run_pipeline(hero_document, config, prompter, service)
        assert report.outcome.task == "get_font_directory"
        assert report.status is RunStatus.ABORTED

    @pytest.mark.asyncio
    async def test_no_metadata_json_when_aborted(self, hero_document, config,
                                                prompter_factory, service):
        report = await run_pipeline(hero_document, config, prompter_factory(), service)
        assert report.task_states["write_metadata_json"] is TaskState.SKIPPED
        assert not (config.tmp_root / f"{report.session.session_id}.json").exists()


# ---------------------------------------------------------------------------
# Failure paths
# ---------------------------------------------------------------------------

class TestFailedUpload:
    @pytest.mark.asyncio
    async def test_missing_fonts_stop_before_image_record(self, hero_document, config,
                                                          prompter_factory, service, tmp_path):
        empty = tmp_path / "empty-fonts"
        empty.mkdir()
        prompter = prompter_factory(selections=[0], strings=["Spring Sale", str(empty)])
        report = await run_pipeline(hero_document, config, prompter, service)

        assert isinstance(report.outcome, Failed)
        assert report.outcome.task == "resolve_fonts"
        assert isinstance(report.outcome.cause, MissingFontsError)
        assert "/image/" not in service.paths()
        assert report.message.startswith("Template upload failed in resolve_fonts")

    @pytest.mark.asyncio
    async def test_unknown_preset_category(self, hero_document, config, prompter_factory,
                                           service):
        report = await run_pipeline(hero_document, config, prompter_factory(), service,
                                    category="Banners")
        assert report.outcome.task == "select_category"
        assert isinstance(report.outcome.cause, ValidationError)

    @pytest.mark.asyncio
    async def test_blank_image_name(self, hero_document, config, prompter_factory, service):
        report = await run_pipeline(hero_document, config, prompter_factory(selections=[0]),
                                    service, image_name="   ")
        assert report.outcome.task == "get_image_name"
        assert report.status is RunStatus.FAILED

    @pytest.mark.asyncio
    async def test_remote_failure_leaves_other_uploads_running(self, hero_document, config,
                                                               prompter_factory, font_dir):
        service = FakeService(fail={"/background/": 503})
        prompter = prompter_factory(selections=[0], strings=["Spring Sale", str(font_dir)])
        report = await run_pipeline(hero_document, config, prompter, service)

        assert report.outcome.task == "upload_background"
        assert isinstance(report.outcome.cause, RemoteError)
        assert report.outcome.cause.status_code == 503
        assert report.task_states["upload_template"] is TaskState.SUCCEEDED
        assert report.task_states["upload_metadata"] is TaskState.SUCCEEDED
        assert not (config.tmp_root / report.session.session_id).exists()
        assert report.task_states["write_metadata_json"] is TaskState.SKIPPED
        assert not (config.tmp_root / f"{report.session.session_id}.json").exists()

    @pytest.mark.asyncio
    async def test_unexported_background(self, hero_document, config, prompter_factory,
                                         service, font_dir):
        hero_document.root.find("bg").image = None
        prompter = prompter_factory(selections=[0], strings=["Spring Sale", str(font_dir)])
        report = await run_pipeline(hero_document, config, prompter, service)

        assert report.outcome.task == "upload_background"
        assert isinstance(report.outcome.cause, MissingAssetError)
        assert report.task_states["upload_template"] is TaskState.SUCCEEDED

    @pytest.mark.asyncio
    async def test_extraction_failure_leaves_no_session_files(self, config, prompter_factory,
                                                              service, png_bytes):
        class SlowExporter(AssetExporter):
            def export(self, node, slot, session_id, options=None):
                if slot is AssetSlot.BACKGROUND:
                    time.sleep(0.3)
                return super().export(node, slot, session_id, options)

        text = LayerNode(id="t", name="Caption", kind=LayerKind.TEXT, frame=Frame(0, 0, 10, 10),
                         text="no font recorded")
        image = LayerNode(id="i", name="Photo", kind=LayerKind.IMAGE, frame=Frame(0, 0, 20, 20),
                          image=png_bytes())
        groups = [
            LayerNode(id="g1", name="Broken", kind=LayerKind.GROUP, frame=Frame(0, 0, 20, 20),
                      children=[text]),
            LayerNode(id="g2", name="Slow", kind=LayerKind.GROUP, frame=Frame(0, 0, 20, 20),
                      children=[image]),
        ]
        page = LayerNode(id="p", name="P", kind=LayerKind.PAGE, frame=Frame(0, 0, 20, 20),
                         children=groups)
        root = LayerNode(id="d", name="D", kind=LayerKind.DOCUMENT, frame=Frame(0, 0, 20, 20),
                         children=[page])

        prompter = prompter_factory(selections=[0], strings=["Spring Sale"])
        report = await run_pipeline(LayerDocument(root=root), config, prompter, service,
                                    exporter=SlowExporter(config.tmp_root))

        assert report.status is RunStatus.FAILED
        assert report.outcome.task == "extract_template_data"
        assert isinstance(report.outcome.cause, FontLookupError)
        assert report.task_states["cleanup"] is TaskState.SUCCEEDED
        time.sleep(0.5)
        assert not (config.tmp_root / report.session.session_id).exists()


class TestDiscardSession:
    def test_removes_exported_files(self, hero_document, config, prompter_factory):
        pipeline = TemplateUploadPipeline(hero_document, hero_document.page(0), config,
                                          prompter_factory())
        session_dir = pipeline.exporter.session_dir(pipeline.session.session_id)
        session_dir.mkdir(parents=True)
        (session_dir / "partial.png").write_bytes(b"x")

        assert pipeline.discard_session() is True
        assert not session_dir.exists()
        assert pipeline.discard_session() is False
