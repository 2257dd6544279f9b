"""CLI entry point for Template Uploader.

Loads a layered document, extracts per-layer metadata from one page, and
uploads it with its rendered assets and fonts to the template service.

Usage::

    # Extract and upload the first page (prompts for category and name)
    python -m template_uploader upload design.pptx

    # Fully scripted upload of page 2
    python -m template_uploader upload design.pptx --page 2 \\
        --category Posters --name "Spring Sale" \\
        --font-dir ~/Library/Fonts \\
        --base-url https://templates.example.com

    # Metadata only, no remote calls
    python -m template_uploader extract design.pptx -o metadata.json

    # Show the layer tree of a document
    python -m template_uploader inspect layers.yaml

Exit status of ``upload``: 0 on success, 1 on failure, 2 when the user
cancelled a prompt or pressed Ctrl-C.
"""

import argparse
import asyncio
import json
import logging
import sys
from dataclasses import replace
from pathlib import Path

import yaml

from template_uploader.analyzer.document_loader import LayerDocument, load_document
from template_uploader.config import UploaderConfig, load_config
from template_uploader.errors import TemplateUploaderError
from template_uploader.extractor.metadata_extractor import MetadataExtractor
from template_uploader.generator.asset_exporter import AssetExporter, ExportOptions
from template_uploader.pipeline.session import RunStatus, new_session_id
from template_uploader.pipeline.upload import TemplateUploadPipeline
from template_uploader.prompts import ConsolePrompter
from template_uploader.schema.loader import save_metadata
from template_uploader.schema.models import LayerNode, metadata_to_dict

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_ABORTED = 2


# ---------------------------------------------------------------------------
# Shared loading
# ---------------------------------------------------------------------------

def _load_config(args) -> UploaderConfig:
    """Load config from --config / defaults, then apply CLI overrides."""
    config = load_config(getattr(args, "config", None))
    base_url = getattr(args, "base_url", None)
    if base_url:
        config = replace(config, base_url=base_url)
    return config


def _load_page(args) -> tuple[LayerDocument, LayerNode]:
    """Load the document and pick the page given by --page (1-based)."""
    path = Path(args.document)
    if not path.exists():
        _error(f"Document not found: {path}")
    document = load_document(path)
    page = document.page(args.page - 1)
    _info(f"Document: {path.name} ({len(document.pages)} page(s)), "
          f"using page {args.page}: {page.name!r}")
    return document, page


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------

def cmd_upload(args):
    """Extract a page and upload it to the template service."""
    config = _load_config(args)
    document, page = _load_page(args)
    _info(f"Template service: {config.base_url}")

    pipeline = TemplateUploadPipeline(
        document,
        page,
        config,
        ConsolePrompter(),
        category=args.category,
        image_name=args.name,
        font_dir=args.font_dir,
    )
    try:
        report = asyncio.run(pipeline.run())
    except KeyboardInterrupt:
        pipeline.discard_session()
        _warn("Template extraction was aborted (interrupted)")
        return EXIT_ABORTED

    if report.status is RunStatus.COMPLETED:
        _info(report.message)
        return EXIT_OK
    if report.status is RunStatus.ABORTED:
        _warn(report.message)
        return EXIT_ABORTED
    print(f"  ERROR: {report.message}", file=sys.stderr)
    return EXIT_FAILED


def cmd_extract(args):
    """Extract layer metadata without contacting the service."""
    config = _load_config(args)
    document, page = _load_page(args)

    exporter = None
    session_id = None
    if args.export:
        exporter = AssetExporter(config.tmp_root)
        session_id = new_session_id()

    extractor = MetadataExtractor(
        document.lookup_font,
        exporter=exporter,
        session_id=session_id,
        export_options=ExportOptions(format=config.export_format,
                                     scale=config.export_scale),
        disambiguate_keys=config.disambiguate_keys,
    )
    result = extractor.extract(page)

    _info(f"Extracted {len(result.metadata)} layer(s), "
          f"fonts: {', '.join(sorted(result.fonts)) or 'none'}")
    for message in result.export_errors:
        _warn(f"Export failed: {message}")
    if exporter is not None:
        _info(f"Assets written under {exporter.session_dir(session_id)}")

    if args.output:
        output = save_metadata(result.metadata, args.output)
        _info(f"Written: {output}")
    elif args.format == "yaml":
        print(yaml.safe_dump(metadata_to_dict(result.metadata), sort_keys=False), end="")
    else:
        print(json.dumps(metadata_to_dict(result.metadata), indent=2))
    return EXIT_OK


def cmd_inspect(args):
    """Print the layer tree of a document."""
    path = Path(args.document)
    if not path.exists():
        _error(f"Document not found: {path}")
    document = load_document(path)

    print(f"Document: {document.root.name}")
    print(f"Pages:    {len(document.pages)}")
    print()
    for page in document.pages:
        _print_node(page, depth=0, show_fonts=args.fonts, document=document)
    return EXIT_OK


def _print_node(node: LayerNode, depth: int, show_fonts: bool, document: LayerDocument):
    f = node.frame
    line = (f"{'  ' * depth}[{node.kind.value}] {node.name}"
            f" ({f.x:g}, {f.y:g}, {f.width:g}x{f.height:g})")
    if show_fonts and node.id in document.fonts:
        names = ", ".join(fi.font_name for fi in document.fonts[node.id])
        line += f" font: {names}"
    print(line)
    for child in node.children:
        _print_node(child, depth + 1, show_fonts, document)


# ---------------------------------------------------------------------------
# Output helpers
# ---------------------------------------------------------------------------

def _info(msg):
    print(f"  {msg}", file=sys.stderr)


def _warn(msg):
    print(f"  WARNING: {msg}", file=sys.stderr)


def _error(msg):
    print(f"  ERROR: {msg}", file=sys.stderr)
    sys.exit(EXIT_FAILED)


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="  %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )


# ---------------------------------------------------------------------------
# Argument parsing
# ---------------------------------------------------------------------------

def build_parser():
    """Build the argument parser."""
    parser = argparse.ArgumentParser(
        prog="template-uploader",
        description="Extract layered design templates and upload them to a template service.",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    # ---- upload ----
    up = subparsers.add_parser(
        "upload",
        help="Extract a page and upload it with its assets and fonts.",
    )
    _add_document_args(up)
    _add_config_args(up)
    up.add_argument(
        "--category",
        help="Category display name (skips the category prompt).",
    )
    up.add_argument(
        "--name",
        help="Template image name (skips the name prompt).",
    )
    up.add_argument(
        "--font-dir",
        dest="font_dir",
        help="Directory holding the template's font files (skips the prompt).",
    )
    up.set_defaults(func=cmd_upload)

    # ---- extract ----
    ext = subparsers.add_parser(
        "extract",
        help="Extract layer metadata only, without uploading.",
    )
    _add_document_args(ext)
    _add_config_args(ext)
    ext.add_argument(
        "-o", "--output",
        help="Write metadata to this file (.json, .yaml or .yml).",
    )
    ext.add_argument(
        "-f", "--format",
        choices=["json", "yaml"],
        default="json",
        help="Format for stdout when --output is not given (default: json).",
    )
    ext.add_argument(
        "--export",
        action="store_true",
        default=False,
        help="Also render template and background assets to the temp directory.",
    )
    ext.set_defaults(func=cmd_extract)

    # ---- inspect ----
    insp = subparsers.add_parser(
        "inspect",
        help="Show the layer tree of a document.",
    )
    insp.add_argument("document", help="Path to a .pptx, .json or .yaml document.")
    insp.add_argument(
        "--fonts",
        action="store_true",
        default=False,
        help="Show the font recorded for each text layer.",
    )
    _add_verbose_arg(insp)
    insp.set_defaults(func=cmd_inspect)

    return parser


def _add_document_args(parser):
    """Add the document path and --page args to a subparser."""
    parser.add_argument("document", help="Path to a .pptx, .json or .yaml document.")
    parser.add_argument(
        "--page",
        type=_positive_int,
        default=1,
        help="1-based page (slide) number to extract (default: 1).",
    )


def _add_config_args(parser):
    """Add --config / --base-url / -v args to a subparser."""
    parser.add_argument(
        "--config",
        help="Path to a YAML config file (default: ./template-uploader.yaml).",
    )
    parser.add_argument(
        "--base-url",
        dest="base_url",
        help="Template service base URL (overrides config).",
    )
    _add_verbose_arg(parser)


def _add_verbose_arg(parser):
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        default=False,
        help="Show debug logging.",
    )


def _positive_int(value):
    number = int(value)
    if number < 1:
        raise argparse.ArgumentTypeError(f"must be 1 or greater, got {value}")
    return number


# ---------------------------------------------------------------------------
# Main
# ---------------------------------------------------------------------------

def main(argv=None):
    """CLI entry point. Returns the process exit status."""
    parser = build_parser()
    args = parser.parse_args(argv)
    _configure_logging(args.verbose)
    try:
        return args.func(args)
    except TemplateUploaderError as exc:
        _error(str(exc))


if __name__ == "__main__":
    sys.exit(main())
