"""Template Uploader: extract layered design templates and upload them."""

__version__ = "0.1.0"
