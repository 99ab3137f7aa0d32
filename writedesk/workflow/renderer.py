"""
Magazine rendering and artifact storage.

Turning the rendered issue into a PDF happens outside this service; the
default renderer produces a print-ready HTML document.
"""
from html import escape
from pathlib import Path
from typing import List, Protocol

from ..logging_config import get_logger
from ..models.magazine import Magazine, MagazineContent

logger = get_logger("render")


class MagazineRenderer(Protocol):
    extension: str

    def render_magazine(self, magazine: Magazine, ordered_content: List[MagazineContent]) -> bytes:
        ...


class HtmlMagazineRenderer:
    """Renders an issue as a single HTML page, one article per printed page."""

    extension = "html"

    STYLE = """
        body { font-family: Arial, sans-serif; margin: 0; padding: 20px; }
        .header { text-align: center; margin-bottom: 30px; }
        .title { font-size: 24px; font-weight: bold; margin-bottom: 10px; }
        .issue { font-size: 16px; color: #666; }
        .article { margin-bottom: 30px; }
        .article-title { font-size: 18px; font-weight: bold; margin-bottom: 10px; }
        .article-meta { font-size: 14px; color: #666; margin-bottom: 15px; }
        .article-body { line-height: 1.6; white-space: pre-wrap; }
        .page-break { page-break-before: always; }
    """

    def render_magazine(self, magazine: Magazine, ordered_content: List[MagazineContent]) -> bytes:
        articles = []
        for index, entry in enumerate(ordered_content):
            content = entry.content
            classes = "article page-break" if index > 0 else "article"
            meta = f"Author #{content.author_id}"
            if entry.page_number is not None:
                meta += f" &middot; page {entry.page_number}"
            articles.append(
                f'<section class="{classes}">'
                f'<div class="article-title">{escape(content.title)}</div>'
                f'<div class="article-meta">{meta}</div>'
                f'<div class="article-body">{escape(content.body)}</div>'
                f"</section>"
            )

        published = (
            f'<div class="issue">{magazine.publication_date.isoformat()}</div>'
            if magazine.publication_date else ""
        )
        document = (
            "<!DOCTYPE html>"
            '<html><head><meta charset="UTF-8">'
            f"<title>{escape(magazine.title)}</title>"
            f"<style>{self.STYLE}</style>"
            "</head><body>"
            '<div class="header">'
            f'<div class="title">{escape(magazine.title)}</div>'
            f'<div class="issue">Issue {magazine.issue_number}, Volume {magazine.volume_number}</div>'
            f"{published}"
            "</div>"
            f"{''.join(articles)}"
            "</body></html>"
        )
        return document.encode("utf-8")


class LocalArtifactStore:
    """Writes rendered artifacts to a directory served under ``url_prefix``."""

    def __init__(self, directory: str, url_prefix: str):
        self.directory = Path(directory)
        self.url_prefix = url_prefix.rstrip("/")

    def save(self, filename: str, data: bytes) -> str:
        self.directory.mkdir(parents=True, exist_ok=True)
        (self.directory / filename).write_bytes(data)
        logger.info("Artifact stored", filename=filename, size=len(data))
        return f"{self.url_prefix}/{filename}"

    def discard(self, filename: str):
        (self.directory / filename).unlink(missing_ok=True)
        logger.warning("Artifact discarded", filename=filename)
