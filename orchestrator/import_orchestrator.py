"""
Import orchestrator for coordinating the Notion to note.com pipeline.

This module sequences the import phases for one page:
Fetch → Parse → Render → Relocate images → Publish. Fatal failures end the
import with a structured result; per-image failures become warnings.
"""

import logging
import mimetypes
import posixpath
from typing import Any, Dict, List, Optional
from urllib.parse import unquote, urlparse

from config_loader import get_nested
from converters import NoteFormatter, NotionBlockParser
from importers import ImageUploadError, NoteApiError, NoteClient, NoteImageUploader
from logger import log_section
from models import ImageData, ImportResult, ImportStats, IRNode, NotionBlock
from notion_api import NotionApiError, NotionClient

AUTH_REQUIRED = 'AUTH_REQUIRED'
PUBLISH_FAILED = 'PUBLISH_FAILED'


class ImportOrchestrator:
    """Central coordinator sequencing the import phases for a Notion page."""

    def __init__(
        self,
        config: Dict[str, Any],
        notion_client: Optional[NotionClient] = None,
        note_client: Optional[NoteClient] = None,
        parser: Optional[NotionBlockParser] = None,
        formatter: Optional[NoteFormatter] = None,
        image_uploader: Optional[NoteImageUploader] = None,
        logger: Optional[logging.Logger] = None
    ):
        """
        Initialize import orchestrator.

        Components that are not supplied are built from ``config``.

        Args:
            config: Configuration dictionary
            notion_client: Optional Notion client
            note_client: Optional note.com client
            parser: Optional block parser
            formatter: Optional formatter
            image_uploader: Optional image uploader
            logger: Optional logger instance
        """
        self.config = config
        self.logger = logger or logging.getLogger('notion_note_importer.orchestrator.import_orchestrator')

        self.notion_client = notion_client or NotionClient.from_config(config)
        self.note_client = note_client or NoteClient.from_config(config)
        self.parser = parser or NotionBlockParser(logger=self.logger, config=config)
        self.formatter = formatter or NoteFormatter(logger=self.logger, config=config)
        self.image_uploader = image_uploader or NoteImageUploader(config, self.note_client, logger=self.logger)

        self.logger.debug("ImportOrchestrator initialized")

    def import_document(
        self,
        page_id: str,
        tags: Optional[List[str]] = None,
        save_as_draft: bool = True
    ) -> ImportResult:
        """
        Import one Notion page into note.com.

        Args:
            page_id: Notion page ID
            tags: Tags to attach (defaults to ``import.tags``)
            save_as_draft: Save as draft instead of publishing

        Returns:
            ImportResult; never raises for API, image or publish failures
        """
        stats = ImportStats()
        warnings: List[str] = []
        if tags is None:
            tags = list(get_nested(self.config, 'import.tags', []) or [])

        log_section(f"Importing Notion page {page_id}")

        if not self.note_client.has_auth():
            self.logger.error("note.com credentials are missing; aborting before any request")
            return self._failure(
                stats, warnings,
                "note.com credentials are missing. Please set NOTE_SESSION_V5 (and NOTE_XSRF_TOKEN).",
                AUTH_REQUIRED
            )

        try:
            page = self.notion_client.get_page(page_id)
            blocks = self.notion_client.get_blocks(page.id, recursive=True)
        except NotionApiError as e:
            self.logger.error(f"Failed to fetch Notion page {page_id}: {e.message}")
            return self._failure(stats, warnings, e.message, e.code.value)

        parsed = self.parser.parse_document(blocks)
        stats.total_blocks = parsed.stats.total_blocks
        stats.converted_blocks = parsed.stats.converted_blocks
        stats.skipped_blocks = parsed.stats.skipped_blocks

        document = self.formatter.render(parsed.nodes)
        references = self.formatter.extract_image_references(document.markdown)
        stats.images_total = len(references)
        self.logger.info(
            f"Converted '{page.title}': {stats.converted_blocks}/{stats.total_blocks} blocks, "
            f"{stats.images_total} images"
        )

        images = self._download_images(references, document.images, stats, warnings)

        def record_upload_failure(image: ImageData, error: ImageUploadError) -> None:
            stats.images_failed += 1
            warnings.append(f"Failed to upload image {image.file_name}: {error.message}")

        uploaded = self.image_uploader.upload_images(images, on_failure=record_upload_failure)
        stats.images_success = len(uploaded)

        body = self.image_uploader.replace_image_references(document.markdown, uploaded)

        status = 'draft' if save_as_draft else 'published'
        try:
            response = self.note_client.create_note(page.title, body, status=status, tags=tags)
        except NoteApiError as e:
            self.logger.error(f"Failed to create note for '{page.title}': {e.message}")
            return self._failure(stats, warnings, e.message, PUBLISH_FAILED)

        note_id = self.note_client.extract_note_id(response)
        self.logger.info(f"Imported '{page.title}' as {status} note {note_id} with {len(warnings)} warnings")

        return ImportResult(success=True, stats=stats, note_id=note_id, warnings=tuple(warnings))

    def _download_images(
        self,
        references: List[str],
        image_nodes: Dict[str, IRNode],
        stats: ImportStats,
        warnings: List[str]
    ) -> List[ImageData]:
        """Download the source image of every placeholder; failures become warnings."""
        images: List[ImageData] = []
        seen = set()

        for index, reference in enumerate(references, start=1):
            if reference in seen:
                continue
            seen.add(reference)

            node = image_nodes.get(reference)
            url = (node.content or node.attributes.get('url')) if node is not None else None
            if not url:
                stats.images_failed += 1
                warnings.append(f"Failed to download image {reference}: no source image for reference")
                continue

            try:
                content, mime_type = self.notion_client.download_image(url)
            except NotionApiError as e:
                stats.images_failed += 1
                warnings.append(f"Failed to download image {reference}: {e.message}")
                continue

            images.append(ImageData(
                file_name=image_file_name(url, mime_type, index),
                content=content,
                mime_type=mime_type,
                reference=reference,
            ))

        return images

    def _failure(self, stats: ImportStats, warnings: List[str], error: str, error_code: str) -> ImportResult:
        return ImportResult(
            success=False,
            stats=stats,
            warnings=tuple(warnings),
            error=error,
            error_code=error_code,
        )

    def preview_document(self, page_id: str) -> Dict[str, Any]:
        """
        Convert a page without uploading or publishing anything.

        Args:
            page_id: Notion page ID

        Returns:
            Dict with title, markdown, image references and block stats

        Raises:
            NotionApiError: If the page cannot be fetched
        """
        page = self.notion_client.get_page(page_id)
        blocks = self.notion_client.get_blocks(page.id, recursive=True)
        parsed = self.parser.parse_document(blocks)
        document = self.formatter.render(parsed.nodes)
        references = self.formatter.extract_image_references(document.markdown)

        stats = parsed.stats.to_dict()
        stats['image_count'] = len(references)
        return {
            'title': page.title,
            'markdown': document.markdown,
            'image_references': references,
            'stats': stats,
        }

    def get_document(self, page_id: str) -> Dict[str, Any]:
        """
        Fetch page metadata and a flat outline of its block tree.

        Args:
            page_id: Notion page ID

        Returns:
            Dict with page metadata and one outline entry per block

        Raises:
            NotionApiError: If the page cannot be fetched
        """
        page = self.notion_client.get_page(page_id)
        blocks = self.notion_client.get_blocks(page.id, recursive=True)

        outline: List[Dict[str, Any]] = []

        def visit(block: NotionBlock, depth: int) -> None:
            outline.append({
                'id': block.id,
                'type': block.type,
                'has_children': block.has_children,
                'depth': depth,
            })
            for child in block.children:
                visit(child, depth + 1)

        for block in blocks:
            visit(block, 0)

        return {'page': page.to_dict(), 'blocks': outline}

    def list_documents(
        self,
        database_id: str,
        page_size: int = 20,
        start_cursor: Optional[str] = None
    ) -> Dict[str, Any]:
        """
        List pages of a Notion database.

        Args:
            database_id: Notion database ID
            page_size: Number of pages to return
            start_cursor: Cursor from a previous call

        Returns:
            Dict with page summaries and the next cursor
        """
        pages, next_cursor = self.notion_client.query_database(
            database_id, page_size=page_size, start_cursor=start_cursor
        )
        return {
            'pages': [page.to_dict() for page in pages],
            'next_cursor': next_cursor,
        }

    @classmethod
    def from_config(cls, config: Dict[str, Any], logger: Optional[logging.Logger] = None) -> 'ImportOrchestrator':
        return cls(config, logger=logger)


def image_file_name(url: str, mime_type: str, index: int) -> str:
    """
    Pick an upload file name for a downloaded image.

    Uses the URL's base name when it carries an extension, otherwise
    ``image<index>`` with an extension guessed from the MIME type.
    """
    base_name = unquote(posixpath.basename(urlparse(url).path))
    if base_name and posixpath.splitext(base_name)[1]:
        return base_name

    extension = mimetypes.guess_extension(mime_type) or '.png'
    if extension == '.jpe':
        extension = '.jpg'
    return f"image{index}{extension}"


__all__ = ['ImportOrchestrator', 'image_file_name', 'AUTH_REQUIRED', 'PUBLISH_FAILED']
