"""
Image uploader for note.com import.

This module relocates images to note.com object storage using the two-phase
presigned POST protocol and rewrites image references in the note body.
"""

import logging
import re
from typing import Any, Callable, Dict, List, Optional

from tqdm import tqdm

from config_loader import get_nested
from converters.note_formatter import PLACEHOLDER_PATTERN, image_markup
from logger import ProgressTracker
from models import ImageData, NotionErrorCode
from .multipart import MultipartFormBuilder
from .note_client import NoteApiError

# Signing fields in the order the storage policy expects; the file part follows.
STORAGE_FIELD_ORDER = (
    'key',
    'acl',
    'Expires',
    'policy',
    'x-amz-credential',
    'x-amz-algorithm',
    'x-amz-date',
    'x-amz-signature',
)

FIGURE_PATTERN = re.compile(
    r'<figure><img src="(?P<src>__IMAGE_PLACEHOLDER_\d+__)"[^>]*>'
    r'(?P<caption><figcaption>.*?</figcaption>)?</figure>',
    re.DOTALL
)
BARE_PLACEHOLDER_PATTERN = re.compile(r'(?<!src=")' + PLACEHOLDER_PATTERN.pattern)
WIKI_IMAGE_PATTERN = re.compile(r'!\[\[([^\]]+)\]\]')
MARKDOWN_IMAGE_PATTERN = re.compile(r'!\[([^\]]*)\]\(([^)]+)\)')

FailureCallback = Callable[[ImageData, 'ImageUploadError'], None]


class ImageUploadError(Exception):
    """Error raised when a single image cannot be relocated."""

    def __init__(self, message: str, file_name: str, code: NotionErrorCode = NotionErrorCode.IMAGE_UPLOAD_FAILED):
        super().__init__(message)
        self.message = message
        self.file_name = file_name
        self.code = code


class NoteImageUploader:
    """Handles image uploads and reference rewriting for note.com."""

    DEFAULT_SUPPORTED_TYPES = ('image/jpeg', 'image/png', 'image/gif', 'image/webp')
    DEFAULT_MAX_SIZE = 10 * 1024 * 1024

    def __init__(
        self,
        config: Dict[str, Any],
        note_client: Any,
        logger: Optional[logging.Logger] = None
    ):
        """
        Initialize image uploader.

        Args:
            config: Configuration dictionary
            note_client: NoteClient instance
            logger: Optional logger instance
        """
        self.config = config
        self.client = note_client
        self.logger = logger or logging.getLogger('notion_note_importer.importers.image_uploader')

        self.supported_types = set(
            get_nested(config, 'images.supported_formats') or self.DEFAULT_SUPPORTED_TYPES
        )
        self.max_size = get_nested(config, 'images.max_size_bytes', self.DEFAULT_MAX_SIZE)
        self.show_progress = bool(get_nested(config, 'images.show_progress', False))

        self.logger.debug("Initialized NoteImageUploader")

    def upload_images(
        self,
        images: List[ImageData],
        on_failure: Optional[FailureCallback] = None
    ) -> Dict[str, str]:
        """
        Upload images one at a time.

        A failing image is logged and reported through ``on_failure``; the
        remaining images are still uploaded.

        Args:
            images: Images to upload
            on_failure: Optional callback receiving (image, error) per failure

        Returns:
            Dict mapping each uploaded image's key to its note.com URL
        """
        uploaded: Dict[str, str] = {}
        if not images:
            return uploaded

        iterator = images
        if self.show_progress:
            iterator = tqdm(images, desc="Uploading images", unit="image")

        with ProgressTracker(len(images), "images", self.logger) as tracker:
            for image in iterator:
                try:
                    uploaded[image.key] = self.upload_image(image)
                except ImageUploadError as e:
                    self.logger.error(f"Failed to upload image '{image.file_name}': {e.message}")
                    tracker.increment(success=False)
                    if on_failure is not None:
                        on_failure(image, e)
                    continue
                tracker.increment(success=True)

        return uploaded

    def upload_image(self, image: ImageData) -> str:
        """
        Relocate one image to note.com storage.

        Args:
            image: Image to upload

        Returns:
            Final public URL of the uploaded image

        Raises:
            ImageUploadError: On validation, presign or storage failure
        """
        self._validate(image)

        try:
            presigned = self.client.request_presigned_post(image.file_name)

            builder = MultipartFormBuilder()
            for name in STORAGE_FIELD_ORDER:
                if presigned.fields.get(name):
                    builder.add_field(name, presigned.fields[name])
            for name, value in presigned.fields.items():
                if name not in STORAGE_FIELD_ORDER and value:
                    builder.add_field(name, value)
            builder.add_file('file', image.file_name, image.content, image.mime_type)

            body, content_type = builder.build()
            self.client.upload_to_storage(presigned.action, body, content_type)
        except NoteApiError as e:
            raise ImageUploadError(e.message, image.file_name)

        self.logger.debug(f"Uploaded image '{image.file_name}' -> {presigned.url}")
        return presigned.url

    def _validate(self, image: ImageData) -> None:
        if image.mime_type not in self.supported_types:
            raise ImageUploadError(f"Unsupported image format: {image.mime_type}", image.file_name)
        if not image.content:
            raise ImageUploadError("Image is empty", image.file_name)
        if len(image.content) > self.max_size:
            raise ImageUploadError(
                f"Image too large: {len(image.content)} bytes (max: {self.max_size})",
                image.file_name
            )

    def replace_image_references(self, markdown: str, image_map: Dict[str, str]) -> str:
        """
        Replace image placeholders and references with uploaded URLs.

        Figure placeholders keep their caption, bare placeholders are wrapped
        in figure markup, and ``![[file]]`` / ``![alt](path)`` references are
        resolved by file name. References missing from ``image_map`` are left
        untouched.

        Args:
            markdown: Note body with placeholders
            image_map: Mapping from placeholder or file name to URL

        Returns:
            Body with known references replaced
        """
        if not image_map or not markdown:
            return markdown

        replacements = 0

        def replace_figure(match):
            nonlocal replacements
            url = image_map.get(match.group('src'))
            if url is None:
                return match.group(0)
            replacements += 1
            return f'<figure><img src="{url}">{match.group("caption") or ""}</figure>'

        def replace_bare(match):
            nonlocal replacements
            url = image_map.get(match.group(0))
            if url is None:
                return match.group(0)
            replacements += 1
            return image_markup(url)

        def replace_wiki(match):
            nonlocal replacements
            url = image_map.get(match.group(1).strip())
            if url is None:
                return match.group(0)
            replacements += 1
            return image_markup(url)

        def replace_markdown(match):
            nonlocal replacements
            alt, path = match.group(1), match.group(2)
            url = image_map.get(path.split('/')[-1]) or image_map.get(path)
            if url is None:
                return match.group(0)
            replacements += 1
            return f'<figure><img src="{url}" alt="{alt}"></figure>'

        result = FIGURE_PATTERN.sub(replace_figure, markdown)
        result = BARE_PLACEHOLDER_PATTERN.sub(replace_bare, result)
        result = WIKI_IMAGE_PATTERN.sub(replace_wiki, result)
        result = MARKDOWN_IMAGE_PATTERN.sub(replace_markdown, result)

        self.logger.info(f"Rewrote {replacements} image references")
        return result


__all__ = ['NoteImageUploader', 'ImageUploadError', 'STORAGE_FIELD_ORDER']
