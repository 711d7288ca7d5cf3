"""Data models for the Notion to note.com import pipeline."""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Iterator, List, Optional, Tuple

from dateutil.parser import isoparse

logger = logging.getLogger('notion_note_importer')


class NotionErrorCode(Enum):
    """Failure causes surfaced by the pipeline."""
    INVALID_TOKEN = "INVALID_TOKEN"
    TOKEN_EXPIRED = "TOKEN_EXPIRED"
    PAGE_NOT_FOUND = "PAGE_NOT_FOUND"
    NO_ACCESS = "NO_ACCESS"
    RATE_LIMITED = "RATE_LIMITED"
    NETWORK_ERROR = "NETWORK_ERROR"
    SERVER_ERROR = "SERVER_ERROR"
    UNSUPPORTED_BLOCK = "UNSUPPORTED_BLOCK"
    IMAGE_DOWNLOAD_FAILED = "IMAGE_DOWNLOAD_FAILED"
    IMAGE_UPLOAD_FAILED = "IMAGE_UPLOAD_FAILED"


class IRNodeType(Enum):
    """Closed set of intermediate representation node kinds."""
    HEADING = "heading"
    PARAGRAPH = "paragraph"
    BULLET_LIST = "bulletList"
    NUMBERED_LIST = "numberedList"
    TODO_LIST = "todoList"
    CODE = "code"
    QUOTE = "quote"
    CALLOUT = "callout"
    DIVIDER = "divider"
    IMAGE = "image"
    TABLE = "table"
    TABLE_ROW = "tableRow"
    TABLE_CELL = "tableCell"
    EMBED = "embed"
    BOOKMARK = "bookmark"
    UNSUPPORTED = "unsupported"

    @property
    def is_list(self) -> bool:
        return self in LIST_NODE_TYPES


LIST_NODE_TYPES = frozenset({
    IRNodeType.BULLET_LIST,
    IRNodeType.NUMBERED_LIST,
    IRNodeType.TODO_LIST,
})


def _parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    """Parse a Notion ISO 8601 timestamp, returning None when absent or invalid."""
    if not value:
        return None
    try:
        return isoparse(value)
    except (ValueError, TypeError) as e:
        logger.warning(f"Failed to parse timestamp '{value}': {str(e)}")
        return None


@dataclass
class NotionBlock:
    """One node of a Notion block tree as returned by the blocks API."""

    id: str
    type: str
    has_children: bool = False
    payload: Dict[str, Any] = field(default_factory=dict)
    children: List['NotionBlock'] = field(default_factory=list)
    created_time: Optional[str] = None
    last_edited_time: Optional[str] = None

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> 'NotionBlock':
        """
        Build a block from a Notion API block object.

        Args:
            data: Raw block dictionary (``{"id", "type", "has_children", <type>: {...}}``)

        Returns:
            NotionBlock with its type-specific payload extracted
        """
        block_type = data.get('type', 'unsupported')
        return cls(
            id=data.get('id', ''),
            type=block_type,
            has_children=bool(data.get('has_children', False)),
            payload=data.get(block_type) or {},
            created_time=data.get('created_time'),
            last_edited_time=data.get('last_edited_time'),
        )

    def walk(self) -> Iterator['NotionBlock']:
        """Yield this block and all descendants in document order."""
        yield self
        for child in self.children:
            yield from child.walk()

    def to_dict(self) -> Dict[str, Any]:
        """Serialize block (and children) to dictionary."""
        return {
            'id': self.id,
            'type': self.type,
            'has_children': self.has_children,
            self.type: self.payload,
            'children': [child.to_dict() for child in self.children],
        }


def count_blocks(blocks: List[NotionBlock]) -> int:
    """Count every block in a list of block trees."""
    return sum(1 for block in blocks for _ in block.walk())


@dataclass
class NotionPage:
    """Page metadata returned by the Notion pages API."""

    id: str
    title: str
    url: Optional[str] = None
    created_time: Optional[datetime] = None
    last_edited_time: Optional[datetime] = None
    properties: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_api(cls, data: Dict[str, Any], title: str) -> 'NotionPage':
        return cls(
            id=data.get('id', ''),
            title=title,
            url=data.get('url'),
            created_time=_parse_timestamp(data.get('created_time')),
            last_edited_time=_parse_timestamp(data.get('last_edited_time')),
            properties=data.get('properties') or {},
        )

    def to_dict(self) -> Dict[str, Any]:
        """Serialize page metadata to dictionary."""
        return {
            'id': self.id,
            'title': self.title,
            'url': self.url,
            'created_time': self.created_time.isoformat() if self.created_time else None,
            'last_edited_time': self.last_edited_time.isoformat() if self.last_edited_time else None,
        }


@dataclass
class Annotations:
    """Independent text styling flags."""

    bold: bool = False
    italic: bool = False
    strikethrough: bool = False
    underline: bool = False
    code: bool = False


@dataclass
class RichTextSpan:
    """A run of text sharing one set of annotations and an optional link."""

    text: str
    annotations: Annotations = field(default_factory=Annotations)
    href: Optional[str] = None


@dataclass
class IRNode:
    """
    Intermediate representation node.

    A single tagged type: ``type`` selects how the remaining fields are read.
    ``source_id`` is the id of the Notion block the node was built from.
    """

    type: IRNodeType
    content: Optional[str] = None
    children: List['IRNode'] = field(default_factory=list)
    attributes: Dict[str, Any] = field(default_factory=dict)
    rich_text: List[RichTextSpan] = field(default_factory=list)
    source_id: Optional[str] = None

    def walk(self) -> Iterator['IRNode']:
        """Yield this node and all descendants in document order."""
        yield self
        for child in self.children:
            yield from child.walk()

    @property
    def plain_text(self) -> str:
        return ''.join(span.text for span in self.rich_text)


@dataclass
class ImageData:
    """Image bytes waiting to be uploaded to note.com."""

    file_name: str
    content: bytes
    mime_type: str
    reference: Optional[str] = None

    @property
    def key(self) -> str:
        """Key under which the uploaded URL is reported."""
        return self.reference or self.file_name


@dataclass
class ImportStats:
    """Block and image counters for one import."""

    total_blocks: int = 0
    converted_blocks: int = 0
    skipped_blocks: int = 0
    images_total: int = 0
    images_success: int = 0
    images_failed: int = 0

    def to_dict(self) -> Dict[str, int]:
        return {
            'total_blocks': self.total_blocks,
            'converted_blocks': self.converted_blocks,
            'skipped_blocks': self.skipped_blocks,
            'images_total': self.images_total,
            'images_success': self.images_success,
            'images_failed': self.images_failed,
        }


@dataclass(frozen=True)
class ImportResult:
    """Terminal outcome of one import call."""

    success: bool
    stats: ImportStats
    note_id: Optional[str] = None
    warnings: Tuple[str, ...] = ()
    error: Optional[str] = None
    error_code: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Serialize result to dictionary."""
        return {
            'success': self.success,
            'note_id': self.note_id,
            'stats': self.stats.to_dict(),
            'warnings': list(self.warnings),
            'error': self.error,
            'error_code': self.error_code,
        }
