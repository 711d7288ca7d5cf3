"""Notion block tree to intermediate representation parser."""

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterator, List, Optional, Tuple

from config_loader import get_nested
from extractors import dig, first_of
from models import Annotations, IRNode, IRNodeType, NotionBlock, RichTextSpan, count_blocks

logger = logging.getLogger('notion_note_importer.converters.block_parser')

DEFAULT_MAX_DEPTH = 10

LIST_ITEM_TYPES = {
    'bulleted_list_item': IRNodeType.BULLET_LIST,
    'numbered_list_item': IRNodeType.NUMBERED_LIST,
    'to_do': IRNodeType.TODO_LIST,
}

# Containers whose children are spliced into the parent sequence.
TRANSPARENT_BLOCK_TYPES = frozenset({'column_list', 'column', 'synced_block'})

SPAN_TEXT_EXTRACTORS = (
    dig('plain_text'),
    dig('text', 'content'),
    dig('equation', 'expression'),
)

SPAN_HREF_EXTRACTORS = (
    dig('href'),
    dig('text', 'link', 'url'),
)

FILE_URL_EXTRACTORS = (
    dig('file', 'url'),
    dig('external', 'url'),
    dig('url'),
)


@dataclass
class ParseStats:
    """Block counters for one parse. Every source block is converted or skipped."""

    total_blocks: int = 0
    converted_blocks: int = 0

    @property
    def skipped_blocks(self) -> int:
        return self.total_blocks - self.converted_blocks

    def to_dict(self) -> Dict[str, int]:
        return {
            'total_blocks': self.total_blocks,
            'converted_blocks': self.converted_blocks,
            'skipped_blocks': self.skipped_blocks,
        }


@dataclass
class ParseResult:
    nodes: List[IRNode] = field(default_factory=list)
    stats: ParseStats = field(default_factory=ParseStats)


def parse_rich_text(spans: Any) -> List[RichTextSpan]:
    """
    Convert a Notion rich text array into spans.

    Args:
        spans: List of Notion rich text objects

    Returns:
        List of RichTextSpan, empty when the input is not a list
    """
    if not isinstance(spans, list):
        return []

    result = []
    for span in spans:
        if not isinstance(span, dict):
            continue
        annotations = span.get('annotations') or {}
        result.append(RichTextSpan(
            text=first_of(span, SPAN_TEXT_EXTRACTORS, default=''),
            annotations=Annotations(
                bold=bool(annotations.get('bold')),
                italic=bool(annotations.get('italic')),
                strikethrough=bool(annotations.get('strikethrough')),
                underline=bool(annotations.get('underline')),
                code=bool(annotations.get('code')),
            ),
            href=first_of(span, SPAN_HREF_EXTRACTORS),
        ))
    return result


def plain_text(spans: Any) -> str:
    """Join the text of a Notion rich text array without formatting."""
    return ''.join(span.text for span in parse_rich_text(spans))


class NotionBlockParser:
    """
    Converts Notion block trees into a list of IR nodes.

    Dispatch happens on ``block.type`` through ``self._handlers``; each
    handler returns one IR node. Consecutive list items of the same kind are
    merged into one list node, and transparent containers (columns, synced
    blocks) are spliced into their parent. Parsing never performs I/O and
    never raises for unknown block types.
    """

    def __init__(self, logger: Optional[logging.Logger] = None, config: Optional[Dict[str, Any]] = None):
        """
        Initialize parser.

        Args:
            logger: Optional logger instance
            config: Optional configuration dictionary (``conversion`` section used)
        """
        self.logger = logger or logging.getLogger('notion_note_importer.converters.block_parser')
        config = config or {}
        self.max_depth = get_nested(config, 'conversion.max_recursion_depth', DEFAULT_MAX_DEPTH)
        self.warn_unsupported = get_nested(config, 'conversion.unsupported_block_warning', True)

        self._handlers: Dict[str, Callable[[NotionBlock, int, ParseStats], IRNode]] = {
            'paragraph': self._parse_paragraph,
            'heading_1': self._parse_heading,
            'heading_2': self._parse_heading,
            'heading_3': self._parse_heading,
            'bulleted_list_item': self._parse_list_item,
            'numbered_list_item': self._parse_list_item,
            'to_do': self._parse_list_item,
            'code': self._parse_code,
            'equation': self._parse_equation,
            'quote': self._parse_quote,
            'toggle': self._parse_quote,
            'callout': self._parse_callout,
            'divider': self._parse_divider,
            'image': self._parse_image,
            'table': self._parse_table,
            'table_row': self._parse_table_row,
            'bookmark': self._parse_bookmark,
            'link_preview': self._parse_bookmark,
            'embed': self._parse_embed,
            'video': self._parse_embed,
            'audio': self._parse_embed,
            'file': self._parse_file,
            'pdf': self._parse_file,
            'child_page': self._parse_child_page,
            'child_database': self._parse_child_database,
        }

    def parse_blocks(self, blocks: List[NotionBlock]) -> List[IRNode]:
        """
        Convert a block tree into IR nodes.

        Args:
            blocks: Top-level blocks with children attached

        Returns:
            IR nodes in document order
        """
        return self.parse_document(blocks).nodes

    def parse_document(self, blocks: List[NotionBlock]) -> ParseResult:
        """
        Convert a block tree into IR nodes and collect block statistics.

        Args:
            blocks: Top-level blocks with children attached

        Returns:
            ParseResult with nodes and stats
        """
        stats = ParseStats(total_blocks=count_blocks(blocks))
        nodes = self._parse_sequence(blocks, 1, stats)

        self.logger.debug(
            f"Parsed {stats.total_blocks} blocks: {stats.converted_blocks} converted, "
            f"{stats.skipped_blocks} skipped"
        )
        return ParseResult(nodes=nodes, stats=stats)

    def _parse_sequence(self, blocks: List[NotionBlock], depth: int, stats: ParseStats) -> List[IRNode]:
        """Parse sibling blocks, merging consecutive list items into list nodes."""
        nodes: List[IRNode] = []
        current_list: Optional[IRNode] = None

        for list_type, node in self._iter_nodes(blocks, depth, stats):
            if node is None:
                current_list = None
                continue

            if list_type is None:
                current_list = None
                nodes.append(node)
                continue

            if current_list is None or current_list.type != list_type:
                current_list = IRNode(type=list_type, source_id=node.source_id)
                nodes.append(current_list)
            current_list.children.append(node)

        return nodes

    def _iter_nodes(
        self, blocks: List[NotionBlock], depth: int, stats: ParseStats
    ) -> Iterator[Tuple[Optional[IRNodeType], Optional[IRNode]]]:
        """
        Yield ``(list_type, node)`` per block; ``list_type`` is None for non-list nodes.

        Spliced container content is bracketed by ``(None, None)`` run breaks
        so list items never merge across a container boundary.
        """
        for block in blocks:
            if block.type in TRANSPARENT_BLOCK_TYPES:
                stats.converted_blocks += 1
                yield None, None
                if block.children and depth >= self.max_depth:
                    yield None, self._depth_limit_node(block)
                else:
                    yield from self._iter_nodes(block.children, depth + 1, stats)
                yield None, None
                continue

            yield LIST_ITEM_TYPES.get(block.type), self._parse_block(block, depth, stats)

    def _parse_block(self, block: NotionBlock, depth: int, stats: ParseStats) -> IRNode:
        handler = self._handlers.get(block.type)
        if handler is None:
            return self._unsupported(block, f"[Unsupported: {block.type}]")

        node = handler(block, depth, stats)
        node.source_id = block.id
        if node.type != IRNodeType.UNSUPPORTED:
            stats.converted_blocks += 1
        return node

    def _parse_children(self, block: NotionBlock, depth: int, stats: ParseStats) -> List[IRNode]:
        """Parse nested blocks, replacing them with a marker beyond the depth limit."""
        if not block.children:
            return []
        if depth >= self.max_depth:
            return [self._depth_limit_node(block)]
        return self._parse_sequence(block.children, depth + 1, stats)

    def _depth_limit_node(self, block: NotionBlock) -> IRNode:
        omitted = count_blocks(block.children)
        self.logger.warning(
            f"Depth limit {self.max_depth} reached at block {block.id}; omitting {omitted} nested blocks"
        )
        return IRNode(
            type=IRNodeType.UNSUPPORTED,
            content=f"[Nested content omitted: depth limit {self.max_depth} reached]",
            source_id=block.id,
        )

    def _unsupported(self, block: NotionBlock, content: str) -> IRNode:
        if self.warn_unsupported:
            self.logger.warning(f"Unsupported block type: {block.type} ({block.id})")
        return IRNode(
            type=IRNodeType.UNSUPPORTED,
            content=content,
            attributes={'block_type': block.type},
            source_id=block.id,
        )

    def _parse_paragraph(self, block, depth, stats):
        return IRNode(
            type=IRNodeType.PARAGRAPH,
            rich_text=parse_rich_text(block.payload.get('rich_text')),
            children=self._parse_children(block, depth, stats),
        )

    def _parse_heading(self, block, depth, stats):
        return IRNode(
            type=IRNodeType.HEADING,
            attributes={'level': int(block.type[-1])},
            rich_text=parse_rich_text(block.payload.get('rich_text')),
            children=self._parse_children(block, depth, stats),
        )

    def _parse_list_item(self, block, depth, stats):
        node = IRNode(
            type=LIST_ITEM_TYPES[block.type],
            rich_text=parse_rich_text(block.payload.get('rich_text')),
            children=self._parse_children(block, depth, stats),
        )
        if block.type == 'to_do':
            node.attributes['checked'] = bool(block.payload.get('checked'))
        return node

    def _parse_code(self, block, depth, stats):
        # Long code is split over several spans; formatting spans would corrupt it.
        return IRNode(
            type=IRNodeType.CODE,
            content=plain_text(block.payload.get('rich_text')),
            attributes={'language': block.payload.get('language') or ''},
        )

    def _parse_equation(self, block, depth, stats):
        return IRNode(
            type=IRNodeType.CODE,
            content=block.payload.get('expression') or '',
            attributes={'language': 'latex'},
        )

    def _parse_quote(self, block, depth, stats):
        return IRNode(
            type=IRNodeType.QUOTE,
            rich_text=parse_rich_text(block.payload.get('rich_text')),
            children=self._parse_children(block, depth, stats),
        )

    def _parse_callout(self, block, depth, stats):
        icon = block.payload.get('icon') or {}
        icon_type = icon.get('type')
        if icon_type == 'emoji':
            icon_text = icon.get('emoji') or ''
        elif icon_type in ('external', 'file'):
            icon_text = '[Image]'
        else:
            icon_text = ''

        return IRNode(
            type=IRNodeType.CALLOUT,
            attributes={'icon': icon_text},
            rich_text=parse_rich_text(block.payload.get('rich_text')),
            children=self._parse_children(block, depth, stats),
        )

    def _parse_divider(self, block, depth, stats):
        return IRNode(type=IRNodeType.DIVIDER)

    def _parse_image(self, block, depth, stats):
        url = first_of(block.payload, FILE_URL_EXTRACTORS, default='')
        return IRNode(
            type=IRNodeType.IMAGE,
            content=url,
            attributes={'url': url, 'caption': plain_text(block.payload.get('caption'))},
        )

    def _parse_table(self, block, depth, stats):
        """
        Build a table node from the Notion table block.

        Notion stores the header flags on the table block, so they are kept on
        the table node and ``has_column_header`` is copied down to the first
        row as ``is_header``.
        """
        has_column_header = bool(block.payload.get('has_column_header'))
        node = IRNode(
            type=IRNodeType.TABLE,
            attributes={
                'has_column_header': has_column_header,
                'has_row_header': bool(block.payload.get('has_row_header')),
            },
            children=self._parse_children(block, depth, stats),
        )

        rows = [child for child in node.children if child.type == IRNodeType.TABLE_ROW]
        if rows and has_column_header:
            rows[0].attributes['is_header'] = True
        return node

    def _parse_table_row(self, block, depth, stats):
        cells = block.payload.get('cells') or []
        return IRNode(
            type=IRNodeType.TABLE_ROW,
            children=[
                IRNode(type=IRNodeType.TABLE_CELL, rich_text=parse_rich_text(cell))
                for cell in cells
            ],
        )

    def _parse_bookmark(self, block, depth, stats):
        url = block.payload.get('url') or ''
        return IRNode(
            type=IRNodeType.BOOKMARK,
            content=url,
            attributes={'url': url, 'caption': plain_text(block.payload.get('caption'))},
        )

    def _parse_embed(self, block, depth, stats):
        url = first_of(block.payload, FILE_URL_EXTRACTORS, default='')
        return IRNode(
            type=IRNodeType.EMBED,
            content=url,
            attributes={'url': url, 'caption': plain_text(block.payload.get('caption'))},
        )

    def _parse_file(self, block, depth, stats):
        url = first_of(block.payload, FILE_URL_EXTRACTORS, default='')
        caption = plain_text(block.payload.get('caption')) or block.payload.get('name') or ''
        return IRNode(
            type=IRNodeType.BOOKMARK,
            content=url,
            attributes={'url': url, 'caption': caption},
        )

    def _parse_child_page(self, block, depth, stats):
        title = block.payload.get('title') or 'Untitled'
        return self._unsupported(block, f"[Child Page: {title}]")

    def _parse_child_database(self, block, depth, stats):
        title = block.payload.get('title') or 'Untitled'
        return self._unsupported(block, f"[Database: {title}]")


__all__ = ['NotionBlockParser', 'ParseResult', 'ParseStats', 'parse_rich_text', 'plain_text']
