"""IR to note.com markup formatter."""

import html
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from config_loader import get_nested
from models import IRNode, IRNodeType, RichTextSpan

logger = logging.getLogger('notion_note_importer.converters.note_formatter')

PLACEHOLDER_TEMPLATE = '__IMAGE_PLACEHOLDER_{}__'
PLACEHOLDER_PATTERN = re.compile(r'__IMAGE_PLACEHOLDER_\d+__')
PLACEHOLDER_PREFIX = '__IMAGE_PLACEHOLDER_'

INDENT = '  '


@dataclass
class FormattedDocument:
    """
    Result of one render.

    ``images`` maps every placeholder emitted into ``markdown`` to the image
    node it stands for, in emission order.
    """

    markdown: str
    image_counter: int
    images: Dict[str, IRNode] = field(default_factory=dict)


@dataclass
class _RenderState:
    image_counter: int
    images: Dict[str, IRNode] = field(default_factory=dict)


def escape_placeholders(text: str, escaped: str = '\\_\\_IMAGE_PLACEHOLDER_') -> str:
    """
    Break placeholder-shaped user text so only emitted images match ``PLACEHOLDER_PATTERN``.

    The default replacement renders as the original text in markdown; code
    and HTML contexts pass their own.
    """
    return text.replace(PLACEHOLDER_PREFIX, escaped) if text else text


def image_markup(src: str, caption: Optional[str] = None) -> str:
    """Build the note.com figure markup for one image."""
    figcaption = ''
    if caption:
        caption = escape_placeholders(html.escape(caption, quote=False), '&#95;&#95;IMAGE_PLACEHOLDER_')
        figcaption = f"<figcaption>{caption}</figcaption>"
    return f'<figure><img src="{src}">{figcaption}</figure>'


def format_rich_text(spans: List[RichTextSpan]) -> str:
    """
    Render rich text spans with inline markup.

    Code is applied innermost, then bold, italic, strikethrough and
    underline, and finally the hyperlink.
    """
    parts = []
    for span in spans:
        text = span.text
        if not text:
            continue

        annotations = span.annotations
        if annotations.code:
            text = f"`{text}`"
        if annotations.bold:
            text = f"**{text}**"
        if annotations.italic:
            text = f"*{text}*"
        if annotations.strikethrough:
            text = f"~~{text}~~"
        if annotations.underline:
            text = f"<u>{text}</u>"
        if span.href:
            text = f"[{text}]({span.href})"

        parts.append(text)
    return escape_placeholders(''.join(parts))


def _prefix_lines(text: str, prefix: str) -> str:
    return '\n'.join(f"{prefix}{line}".rstrip() if line else prefix.rstrip() for line in text.split('\n'))


class NoteFormatter:
    """
    Renders IR nodes into the markdown dialect accepted by note.com.

    Images are emitted as figure placeholders numbered from the counter
    passed to ``render``. ``format_to_markdown`` keeps an instance counter
    across calls and must be reset with ``reset_image_counter`` between
    conversions; ``render`` has no such state and is safe to share.
    """

    def __init__(self, logger: Optional[logging.Logger] = None, config: Optional[Dict[str, Any]] = None):
        self.logger = logger or logging.getLogger('notion_note_importer.converters.note_formatter')
        config = config or {}
        self.min_heading_level = get_nested(config, 'conversion.min_heading_level', 1)
        self.image_counter = 0
        self.last_images: Dict[str, IRNode] = {}

    def reset_image_counter(self) -> None:
        """Reset the instance image counter used by ``format_to_markdown``."""
        self.image_counter = 0
        self.last_images = {}

    def format_to_markdown(self, nodes: List[IRNode]) -> str:
        """
        Render nodes continuing from the instance image counter.

        Args:
            nodes: IR nodes in document order

        Returns:
            Rendered markdown
        """
        document = self.render(nodes, self.image_counter)
        self.image_counter = document.image_counter
        self.last_images = document.images
        return document.markdown

    def render(self, nodes: List[IRNode], image_counter: int = 0) -> FormattedDocument:
        """
        Render nodes with an explicitly threaded image counter.

        Args:
            nodes: IR nodes in document order
            image_counter: Number of placeholders already issued

        Returns:
            FormattedDocument with markdown, final counter and placeholder map
        """
        state = _RenderState(image_counter=image_counter)
        markdown = self._render_blocks(nodes, state)

        self.logger.debug(
            f"Rendered {len(nodes)} top-level nodes, {len(state.images)} image placeholders"
        )
        return FormattedDocument(markdown=markdown, image_counter=state.image_counter, images=state.images)

    @staticmethod
    def extract_image_references(markdown: str) -> List[str]:
        """
        Return every image placeholder in text order, duplicates kept.

        Args:
            markdown: Rendered markdown

        Returns:
            Placeholder strings
        """
        return PLACEHOLDER_PATTERN.findall(markdown)

    def _render_blocks(self, nodes: List[IRNode], state: _RenderState) -> str:
        rendered = (self._render_node(node, state) for node in nodes)
        return '\n\n'.join(text for text in rendered if text)

    def _render_node(self, node: IRNode, state: _RenderState, depth: int = 0) -> str:
        node_type = node.type

        if node_type == IRNodeType.HEADING:
            return self._with_children(self._render_heading(node), node, state)
        elif node_type == IRNodeType.PARAGRAPH:
            return self._with_children(format_rich_text(node.rich_text), node, state)
        elif node_type.is_list:
            return self._render_list(node, state, depth)
        elif node_type == IRNodeType.CODE:
            code = escape_placeholders(node.content or '', '_\u200b_IMAGE_PLACEHOLDER_')
            return f"```{node.attributes.get('language', '')}\n{code}\n```"
        elif node_type == IRNodeType.QUOTE:
            return self._render_quote(format_rich_text(node.rich_text), node, state)
        elif node_type == IRNodeType.CALLOUT:
            icon = node.attributes.get('icon')
            text = format_rich_text(node.rich_text)
            return self._render_quote(f"{icon} {text}" if icon else text, node, state)
        elif node_type == IRNodeType.DIVIDER:
            return '---'
        elif node_type == IRNodeType.IMAGE:
            return self._render_image(node, state)
        elif node_type == IRNodeType.TABLE:
            return self._render_table(node)
        elif node_type == IRNodeType.TABLE_ROW:
            return self._render_table_row(node)
        elif node_type == IRNodeType.TABLE_CELL:
            return self._render_table_cell(node)
        elif node_type == IRNodeType.BOOKMARK:
            url = node.content or node.attributes.get('url') or ''
            label = escape_placeholders(node.attributes.get('caption') or url)
            url = escape_placeholders(url, '%5F%5FIMAGE_PLACEHOLDER_')
            return f"[{label}]({url})" if url else label
        elif node_type == IRNodeType.EMBED:
            url = node.content or node.attributes.get('url') or ''
            label = escape_placeholders(url)
            url = escape_placeholders(url, '%5F%5FIMAGE_PLACEHOLDER_')
            return f"[{label}]({url})" if url else ''
        elif node_type == IRNodeType.UNSUPPORTED:
            return escape_placeholders(node.content or '')

        self.logger.warning(f"No rendering rule for node type: {node_type}")
        return ''

    def _with_children(self, text: str, node: IRNode, state: _RenderState) -> str:
        if not node.children:
            return text
        children = self._render_blocks(node.children, state)
        return '\n\n'.join(part for part in (text, children) if part)

    def _render_heading(self, node: IRNode) -> str:
        level = node.attributes.get('level', 1)
        level = min(max(level, self.min_heading_level), 6)
        return f"{'#' * level} {format_rich_text(node.rich_text)}"

    def _render_list(self, node: IRNode, state: _RenderState, depth: int) -> str:
        indent = INDENT * depth
        lines = []

        for index, item in enumerate(node.children, start=1):
            if node.type == IRNodeType.NUMBERED_LIST:
                marker = f"{index}."
            elif node.type == IRNodeType.TODO_LIST:
                marker = '- [x]' if item.attributes.get('checked') else '- [ ]'
            else:
                marker = '-'
            lines.append(f"{indent}{marker} {format_rich_text(item.rich_text)}".rstrip())

            for child in item.children:
                if child.type.is_list:
                    rendered = self._render_list(child, state, depth + 1)
                else:
                    rendered = self._render_node(child, state, depth + 1)
                    rendered = _prefix_lines(rendered, INDENT * (depth + 1)) if rendered else ''
                if rendered:
                    lines.append(rendered)

        return '\n'.join(lines)

    def _render_quote(self, text: str, node: IRNode, state: _RenderState) -> str:
        body = self._with_children(text, node, state)
        return _prefix_lines(body, '> ')

    def _render_image(self, node: IRNode, state: _RenderState) -> str:
        state.image_counter += 1
        placeholder = PLACEHOLDER_TEMPLATE.format(state.image_counter)
        state.images[placeholder] = node
        return image_markup(placeholder, node.attributes.get('caption'))

    def _render_table(self, node: IRNode) -> str:
        rows = [child for child in node.children if child.type == IRNodeType.TABLE_ROW]
        if not rows:
            return ''

        width = max(len(row.children) for row in rows) or 1
        lines = []
        for position, row in enumerate(rows):
            lines.append(self._render_table_row(row, width))
            if position == 0:
                lines.append('| ' + ' | '.join(['---'] * width) + ' |')
        return '\n'.join(lines)

    def _render_table_row(self, node: IRNode, width: Optional[int] = None) -> str:
        cells = [self._render_table_cell(cell) for cell in node.children]
        if width is not None:
            cells.extend([''] * (width - len(cells)))
        return '| ' + ' | '.join(cells) + ' |'

    @staticmethod
    def _render_table_cell(node: IRNode) -> str:
        text = format_rich_text(node.rich_text)
        return text.replace('|', '\\|').replace('\n', '<br>')


__all__ = [
    'NoteFormatter',
    'FormattedDocument',
    'PLACEHOLDER_PATTERN',
    'PLACEHOLDER_TEMPLATE',
    'escape_placeholders',
    'format_rich_text',
    'image_markup',
]
