"""Converters package for Notion block trees to note.com markup."""

import logging

from .block_parser import NotionBlockParser, ParseResult, ParseStats
from .note_formatter import FormattedDocument, NoteFormatter, PLACEHOLDER_PATTERN, image_markup


def convert_blocks(blocks, config=None, logger=None):
    """
    Convenience function to convert a Notion block tree into note.com markup.

    This runs the two pure conversion stages:
    1. Block parsing into the intermediate representation
    2. Rendering with a fresh image counter

    Args:
        blocks: List of NotionBlock with children attached
        config: Optional configuration dictionary for converter behavior
        logger: Optional logger instance (uses module logger if not provided)

    Returns:
        Tuple of (FormattedDocument, ParseStats)

    Example:
        >>> from converters import convert_blocks
        >>> document, stats = convert_blocks(client.get_blocks(page_id))
        >>> print(document.markdown)
    """
    if logger is None:
        logger = logging.getLogger('notion_note_importer.converters')

    result = NotionBlockParser(logger=logger, config=config).parse_document(blocks)
    document = NoteFormatter(logger=logger, config=config).render(result.nodes)
    return document, result.stats


__all__ = [
    'convert_blocks',
    'NotionBlockParser',
    'NoteFormatter',
    'FormattedDocument',
    'ParseResult',
    'ParseStats',
    'PLACEHOLDER_PATTERN',
    'image_markup',
]
