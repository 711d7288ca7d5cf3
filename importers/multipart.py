"""Ordered multipart/form-data body builder shared by both upload phases."""

import logging
from typing import List, Optional, Tuple, Union

from urllib3.fields import RequestField
from urllib3.filepost import encode_multipart_formdata

logger = logging.getLogger('notion_note_importer.importers.multipart')


class MultipartFormBuilder:
    """
    Builds a multipart/form-data body with fields in insertion order.

    Presigned POST signing fields must precede the file part.
    """

    def __init__(self, boundary: Optional[str] = None):
        """
        Initialize builder.

        Args:
            boundary: Optional fixed boundary (random when omitted)
        """
        self.boundary = boundary
        self._fields: List[RequestField] = []
        self._names: List[str] = []

    def add_field(self, name: str, value: Union[str, bytes]) -> 'MultipartFormBuilder':
        """Append a plain form field."""
        field = RequestField(name=name, data=value)
        field.make_multipart()
        self._fields.append(field)
        self._names.append(name)
        return self

    def add_file(
        self,
        name: str,
        file_name: str,
        content: bytes,
        content_type: str = 'application/octet-stream'
    ) -> 'MultipartFormBuilder':
        """Append a file part."""
        field = RequestField(name=name, data=content, filename=file_name)
        field.make_multipart(content_type=content_type)
        self._fields.append(field)
        self._names.append(name)
        return self

    @property
    def field_names(self) -> List[str]:
        return list(self._names)

    def build(self) -> Tuple[bytes, str]:
        """
        Encode the form.

        Returns:
            Tuple of (body bytes, Content-Type header value with boundary)
        """
        body, content_type = encode_multipart_formdata(self._fields, boundary=self.boundary)
        logger.debug(f"Built multipart body with fields {self.field_names} ({len(body)} bytes)")
        return body, content_type

    def __len__(self) -> int:
        return len(self._fields)


__all__ = ['MultipartFormBuilder']
