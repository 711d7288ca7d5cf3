"""Import package for publishing converted Notion pages to note.com.

Package Structure:
- multipart: Ordered multipart/form-data builder used by both upload phases
- note_client: REST client for note.com note creation and presigned uploads
- image_uploader: Relocates images to note.com storage and rewrites references

Configuration Referenced:
- note.*: note.com API settings and session credentials
- images.*: Accepted formats, size limit and progress display
"""

from .image_uploader import ImageUploadError, NoteImageUploader, STORAGE_FIELD_ORDER
from .multipart import MultipartFormBuilder
from .note_client import NoteApiError, NoteClient, PresignedPost

__all__ = [
    'NoteClient',
    'NoteApiError',
    'PresignedPost',
    'NoteImageUploader',
    'ImageUploadError',
    'MultipartFormBuilder',
    'STORAGE_FIELD_ORDER',
]
