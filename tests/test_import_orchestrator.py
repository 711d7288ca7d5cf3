"""End-to-end tests for the import pipeline with in-memory HTTP sessions."""

import json
import unittest

from config_loader import DEFAULT_CONFIG, deep_merge
from fakes import FakeSession, api_block, api_page, make_response, rich_text
from importers import NoteClient
from notion_api import NotionClient
from orchestrator import ImportOrchestrator
from orchestrator.import_orchestrator import AUTH_REQUIRED, PUBLISH_FAILED, image_file_name

PAGE_ID = 'page-1'
NOTION_FILE = 'https://files.notion.example/{}.png?X-Amz-Signature=abc'


def image_block(block_id, index, caption=''):
    return api_block(block_id, 'image', {
        'type': 'file',
        'file': {'url': NOTION_FILE.format(index)},
        'caption': [rich_text(caption)] if caption else [],
    })


class FakeNotionApi:
    """Routes Notion API requests to a single page and its blocks."""

    def __init__(self, blocks, page_status=200):
        self.blocks = blocks
        self.page_status = page_status

    def __call__(self, method, url, kwargs):
        if url.endswith(f'/v1/pages/{PAGE_ID}'):
            if self.page_status != 200:
                return make_response(self.page_status, {'message': 'Could not find page'})
            return make_response(200, api_page(PAGE_ID, 'Doc'))
        if url.endswith(f'/v1/blocks/{PAGE_ID}/children'):
            return make_response(200, {'results': self.blocks, 'has_more': False, 'next_cursor': None})
        raise AssertionError(f'Unexpected Notion request: {method} {url}')


class FakeNoteApi:
    """Routes note.com API requests; presign URLs are derived from the uploaded file name."""

    def __init__(self, note_status=201):
        self.note_status = note_status
        self.notes = []

    def __call__(self, method, url, kwargs):
        if url.endswith('/v3/images/upload/presigned_post'):
            file_name = kwargs['data'].split(b'\r\n\r\n', 1)[1].split(b'\r\n', 1)[0].decode()
            return make_response(200, {'data': {
                'url': f'https://dest.example/{file_name}',
                'action': 'https://storage.example/bucket',
                'post': {'key': f'img/{file_name}', 'policy': 'p', 'x-amz-signature': 's'},
            }})
        if url.endswith('/v3/notes'):
            self.notes.append(json.loads(kwargs['data']))
            if self.note_status >= 300:
                return make_response(self.note_status, content=b'error')
            return make_response(self.note_status, {'data': {'id': 123, 'key': 'nabc'}})
        raise AssertionError(f'Unexpected note.com request: {method} {url}')


class TestImportOrchestrator(unittest.TestCase):
    def setUp(self):
        self.config = deep_merge(DEFAULT_CONFIG, {'notion': {'token': 'secret'}})
        self.storage_failures = set()
        self.storage_session = FakeSession(self.storage)

    def storage(self, method, url, kwargs):
        for name in self.storage_failures:
            if f'filename="{name}"'.encode() in kwargs['data']:
                return make_response(403, content=b'AccessDenied')
        return make_response(204)

    def build(self, blocks, page_status=200, note_status=201, session_cookie='cookie', image_responses=None):
        self.notion_session = FakeSession(FakeNotionApi(blocks, page_status))
        self.download_session = FakeSession(image_responses or (
            lambda method, url, kwargs: make_response(200, content=b'PNGDATA', headers={'Content-Type': 'image/png'})
        ))
        self.note_api = FakeNoteApi(note_status)
        self.note_session = FakeSession(self.note_api)

        notion_client = NotionClient(token='secret', session=self.notion_session, download_session=self.download_session)
        note_client = NoteClient(
            session_cookie=session_cookie,
            xsrf_token='xsrf',
            session=self.note_session,
            storage_session=self.storage_session
        )
        return ImportOrchestrator(self.config, notion_client=notion_client, note_client=note_client)

    def test_import_with_one_image(self):
        orchestrator = self.build([
            api_block('h', 'heading_1', {'rich_text': [rich_text('Title')]}),
            api_block('p', 'paragraph', {'rich_text': [rich_text('Hello')]}),
            image_block('i', 'final'),
        ])

        result = orchestrator.import_document(PAGE_ID, tags=['notion'])

        self.assertTrue(result.success)
        self.assertEqual(result.note_id, '123')
        self.assertEqual(result.warnings, ())
        self.assertEqual(result.stats.images_total, 1)
        self.assertEqual(result.stats.images_success, 1)
        self.assertEqual(result.stats.images_failed, 0)
        self.assertEqual(result.stats.total_blocks, 3)
        self.assertEqual(result.stats.converted_blocks, 3)

        note = self.note_api.notes[0]
        self.assertEqual(note['title'], 'Doc')
        self.assertEqual(note['status'], 'draft')
        self.assertEqual(note['tags'], ['notion'])
        self.assertEqual(note['body'], (
            '# Title\n\nHello\n\n<figure><img src="https://dest.example/final.png"></figure>'
        ))
        self.assertNotIn('__IMAGE_PLACEHOLDER_', note['body'])
        self.assertEqual(len(self.storage_session.calls), 1)

    def test_partial_image_failure(self):
        self.storage_failures = {'2.png'}
        orchestrator = self.build([image_block('a', 1), image_block('b', 2), image_block('c', 3, caption='Third')])

        result = orchestrator.import_document(PAGE_ID, save_as_draft=False)

        self.assertTrue(result.success)
        self.assertEqual(result.stats.images_total, 3)
        self.assertEqual(result.stats.images_success, 2)
        self.assertEqual(result.stats.images_failed, 1)
        self.assertEqual(len(result.warnings), 1)
        self.assertIn('2.png', result.warnings[0])

        body = self.note_api.notes[0]['body']
        self.assertEqual(self.note_api.notes[0]['status'], 'published')
        self.assertIn('<figure><img src="__IMAGE_PLACEHOLDER_2__"></figure>', body)
        self.assertIn('<figure><img src="https://dest.example/1.png"></figure>', body)
        self.assertIn('<figure><img src="https://dest.example/3.png"><figcaption>Third</figcaption></figure>', body)

    def test_download_failure_becomes_warning(self):
        orchestrator = self.build(
            [image_block('a', 1)],
            image_responses=[make_response(200, content=b'<html>', headers={'Content-Type': 'text/html'})]
        )

        result = orchestrator.import_document(PAGE_ID)

        self.assertTrue(result.success)
        self.assertEqual(result.stats.images_failed, 1)
        self.assertEqual(result.stats.images_success, 0)
        self.assertTrue(result.warnings[0].startswith('Failed to download image __IMAGE_PLACEHOLDER_1__'))
        self.assertEqual(self.storage_session.calls, [])

    def test_missing_credentials_make_no_requests(self):
        orchestrator = self.build([api_block('p', 'paragraph')], session_cookie=None)

        result = orchestrator.import_document(PAGE_ID)

        self.assertFalse(result.success)
        self.assertEqual(result.error_code, AUTH_REQUIRED)
        self.assertEqual(self.notion_session.calls, [])
        self.assertEqual(self.note_session.calls, [])

    def test_fetch_failure(self):
        orchestrator = self.build([], page_status=404)

        result = orchestrator.import_document(PAGE_ID)

        self.assertFalse(result.success)
        self.assertEqual(result.error_code, 'PAGE_NOT_FOUND')
        self.assertEqual(self.note_session.calls, [])

    def test_publish_failure(self):
        orchestrator = self.build([image_block('a', 1)], note_status=500)

        result = orchestrator.import_document(PAGE_ID)

        self.assertFalse(result.success)
        self.assertEqual(result.error_code, PUBLISH_FAILED)
        self.assertEqual(result.stats.images_success, 1)
        self.assertIsNone(result.note_id)

    def test_tags_default_to_config(self):
        self.config['import']['tags'] = ['from-config']
        orchestrator = self.build([api_block('p', 'paragraph', {'rich_text': [rich_text('x')]})])

        orchestrator.import_document(PAGE_ID)

        self.assertEqual(self.note_api.notes[0]['tags'], ['from-config'])

    def test_preview_does_not_upload(self):
        orchestrator = self.build([
            api_block('p', 'paragraph', {'rich_text': [rich_text('Hello')]}),
            image_block('i', 1),
            api_block('x', 'breadcrumb'),
        ])

        preview = orchestrator.preview_document(PAGE_ID)

        self.assertEqual(preview['title'], 'Doc')
        self.assertEqual(preview['image_references'], ['__IMAGE_PLACEHOLDER_1__'])
        self.assertEqual(preview['stats'], {
            'total_blocks': 3, 'converted_blocks': 2, 'skipped_blocks': 1, 'image_count': 1,
        })
        self.assertEqual(self.note_session.calls, [])
        self.assertEqual(self.download_session.calls, [])

    def test_get_document_outline(self):
        orchestrator = self.build([api_block('p', 'paragraph'), api_block('d', 'divider')])

        document = orchestrator.get_document(PAGE_ID)

        self.assertEqual(document['page']['title'], 'Doc')
        self.assertEqual(
            [(entry['id'], entry['type'], entry['depth']) for entry in document['blocks']],
            [('p', 'paragraph', 0), ('d', 'divider', 0)]
        )


class TestImageFileName(unittest.TestCase):
    def test_uses_url_base_name(self):
        self.assertEqual(image_file_name('https://x.example/dir/photo.jpg?sig=1', 'image/jpeg', 1), 'photo.jpg')

    def test_falls_back_to_mime_type(self):
        self.assertEqual(image_file_name('https://x.example/render', 'image/png', 4), 'image4.png')
        self.assertEqual(image_file_name('https://x.example/render', 'image/jpeg', 2), 'image2.jpg')


if __name__ == '__main__':
    unittest.main()
