"""Tests for the Notion REST API client."""

import json
import unittest
from unittest import mock

import requests

from fakes import FakeSession, api_block, api_page, make_response, rich_text
from models import NotionErrorCode
from notion_api import NotionApiError, NotionClient, extract_title


def client_with(responses, **kwargs):
    session = FakeSession(responses)
    download_session = kwargs.pop('download_session', FakeSession())
    client = NotionClient(token='secret', session=session, download_session=download_session, **kwargs)
    return client, session


class TestClientSetup(unittest.TestCase):
    def test_headers(self):
        _, session = client_with([])

        self.assertEqual(session.headers['Authorization'], 'Bearer secret')
        self.assertEqual(session.headers['Notion-Version'], '2022-06-28')

    def test_requires_token(self):
        with self.assertRaises(ValueError):
            NotionClient(token='', session=FakeSession(), download_session=FakeSession())

    def test_from_config(self):
        client = NotionClient.from_config({
            'notion': {'token': 'secret', 'max_retries': 5, 'page_size': 50},
            'images': {'max_size_bytes': 1024},
        })

        self.assertEqual(client.max_retries, 5)
        self.assertEqual(client.page_size, 50)
        self.assertEqual(client.max_image_size, 1024)


@mock.patch('notion_api.time.sleep')
class TestRetries(unittest.TestCase):
    def test_rate_limit_stops_after_max_retries(self, sleep):
        client, session = client_with([
            make_response(429),
            make_response(429),
            make_response(429),
            make_response(200, api_page('p1', 'never reached')),
        ])

        with self.assertRaises(NotionApiError) as ctx:
            client.get_page('p1')

        self.assertEqual(ctx.exception.code, NotionErrorCode.RATE_LIMITED)
        self.assertEqual(len(session.calls), 3)
        self.assertEqual([call.args[0] for call in sleep.call_args_list], [1.0, 2.0])

    def test_max_delay_reached_with_four_requests(self, sleep):
        client, session = client_with([make_response(429) for _ in range(4)], max_retries=4)

        with self.assertRaises(NotionApiError):
            client.get_page('p1')

        self.assertEqual(len(session.calls), 4)
        self.assertEqual([call.args[0] for call in sleep.call_args_list], [1.0, 2.0, 4.0])

    def test_retry_after_is_capped(self, sleep):
        client, session = client_with([
            make_response(429, headers={'Retry-After': '30'}),
            make_response(200, api_page('p1', 'Doc')),
        ])

        page = client.get_page('p1')

        self.assertEqual(page.title, 'Doc')
        sleep.assert_called_once_with(4.0)

    def test_backoff_never_exceeds_max_delay(self, sleep):
        client, _ = client_with([], max_retries=5, initial_retry_delay=1.0, max_retry_delay=3.0)

        self.assertEqual([client._retry_delay(attempt) for attempt in range(4)], [1.0, 2.0, 3.0, 3.0])

    def test_transient_server_error_is_retried(self, sleep):
        client, session = client_with([
            make_response(503),
            make_response(200, api_page('p1', 'Doc')),
        ])

        self.assertEqual(client.get_page('p1').title, 'Doc')
        self.assertEqual(len(session.calls), 2)

    def test_network_errors_exhaust_retries(self, sleep):
        client, session = client_with([requests.exceptions.ConnectionError('refused')] * 3)

        with self.assertRaises(NotionApiError) as ctx:
            client.get_page('p1')

        self.assertEqual(ctx.exception.code, NotionErrorCode.NETWORK_ERROR)
        self.assertEqual(len(session.calls), 3)

    def test_client_errors_are_not_retried(self, sleep):
        cases = [
            (401, {'message': 'API token is invalid.'}, NotionErrorCode.INVALID_TOKEN),
            (401, {'message': 'The token has expired.'}, NotionErrorCode.TOKEN_EXPIRED),
            (403, {'message': 'Forbidden'}, NotionErrorCode.NO_ACCESS),
            (404, {'message': 'Could not find page'}, NotionErrorCode.PAGE_NOT_FOUND),
        ]
        for status, body, expected in cases:
            with self.subTest(status=status, expected=expected):
                client, session = client_with([make_response(status, body)])

                with self.assertRaises(NotionApiError) as ctx:
                    client.get_page('p1')

                self.assertEqual(ctx.exception.code, expected)
                self.assertEqual(ctx.exception.status_code, status)
                self.assertEqual(len(session.calls), 1)
        sleep.assert_not_called()

    def test_error_string_includes_code(self, sleep):
        error = NotionApiError(NotionErrorCode.PAGE_NOT_FOUND, 'missing', 404)

        self.assertEqual(str(error), '[PAGE_NOT_FOUND] missing')
        self.assertFalse(error.retryable)


class TestPagesAndBlocks(unittest.TestCase):
    def test_get_page(self):
        client, session = client_with([make_response(200, api_page('p1', 'Hello'))])

        page = client.get_page('p1')

        self.assertEqual(page.id, 'p1')
        self.assertEqual(page.title, 'Hello')
        self.assertEqual(page.last_edited_time.year, 2024)
        self.assertEqual(session.calls[0]['url'], 'https://api.notion.com/v1/pages/p1')

    def test_get_page_rejects_non_page_body(self):
        client, _ = client_with([make_response(200, {'object': 'block'})])

        with self.assertRaises(NotionApiError) as ctx:
            client.get_page('p1')
        self.assertEqual(ctx.exception.code, NotionErrorCode.SERVER_ERROR)

    def test_title_fallbacks(self):
        self.assertEqual(extract_title({'properties': {}, 'title': [rich_text('Database')]}), 'Database')
        self.assertEqual(extract_title({'child_page': {'title': 'Child'}}), 'Child')
        self.assertEqual(extract_title({'properties': {'Tags': {'type': 'multi_select'}}}), 'Untitled')

    def test_get_blocks_follows_cursor(self):
        client, session = client_with([
            make_response(200, {
                'results': [api_block('b1', 'paragraph', {'rich_text': [rich_text('one')]})],
                'has_more': True,
                'next_cursor': 'cursor-2',
            }),
            make_response(200, {
                'results': [api_block('b2', 'divider')],
                'has_more': False,
                'next_cursor': None,
            }),
        ])

        blocks = client.get_blocks('page')

        self.assertEqual([block.id for block in blocks], ['b1', 'b2'])
        self.assertEqual(session.calls[0]['params'], {'page_size': 100})
        self.assertEqual(session.calls[1]['params'], {'page_size': 100, 'start_cursor': 'cursor-2'})

    def test_get_blocks_fetches_children(self):
        client, session = client_with([
            make_response(200, {
                'results': [
                    api_block('parent', 'toggle', {'rich_text': []}, has_children=True),
                    {'object': 'block', 'id': 'broken'},
                ],
                'has_more': False,
            }),
            make_response(200, {'results': [api_block('child', 'paragraph')], 'has_more': False}),
        ])

        blocks = client.get_blocks('page')

        self.assertEqual(len(blocks), 1)
        self.assertEqual([child.id for child in blocks[0].children], ['child'])
        self.assertEqual(session.paths(), ['/v1/blocks/page/children', '/v1/blocks/parent/children'])

    def test_get_blocks_without_recursion(self):
        client, session = client_with([
            make_response(200, {'results': [api_block('parent', 'toggle', has_children=True)], 'has_more': False}),
        ])

        blocks = client.get_blocks('page', recursive=False)

        self.assertEqual(blocks[0].children, [])
        self.assertEqual(len(session.calls), 1)

    def test_query_database(self):
        client, session = client_with([
            make_response(200, {
                'results': [api_page('p1', 'First'), api_page('p2', 'Second')],
                'has_more': True,
                'next_cursor': 'next',
            }),
        ])

        pages, cursor = client.query_database('db', page_size=2, start_cursor='start')

        self.assertEqual([page.title for page in pages], ['First', 'Second'])
        self.assertEqual(cursor, 'next')
        call = session.calls[0]
        self.assertEqual(call['method'], 'POST')
        self.assertEqual(json.loads(call['data']), {'page_size': 2, 'start_cursor': 'start'})


class TestDownloadImage(unittest.TestCase):
    def download_client(self, response, **kwargs):
        download_session = FakeSession([response])
        client, session = client_with([], download_session=download_session, **kwargs)
        return client, session, download_session

    def test_download(self):
        client, session, download_session = self.download_client(
            make_response(200, content=b'PNGDATA', headers={'Content-Type': 'image/PNG; charset=binary'})
        )

        content, mime_type = client.download_image('https://files.example/a.png?sig=1')

        self.assertEqual(content, b'PNGDATA')
        self.assertEqual(mime_type, 'image/png')
        self.assertEqual(session.calls, [])
        self.assertNotIn('Authorization', download_session.headers)

    def test_download_failures(self):
        cases = [
            make_response(404),
            make_response(200, content=b'<html>', headers={'Content-Type': 'text/html'}),
            make_response(200, content=b'123456', headers={'Content-Type': 'image/png'}),
            requests.exceptions.Timeout('slow'),
        ]
        for response in cases:
            with self.subTest(response=response):
                client, _, _ = self.download_client(response, max_image_size=5)

                with self.assertRaises(NotionApiError) as ctx:
                    client.download_image('https://files.example/a.png')
                self.assertEqual(ctx.exception.code, NotionErrorCode.IMAGE_DOWNLOAD_FAILED)


if __name__ == '__main__':
    unittest.main()
