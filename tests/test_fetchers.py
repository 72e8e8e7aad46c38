"""Tests for page fetching, attachment prefetching and the REST client."""

import unittest
from unittest.mock import Mock, patch

import requests

from confluence_client import ConfluenceClient
from errors import AttachmentDownloadError, FetcherError
from fetchers import PAGE_EXPAND, AttachmentCache, AttachmentPrefetcher, PageFetcher, is_diagram_attachment
from models import ConfluenceAttachment


PAGE_RESPONSE = {
    'id': '1001',
    'title': 'Architecture Overview',
    'space': {'key': 'ENG'},
    'body': {
        'storage': {'value': '<p>storage</p>'},
        'view': {'value': '<p>view</p>'},
    },
    'version': {'number': 4, 'when': '2024-02-03T11:00:00.000Z', 'by': {'displayName': 'Editor'}},
    'history': {'createdBy': {'displayName': 'Jane Doe'}, 'createdDate': '2024-01-02T10:00:00.000Z'},
    'ancestors': [{'id': 1}, {'id': 900}],
    'metadata': {'labels': {'results': [{'name': 'architecture'}, {'name': 'draft'}]}},
    '_links': {'webui': '/display/ENG/Architecture'},
}


def attachment(title, media_type='text/plain'):
    return ConfluenceAttachment(id=title, title=title, media_type=media_type,
                                download_url=f'/download/attachments/1001/{title}', page_id='1001')


class TestPageFetcher(unittest.TestCase):
    def test_fetch_page(self):
        client = Mock()
        client.get_page.return_value = PAGE_RESPONSE
        fetcher = PageFetcher(client, {'confluence': {'base_url': 'https://wiki.example.com'}})

        page = fetcher.fetch_page('1001')

        client.get_page.assert_called_once_with('1001', expand=PAGE_EXPAND)
        self.assertEqual(page.space_key, 'ENG')
        self.assertEqual(page.storage, '<p>storage</p>')
        self.assertEqual(page.view, '<p>view</p>')
        self.assertEqual(page.version, 4)
        self.assertEqual(page.created_by, 'Jane Doe')
        self.assertEqual(page.parent_id, '900')
        self.assertEqual(page.labels, ['architecture', 'draft'])
        self.assertEqual(page.url, 'https://wiki.example.com/display/ENG/Architecture')

    def test_fetch_space_page_ids(self):
        client = Mock()
        client.get_space_page_ids.return_value = ['1', '2']

        self.assertEqual(PageFetcher(client).fetch_space_page_ids('ENG'), ['1', '2'])


class TestAttachmentPrefetch(unittest.TestCase):
    def test_diagram_attachment_detection(self):
        self.assertTrue(is_diagram_attachment('flow.mmd'))
        self.assertTrue(is_diagram_attachment('seq.MERMAID', 'application/octet-stream'))
        self.assertTrue(is_diagram_attachment('NHLAD', 'text/plain; charset=utf-8'))
        self.assertFalse(is_diagram_attachment('notes.txt', 'text/plain'))
        self.assertFalse(is_diagram_attachment('image.png', 'image/png'))
        self.assertFalse(is_diagram_attachment(''))

    def test_prefetch_downloads_only_diagram_sources(self):
        client = Mock()

        def download(url, filename):
            if filename == 'broken.mmd':
                raise AttachmentDownloadError(filename, '404 Not Found')
            return 'graph TD\nA-->B'.encode('utf-8')

        client.download_attachment.side_effect = download
        prefetcher = AttachmentPrefetcher(client)

        with self.assertLogs('confluence_markdown_exporter.fetchers.attachmentcache', level='WARNING'):
            cache = prefetcher.prefetch('1001', [
                attachment('flow.mmd'),
                attachment('broken.mmd'),
                attachment('NHLAD'),
                attachment('photo.png', 'image/png'),
            ])

        self.assertEqual(sorted(cache), ['NHLAD', 'flow.mmd'])
        self.assertEqual(cache['flow.mmd'], 'graph TD\nA-->B')
        self.assertEqual(client.download_attachment.call_count, 3)
        self.assertEqual(prefetcher.stats, {'listed': 4, 'downloaded': 2, 'failed': 1})

    def test_prefetch_lists_attachments_when_not_given(self):
        client = Mock()
        client.get_attachments.return_value = [{
            'id': 'att1',
            'title': 'flow.mmd',
            'extensions': {'mediaType': 'text/plain', 'fileSize': 20},
            '_links': {'download': '/download/attachments/1001/flow.mmd'},
        }]
        client.download_attachment.return_value = b'graph LR\nX-->Y'

        cache = AttachmentPrefetcher(client).prefetch('1001')

        client.download_attachment.assert_called_once_with('/download/attachments/1001/flow.mmd', 'flow.mmd')
        self.assertEqual(dict(cache), {'flow.mmd': 'graph LR\nX-->Y'})

    def test_failed_listing_gives_empty_cache(self):
        client = Mock()
        client.get_attachments.side_effect = requests.exceptions.ConnectionError('down')

        cache = AttachmentPrefetcher(client).prefetch('1001')

        self.assertEqual(len(cache), 0)

    def test_invalid_utf8_is_replaced(self):
        client = Mock()
        client.download_attachment.return_value = b'graph TD\n\xff'

        cache = AttachmentPrefetcher(client).prefetch('1001', [attachment('flow.mmd')])

        self.assertEqual(cache['flow.mmd'], 'graph TD\n�')

    def test_cache_is_read_only(self):
        cache = AttachmentCache({'flow.mmd': 'graph TD'})

        with self.assertRaises(TypeError):
            cache['other.mmd'] = 'graph LR'
        self.assertIsNone(cache.get('missing.mmd'))


class TestConfluenceClient(unittest.TestCase):
    def _client(self, **kwargs):
        options = {'base_url': 'https://wiki.example.com/', 'auth_type': 'bearer', 'api_token': 'token',
                   'max_retries': 0, 'retry_backoff_factor': 0}
        options.update(kwargs)
        return ConfluenceClient(**options)

    def test_auth_validation(self):
        with self.assertRaises(ValueError):
            ConfluenceClient('https://wiki.example.com', auth_type='basic', username='u')
        with self.assertRaises(ValueError):
            ConfluenceClient('https://wiki.example.com', auth_type='oauth')

    def test_bearer_header(self):
        client = self._client()

        self.assertEqual(client.session.headers['Authorization'], 'Bearer token')
        self.assertEqual(client._url('/rest/api/content/1'), 'https://wiki.example.com/rest/api/content/1')
        self.assertEqual(client._url('https://other.example.com/x'), 'https://other.example.com/x')

    def test_get_page_http_error(self):
        client = self._client()
        response = Mock(status_code=404, text='Not found')
        response.json.side_effect = ValueError('no json')
        response.raise_for_status.side_effect = requests.exceptions.HTTPError(response=response)

        with patch.object(client.session, 'request', return_value=response):
            with self.assertRaises(FetcherError) as context:
                client.get_page('1001', expand=['body.storage'])

        self.assertEqual(context.exception.details, {'page_id': '1001'})

    def test_get_space_page_ids_paginates(self):
        client = self._client()
        first = Mock(status_code=200)
        first.json.return_value = {'results': [{'id': 1}, {'id': 2}], '_links': {'next': '/next'}}
        second = Mock(status_code=200)
        second.json.return_value = {'results': [{'id': 3}], '_links': {}}

        with patch.object(client.session, 'request', side_effect=[first, second]) as request:
            page_ids = client.get_space_page_ids('ENG', limit=2)

        self.assertEqual(page_ids, ['1', '2', '3'])
        self.assertEqual(request.call_args_list[1].kwargs['params']['start'], 2)

    def test_download_failure_is_wrapped(self):
        client = self._client()

        with patch.object(client.session, 'request', side_effect=requests.exceptions.ConnectionError('refused')):
            with self.assertRaises(AttachmentDownloadError) as context:
                client.download_attachment('/download/attachments/1/flow.mmd', 'flow.mmd')

        self.assertEqual(context.exception.filename, 'flow.mmd')
        self.assertEqual(context.exception.code, 'ATTACHMENT_DOWNLOAD_FAILED')

    def test_transient_errors(self):
        client = self._client()

        self.assertTrue(client._is_transient_error(requests.exceptions.Timeout()))
        self.assertTrue(client._is_transient_error(requests.exceptions.HTTPError(response=Mock(status_code=503))))
        self.assertFalse(client._is_transient_error(requests.exceptions.HTTPError(response=Mock(status_code=404))))

    def test_from_config(self):
        client = ConfluenceClient.from_config({
            'confluence': {'base_url': 'https://wiki.example.com', 'username': 'u', 'password': 'p'},
            'advanced': {'request_timeout': 10, 'rate_limit': 0.5},
        })

        self.assertEqual(client.session.auth, ('u', 'p'))
        self.assertEqual(client.timeout, 10)
        self.assertEqual(client.rate_limit, 0.5)


if __name__ == '__main__':
    unittest.main()
