"""Tests for cleaning view HTML and injecting placeholder tokens."""

import unittest

from bs4 import BeautifulSoup

from converters.placeholder_registry import PlaceholderRegistry
from converters.view_injector import ViewInjector, attachment_filename, extract_page_id
from models import MacroKind, ResolvedMacroContent


def register(registry, family, kind=MacroKind.CODE, macro_id=None, content='x'):
    return registry.register(ResolvedMacroContent(kind=kind, content=content, family=family, macro_id=macro_id))


class TestPlaceholderInjection(unittest.TestCase):
    def setUp(self):
        self.registry = PlaceholderRegistry()
        self.injector = ViewInjector()

    def test_positional_correlation(self):
        first = register(self.registry, 'mermaid', MacroKind.DIAGRAM)
        second = register(self.registry, 'mermaid', MacroKind.DIAGRAM)
        view = '''
        <p>Before</p>
        <div class="mermaid-macro-container"><svg><text>rendered one</text></svg></div>
        <p>Between</p>
        <div class="mermaid-macro-container"><svg><text>rendered two</text></svg></div>
        '''

        html = self.injector.inject(view, self.registry)

        self.assertNotIn('rendered', html)
        self.assertIn(f'{{{{{first}}}}}', html)
        self.assertIn(f'{{{{{second}}}}}', html)
        self.assertLess(html.index(first), html.index('Between'))
        self.assertLess(html.index('Between'), html.index(second))
        self.assertEqual(self.injector.stats['injected'], 2)

    def test_block_placeholder_element(self):
        token = register(self.registry, 'code')
        html = self.injector.inject('<div class="code panel pdl"><pre>print()</pre></div>', self.registry)

        soup = BeautifulSoup(html, 'html.parser')
        paragraph = soup.find('p')
        self.assertEqual(paragraph['data-macro-placeholder'], token)
        self.assertEqual(paragraph.code['data-macro-placeholder'], token)
        self.assertEqual(paragraph.code.string, f'{{{{{token}}}}}')

    def test_status_placeholder_is_inline(self):
        token = register(self.registry, 'status', MacroKind.STATUS)
        html = self.injector.inject(
            '<p>State: <span class="status-macro aui-lozenge">DONE</span></p>', self.registry
        )

        self.assertIn(f'<p>State: <code data-macro-placeholder="{token}">{{{{{token}}}}}</code></p>', html)

    def test_macro_id_correlation(self):
        second_in_view = register(self.registry, 'code', macro_id='id-2')
        first_in_view = register(self.registry, 'code', macro_id='id-1')
        view = (
            '<div class="code panel pdl" data-macro-id="id-1"><pre>one</pre></div>'
            '<div class="code panel pdl" data-macro-id="id-2"><pre>two</pre></div>'
        )

        html = self.injector.inject(view, self.registry)

        self.assertLess(html.index(first_in_view), html.index(second_in_view))

    def test_positional_when_macro_id_matching_disabled(self):
        first = register(self.registry, 'code', macro_id='id-2')
        second = register(self.registry, 'code', macro_id='id-1')
        view = (
            '<div class="code panel pdl" data-macro-id="id-1"><pre>one</pre></div>'
            '<div class="code panel pdl" data-macro-id="id-2"><pre>two</pre></div>'
        )

        html = ViewInjector({'match_by_macro_id': False}).inject(view, self.registry)

        self.assertLess(html.index(first), html.index(second))

    def test_panel_absorbs_nested_placeholders(self):
        panel = register(self.registry, 'panel', MacroKind.PANEL)
        code = register(self.registry, 'code')
        view = '''
        <div class="confluence-information-macro confluence-information-macro-information" data-macro-name="info">
          <span class="aui-icon confluence-information-macro-icon"></span>
          <div class="confluence-information-macro-body">
            <p>Read this</p>
            <div class="code panel pdl" data-macro-name="code"><pre>print("hi")</pre></div>
          </div>
        </div>
        '''

        html = self.injector.inject(view, self.registry)

        self.assertIn(panel, html)
        self.assertNotIn(code, html)
        self.assertNotIn(code, self.registry)
        self.assertEqual(len(self.registry), 1)
        self.assertEqual(self.injector.stats['absorbed'], 1)

    def test_missing_container_is_reported(self):
        token = register(self.registry, 'mermaid', MacroKind.DIAGRAM)

        with self.assertLogs('confluence_markdown_exporter.converters.viewinjector', level='WARNING'):
            html = self.injector.inject('<p>No diagram rendered</p>', self.registry)

        self.assertNotIn(token, html)
        self.assertEqual(self.injector.stats['unmatched_tokens'], 1)

    def test_unregistered_families_are_left_alone(self):
        html = self.injector.inject('<div class="code panel pdl"><pre>kept</pre></div>', self.registry)

        self.assertIn('kept', html)


class TestViewCleanup(unittest.TestCase):
    def setUp(self):
        self.registry = PlaceholderRegistry()
        self.injector = ViewInjector()

    def test_chrome_and_scripts_are_removed(self):
        view = '''
        <script>alert(1)</script>
        <div class="page-metadata">Created by someone</div>
        <!-- editor comment -->
        <p onclick="evil()">Body text</p>
        <iframe src="https://stratus-addons.example.com/x"></iframe>
        <object data="movie.swf"></object>
        '''

        html = self.injector.inject(view, self.registry)

        self.assertIn('Body text', html)
        self.assertNotIn('alert', html)
        self.assertNotIn('Created by', html)
        self.assertNotIn('editor comment', html)
        self.assertNotIn('onclick', html)
        self.assertNotIn('iframe', html)
        self.assertNotIn('object', html)

    def test_links_are_tagged(self):
        view = (
            '<a href="/wiki/spaces/ENG/pages/12345/Design">Design</a>'
            '<a href="/download/attachments/1/My%20File.pdf?version=1">Guide</a>'
            '<a href="https://example.com">Example</a>'
        )

        soup = BeautifulSoup(self.injector.inject(view, self.registry), 'html.parser')
        internal, attachment, external = soup.find_all('a')

        self.assertEqual(internal['data-confluence-link'], 'true')
        self.assertEqual(internal['data-page-id'], '12345')
        self.assertEqual(attachment['data-attachment-link'], 'true')
        self.assertEqual(attachment['data-attachment-filename'], 'My File.pdf')
        self.assertFalse(external.has_attr('data-confluence-link'))

    def test_attachment_images_are_tagged(self):
        view = '<img src="/download/attachments/1/diagram%20one.png?api=v2" alt="D">'

        img = BeautifulSoup(self.injector.inject(view, self.registry), 'html.parser').img

        self.assertEqual(img['data-confluence-image'], 'true')
        self.assertEqual(img['data-attachment-filename'], 'diagram one.png')

    def test_emoticons_become_emoji(self):
        view = '<p>Nice <img class="emoticon emoticon-smile" src="/images/icons/emoticons/smile.svg" alt="(smile)"></p>'

        html = self.injector.inject(view, self.registry)

        self.assertIn('😊', html)
        self.assertNotIn('<img', html)

    def test_empty_blocks_are_removed(self):
        html = self.injector.inject('<p>Text</p><p> </p><div></div>', self.registry)

        self.assertEqual(html.count('<p>'), 1)
        self.assertNotIn('<div>', html)


class TestUrlHelpers(unittest.TestCase):
    def test_extract_page_id(self):
        self.assertEqual(extract_page_id('/pages/viewpage.action?spaceKey=X&pageId=42'), '42')
        self.assertEqual(extract_page_id('/display/ENG/77'), '77')
        self.assertIsNone(extract_page_id('/display/ENG/Some+Page'))

    def test_attachment_filename(self):
        self.assertEqual(attachment_filename('/download/attachments/9/a%28b%29.png?version=2'), 'a(b).png')


if __name__ == '__main__':
    unittest.main()
