"""End-to-end tests for converting a page from its storage and view bodies."""

import unittest

import yaml

from converters import PageConverter, convert_page
from errors import ConverterError, MissingContentError
from models import ConfluencePage


def make_page(storage, view, **kwargs):
    defaults = {
        'id': '1001',
        'title': 'Architecture Overview',
        'space_key': 'ENG',
        'version': 3,
        'created_by': 'Jane Doe',
        'created_at': '2024-01-02T10:00:00.000Z',
        'updated_at': '2024-02-03T11:00:00.000Z',
        'url': 'https://wiki.example.com/display/ENG/Architecture',
    }
    defaults.update(kwargs)
    return ConfluencePage(storage=storage, view=view, **defaults)


MERMAID_STORAGE = (
    '<h1>Overview</h1>'
    '<ac:structured-macro ac:name="mermaid" ac:macro-id="m1"><ac:plain-text-body>'
    '<![CDATA[graph TD\nA-->B]]></ac:plain-text-body></ac:structured-macro>'
    '<p>End</p>'
)
MERMAID_VIEW = (
    '<h1>Overview</h1>'
    '<div class="mermaid-macro-container" data-macro-name="mermaid"><svg><g><text>A</text></g></svg></div>'
    '<p>End</p>'
)


def split_frontmatter(markdown):
    _, header, body = markdown.split('---\n', 2)
    return yaml.safe_load(header), body


class TestPageConversion(unittest.TestCase):
    def setUp(self):
        self.converter = PageConverter()

    def test_inline_mermaid_becomes_fence(self):
        document = self.converter.convert(make_page(MERMAID_STORAGE, MERMAID_VIEW))

        self.assertIn('# Overview\n\n```mermaid\ngraph TD\nA-->B\n```\n\nEnd', document.markdown)
        self.assertNotIn('MACRO-', document.markdown)
        self.assertNotIn('<svg', document.markdown)
        self.assertEqual(document.macro_counts['mermaid'], 1)
        self.assertEqual(document.warnings, [])

    def test_regex_strategy_gives_same_document(self):
        page = make_page(MERMAID_STORAGE, MERMAID_VIEW)
        config = {'conversion': {'parser_strategy': 'regex'}, 'export': {'frontmatter': False}}

        regex_document = PageConverter(config).convert(page)
        soup_document = PageConverter({'export': {'frontmatter': False}}).convert(page)

        self.assertEqual(regex_document.markdown, soup_document.markdown)

    def test_python_code_block(self):
        storage = (
            '<ac:structured-macro ac:name="code" ac:macro-id="c1">'
            '<ac:parameter ac:name="language">python</ac:parameter>'
            '<ac:parameter ac:name="title">Example</ac:parameter>'
            '<ac:plain-text-body><![CDATA[def greet(name):\n    return f"hi {name}"]]></ac:plain-text-body>'
            '</ac:structured-macro>'
        )
        view = (
            '<div class="code panel pdl" data-macro-name="code"><div class="codeHeader"><b>Example</b></div>'
            '<div class="codeContent"><pre class="syntaxhighlighter-pre">def greet(name):\n'
            '    return f&quot;hi {name}&quot;</pre></div></div>'
        )

        document = self.converter.convert(make_page(storage, view))

        self.assertIn(
            '```python\ndef greet(name):\n    return f"hi {name}"\n```\n<!-- Code block options: title: Example -->',
            document.markdown
        )
        self.assertEqual(document.macro_counts['code'], 1)

    def test_code_without_content_gives_notice(self):
        storage = ('<ac:structured-macro ac:name="code"><ac:parameter ac:name="title">Setup</ac:parameter>'
                   '</ac:structured-macro>')
        view = '<p>Steps</p><div class="code panel pdl" data-macro-name="code"></div>'

        document = self.converter.convert(make_page(storage, view))

        self.assertIn('> **Setup** _(code content not available)_', document.markdown)
        self.assertNotIn('MACRO-', document.markdown)

    def test_attachment_diagrams(self):
        storage = (
            '<ac:structured-macro ac:name="mermaid-cloud"><ac:parameter ac:name="filename">NHLAD</ac:parameter>'
            '</ac:structured-macro>'
            '<ac:structured-macro ac:name="mermaid-cloud"><ac:parameter ac:name="filename">flow.mmd</ac:parameter>'
            '</ac:structured-macro>'
        )
        view = (
            '<div data-macro-name="mermaid-cloud"><img src="/download/attachments/1/NHLAD.png"></div>'
            '<div data-macro-name="mermaid-cloud"><img src="/download/attachments/1/flow.png"></div>'
        )

        document = self.converter.convert(make_page(storage, view), {'NHLAD': 'graph LR\nX-->Y'})

        self.assertIn('```mermaid\ngraph LR\nX-->Y\n```', document.markdown)
        self.assertIn('> **Mermaid Diagram:** flow.mmd', document.markdown)
        self.assertEqual(document.macro_counts['mermaid'], 1)
        self.assertEqual(document.macro_counts['diagrams'], 1)

    def test_panel_with_nested_code(self):
        storage = (
            '<ac:structured-macro ac:name="info"><ac:parameter ac:name="title">Heads up</ac:parameter>'
            '<ac:rich-text-body><p>Read this</p>'
            '<ac:structured-macro ac:name="code"><ac:parameter ac:name="language">python</ac:parameter>'
            '<ac:plain-text-body><![CDATA[print("hi")]]></ac:plain-text-body></ac:structured-macro>'
            '</ac:rich-text-body></ac:structured-macro>'
        )
        view = (
            '<div class="confluence-information-macro confluence-information-macro-information" data-macro-name="info">'
            '<p class="title">Heads up</p><span class="aui-icon confluence-information-macro-icon"></span>'
            '<div class="confluence-information-macro-body"><p>Read this</p>'
            '<div class="code panel pdl" data-macro-name="code"><pre>print("hi")</pre></div></div></div>'
        )

        document = self.converter.convert(make_page(storage, view))

        self.assertIn('> ℹ️ **INFO: Heads up**\n>\n> Read this\n> print("hi")', document.markdown)
        self.assertNotIn('MACRO-', document.markdown)
        self.assertEqual(document.macro_counts['panels'], 1)
        self.assertEqual(document.macro_counts['code'], 0)

    def test_code_macro_in_table_cell(self):
        storage = (
            '<table><tbody><tr><th>Step</th><th>Command</th></tr>'
            '<tr><td>x</td><td><ac:structured-macro ac:name="code"><ac:parameter ac:name="language">python</ac:parameter>'
            '<ac:plain-text-body><![CDATA[a=1\nb=2]]></ac:plain-text-body></ac:structured-macro></td></tr>'
            '</tbody></table>'
        )
        view = (
            '<table><tbody><tr><th>Step</th><th>Command</th></tr>'
            '<tr><td>x</td><td><div class="code panel pdl"><pre>a=1\nb=2</pre></div></td></tr>'
            '</tbody></table>'
        )

        document = self.converter.convert(make_page(storage, view))

        self.assertIn('| Step | Command |\n| --- | --- |\n| x | `a=1`<br>`b=2` |', document.markdown)
        self.assertNotIn('```', document.markdown)

    def test_code_macro_in_list_item(self):
        storage = (
            '<ul><li>step<ac:structured-macro ac:name="code"><ac:parameter ac:name="language">python</ac:parameter>'
            '<ac:plain-text-body><![CDATA[a=1\nb=2]]></ac:plain-text-body></ac:structured-macro></li></ul>'
        )
        view = '<ul><li>step<div class="code panel pdl"><pre>a=1\nb=2</pre></div></li></ul>'

        document = self.converter.convert(make_page(storage, view))

        self.assertIn('- step\n\n  ```python\n  a=1\n  b=2\n  ```', document.markdown)

    def test_regex_strategy_keeps_macro_markup_in_code_body(self):
        storage = (
            '<ac:structured-macro ac:name="code"><ac:parameter ac:name="language">xml</ac:parameter>'
            '<ac:plain-text-body><![CDATA[<ac:structured-macro ac:name="info">\n<p>x</p>]]></ac:plain-text-body>'
            '</ac:structured-macro>'
        )
        view = '<div class="code panel pdl"><pre>markup</pre></div>'
        converter = PageConverter(config={'conversion': {'parser_strategy': 'regex'}})

        document = converter.convert(make_page(storage, view))

        self.assertIn('```xml\n<ac:structured-macro ac:name="info">\n<p>x</p>\n```', document.markdown)
        self.assertEqual(document.macro_counts['panels'], 0)

    def test_table_of_contents(self):
        storage = '<ac:structured-macro ac:name="toc"><ac:parameter ac:name="maxLevel">2</ac:parameter></ac:structured-macro>'
        view = (
            '<div class="toc-macro client-side-toc-macro" data-macro-name="toc"><ul><li>stale entry</li></ul></div>'
            '<h1>Intro</h1><h2>2.1 Payment (Beta)!</h2><h3>Deep</h3>'
        )

        document = self.converter.convert(make_page(storage, view))

        self.assertIn('- [Intro](#intro)\n  - [2.1 Payment (Beta)!](#2.1-payment-beta)', document.markdown)
        self.assertNotIn('stale entry', document.markdown)
        self.assertNotIn('[Deep]', document.markdown)
        self.assertEqual(document.macro_counts['toc'], 1)

    def test_status_inline(self):
        storage = ('<p>State: <ac:structured-macro ac:name="status"><ac:parameter ac:name="title">Done</ac:parameter>'
                   '<ac:parameter ac:name="colour">Green</ac:parameter></ac:structured-macro></p>')
        view = '<p>State: <span class="status-macro aui-lozenge aui-lozenge-success">DONE</span></p>'

        document = self.converter.convert(make_page(storage, view))

        self.assertIn('State: 🟢 **[DONE]**', document.markdown)

    def test_unrecognized_macros_keep_view_rendering(self):
        storage = '<ac:structured-macro ac:name="jira"><ac:parameter ac:name="key">ABC-1</ac:parameter></ac:structured-macro>'
        view = '<p><span class="jira-issue">ABC-1: Fix login</span></p>'

        document = self.converter.convert(make_page(storage, view))

        self.assertIn('ABC-1: Fix login', document.markdown)

    def test_macro_without_view_container_is_reported(self):
        storage = ('<ac:structured-macro ac:name="mermaid"><ac:plain-text-body><![CDATA[graph TD\nA-->B]]>'
                   '</ac:plain-text-body></ac:structured-macro>')

        document = self.converter.convert(make_page(storage, '<p>Only text</p>'))

        self.assertIn('Only text', document.markdown)
        self.assertTrue(any('no matching container' in warning for warning in document.warnings))

    def test_frontmatter(self):
        page = make_page(MERMAID_STORAGE, MERMAID_VIEW, parent_id='900', labels=['architecture', 'draft'])
        document = self.converter.convert(page)

        self.assertTrue(document.markdown.startswith('---\ntitle: Architecture Overview\n'))
        metadata, body = split_frontmatter(document.markdown)
        self.assertEqual(metadata['confluenceId'], '1001')
        self.assertEqual(metadata['confluenceParentId'], '900')
        self.assertEqual(metadata['confluenceLabels'], ['architecture', 'draft'])
        self.assertEqual(metadata['macros'], {'mermaid': 1, 'code': 0, 'diagrams': 0, 'panels': 0})
        self.assertEqual(metadata['exportedBy'], 'confluence-markdown-exporter')
        self.assertTrue(body.lstrip().startswith('# Overview'))
        self.assertTrue(document.markdown.endswith('End\n'))

    def test_frontmatter_can_be_disabled(self):
        document = PageConverter({'export': {'frontmatter': False}}).convert(make_page(MERMAID_STORAGE, MERMAID_VIEW))

        self.assertTrue(document.markdown.startswith('# Overview'))
        self.assertIn('title', document.metadata)

    def test_documents_are_isolated(self):
        """A converter shared between pages leaks nothing from one page into the next."""
        first = self.converter.convert(make_page(MERMAID_STORAGE, MERMAID_VIEW))
        second = self.converter.convert(make_page('<p>Plain</p>', '<p>Plain</p>', id='1002', title='Plain'))

        self.assertIn('graph TD', first.markdown)
        self.assertNotIn('graph TD', second.markdown)
        self.assertNotIn('MACRO-', second.markdown)
        self.assertEqual(second.macro_counts['mermaid'], 0)

    def test_missing_view(self):
        with self.assertRaises(MissingContentError) as context:
            self.converter.convert(make_page(MERMAID_STORAGE, None))

        error = context.exception
        self.assertIsInstance(error, ConverterError)
        self.assertEqual(error.code, 'MISSING_CONTENT')
        self.assertEqual(error.details['missing'], ['view'])
        self.assertEqual(error.to_dict()['name'], 'MissingContentError')

    def test_convert_page_helper(self):
        document = convert_page(make_page('<p>Hi</p>', '<p>Hi</p>'))

        self.assertEqual(document.page_id, '1001')
        self.assertTrue(document.markdown.endswith('Hi\n'))


if __name__ == '__main__':
    unittest.main()
