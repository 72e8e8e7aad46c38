"""Tests for placeholder token minting and lookup."""

import random
import re
import unittest

from converters.placeholder_registry import PlaceholderRegistry
from models import MacroKind, ResolvedMacroContent

TOKEN_SHAPE = re.compile(r'^MACRO-[A-Z0-9]+-[0-9A-Z]+-[A-Z0-9]{6}\d+$')


def resolved(family='code', kind=MacroKind.CODE, content='x'):
    return ResolvedMacroContent(kind=kind, content=content, family=family)


class TestPlaceholderRegistry(unittest.TestCase):
    def setUp(self):
        self.registry = PlaceholderRegistry(rng=random.Random(7))

    def test_token_shape(self):
        token = self.registry.register(resolved('mermaid', MacroKind.DIAGRAM))

        self.assertRegex(token, TOKEN_SHAPE)
        self.assertTrue(token.startswith('MACRO-MERMAID-'))

    def test_tokens_survive_markdown_untouched(self):
        """Only upper-case letters, digits and hyphens."""
        token = self.registry.register(resolved('no-format'))

        self.assertRegex(token, r'^[A-Z0-9-]+$')

    def test_tokens_are_unique(self):
        tokens = {self.registry.register(resolved()) for _ in range(200)}

        self.assertEqual(len(tokens), 200)
        self.assertEqual(len(self.registry), 200)

    def test_resolve_and_contains(self):
        content = resolved(content='print(1)')
        token = self.registry.register(content)

        self.assertIn(token, self.registry)
        self.assertIs(self.registry.resolve(token), content)
        self.assertIsNone(self.registry.resolve('MACRO-CODE-0-AAAAAA0'))

    def test_entries_keep_registration_order(self):
        first = self.registry.register(resolved('code'))
        second = self.registry.register(resolved('panel', MacroKind.PANEL))
        third = self.registry.register(resolved('code'))

        self.assertEqual(self.registry.tokens(), [first, second, third])
        self.assertEqual(self.registry.tokens('code'), [first, third])
        self.assertEqual(self.registry.tokens('toc'), [])

    def test_discard(self):
        token = self.registry.register(resolved())
        self.registry.discard(token)
        self.registry.discard(token)

        self.assertNotIn(token, self.registry)
        self.assertEqual(len(self.registry), 0)

    def test_clear(self):
        self.registry.register(resolved())
        self.registry.register(resolved())
        self.registry.clear()

        self.assertEqual(len(self.registry), 0)
        self.assertEqual(self.registry.entries(), [])

    def test_separate_registries_do_not_share_entries(self):
        other = PlaceholderRegistry()
        token = self.registry.register(resolved())

        self.assertIsNone(other.resolve(token))


if __name__ == '__main__':
    unittest.main()
