"""Registry of placeholder tokens standing in for resolved macro content."""

import logging
import random
import string
import time
from dataclasses import dataclass
from typing import Dict, List, Optional

from models import ResolvedMacroContent

logger = logging.getLogger('confluence_markdown_exporter.converters.placeholderregistry')


TOKEN_PREFIX = 'MACRO'
_ALPHABET = string.ascii_uppercase + string.digits


def _base36(value: int) -> str:
    if value == 0:
        return '0'
    digits = []
    while value:
        value, remainder = divmod(value, 36)
        digits.append(_ALPHABET[26 + remainder] if remainder < 10 else _ALPHABET[remainder - 10])
    return ''.join(reversed(digits))


@dataclass
class RegistryEntry:
    token: str
    content: ResolvedMacroContent
    order: int


class PlaceholderRegistry:
    """Mints tokens for resolved macros and remembers what they stand for.

    Tokens consist of upper-case letters, digits and hyphens only, so they
    pass through Markdown rendering unescaped. One registry belongs to one
    conversion; ``clear()`` is called when the conversion finishes.
    """

    def __init__(self, logger: logging.Logger = None, rng: Optional[random.Random] = None):
        self.logger = logger or logging.getLogger('confluence_markdown_exporter.converters.placeholderregistry')
        self._rng = rng or random.Random()
        self._entries: Dict[str, RegistryEntry] = {}
        self._counter = 0

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, token: str) -> bool:
        return token in self._entries

    def _mint(self, family: str) -> str:
        while True:
            timestamp = _base36(time.time_ns() // 1000)
            suffix = ''.join(self._rng.choice(_ALPHABET) for _ in range(6))
            family_part = ''.join(ch for ch in family.upper() if ch.isalnum()) or 'ITEM'
            token = f"{TOKEN_PREFIX}-{family_part}-{timestamp}-{suffix}{self._counter}"
            if token not in self._entries:
                return token

    def register(self, resolved: ResolvedMacroContent) -> str:
        """Store ``resolved`` and return its fresh token."""
        token = self._mint(resolved.family)
        self._entries[token] = RegistryEntry(token=token, content=resolved, order=self._counter)
        self._counter += 1
        self.logger.debug(f"Registered {resolved.kind.value} macro '{resolved.macro_name}' as {token}")
        return token

    def resolve(self, token: str) -> Optional[ResolvedMacroContent]:
        entry = self._entries.get(token)
        return entry.content if entry else None

    def discard(self, token: str) -> None:
        """Forget a token that will never appear in the rendered output."""
        self._entries.pop(token, None)

    def entries(self, family: Optional[str] = None) -> List[RegistryEntry]:
        """Entries in registration order, optionally limited to one family."""
        entries = sorted(self._entries.values(), key=lambda entry: entry.order)
        if family is None:
            return entries
        return [entry for entry in entries if entry.content.family == family]

    def tokens(self, family: Optional[str] = None) -> List[str]:
        return [entry.token for entry in self.entries(family)]

    def clear(self) -> None:
        if self._entries:
            self.logger.debug(f"Clearing {len(self._entries)} placeholder entries")
        self._entries.clear()
        self._counter = 0


__all__ = ['PlaceholderRegistry', 'RegistryEntry', 'TOKEN_PREFIX']
