"""Data models for the Confluence storage/view to Markdown conversion pipeline."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple


class BodyKind(Enum):
    """How a macro body was stored in the storage format."""
    NONE = "none"
    PLAIN_TEXT = "plain_text"
    RICH_HTML = "rich_html"


class MacroKind(Enum):
    """Resolved macro content variants."""
    DIAGRAM = "diagram"
    CODE = "code"
    PANEL = "panel"
    TABLE_OF_CONTENTS = "table_of_contents"
    DIAGRAM_REFERENCE = "diagram_reference"
    STATUS = "status"


@dataclass(frozen=True)
class MacroOccurrence:
    """A single macro found in a storage-format document.

    ``span`` is the exact substring of the storage document the macro was
    parsed from. ``index`` is the position of the macro in document order.
    """

    name: str
    parameters: Tuple[Tuple[str, str], ...] = ()
    body: Optional[str] = None
    body_kind: BodyKind = BodyKind.NONE
    span: str = ''
    macro_id: Optional[str] = None
    index: int = 0

    def get_parameter(self, name: str, default: Optional[str] = None) -> Optional[str]:
        """Look up a parameter value by name."""
        for key, value in self.parameters:
            if key == name:
                return value
        return default

    def first_parameter(self, names: List[str]) -> Optional[str]:
        """Return the value of the first non-empty parameter in ``names``."""
        for name in names:
            value = self.get_parameter(name)
            if value:
                return value
        return None

    @property
    def has_plain_body(self) -> bool:
        return self.body_kind == BodyKind.PLAIN_TEXT and self.body is not None

    @property
    def has_rich_body(self) -> bool:
        return self.body_kind == BodyKind.RICH_HTML and self.body is not None


@dataclass
class ResolvedMacroContent:
    """Content derived from a MacroOccurrence, ready to be rendered.

    ``family`` names the group of view-format containers the macro renders
    into (``mermaid``, ``code``, ``noformat``, ``panel``, ``diagram``,
    ``toc``, ``status``). Resolution never produces empty ``content`` unless
    the macro is a deferred table of contents or an unavailable reference
    carrying ``attachment``.
    """

    kind: MacroKind
    content: str = ''
    language: Optional[str] = None
    macro_name: str = ''
    family: str = ''
    title: Optional[str] = None
    attachment: Optional[str] = None
    macro_id: Optional[str] = None
    options: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_unavailable(self) -> bool:
        return self.kind == MacroKind.DIAGRAM_REFERENCE

    @property
    def is_inline(self) -> bool:
        return self.kind == MacroKind.STATUS


@dataclass
class ConfluenceAttachment:
    """Represents a Confluence attachment as listed by the REST API."""

    id: str
    title: str
    media_type: str
    download_url: str
    page_id: str
    file_size: int = 0

    @property
    def filename(self) -> str:
        return self.title

    @classmethod
    def from_api(cls, data: Dict[str, Any], page_id: str) -> 'ConfluenceAttachment':
        """Build an attachment from a ``child/attachment`` API result."""
        extensions = data.get('extensions', {}) or {}
        metadata = data.get('metadata', {}) or {}
        links = data.get('_links', {}) or {}
        return cls(
            id=str(data.get('id', '')),
            title=data.get('title', ''),
            media_type=extensions.get('mediaType') or metadata.get('mediaType') or '',
            download_url=links.get('download', ''),
            page_id=page_id,
            file_size=extensions.get('fileSize', 0) or 0,
        )


@dataclass
class ConfluencePage:
    """A Confluence page with both storage and view representations."""

    id: str
    title: str
    space_key: str
    storage: Optional[str] = None
    view: Optional[str] = None
    version: int = 1
    created_by: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None
    parent_id: Optional[str] = None
    labels: List[str] = field(default_factory=list)
    url: Optional[str] = None
    attachments: List[ConfluenceAttachment] = field(default_factory=list)

    @property
    def has_required_content(self) -> bool:
        return bool(self.storage) and bool(self.view)

    @classmethod
    def from_api(cls, data: Dict[str, Any], base_url: Optional[str] = None) -> 'ConfluencePage':
        """Build a page from a ``/rest/api/content/{id}`` response expanded with
        ``body.storage``, ``body.view``, ``version``, ``history``, ``space``,
        ``ancestors`` and ``metadata.labels``."""
        body = data.get('body', {}) or {}
        version = data.get('version', {}) or {}
        history = data.get('history', {}) or {}
        ancestors = data.get('ancestors', []) or []
        labels = (data.get('metadata', {}) or {}).get('labels', {}) or {}
        links = data.get('_links', {}) or {}

        created_by = (history.get('createdBy') or {}).get('displayName')
        if not created_by:
            created_by = (version.get('by') or {}).get('displayName')

        url = None
        if links.get('webui'):
            root = links.get('base') or (base_url.rstrip('/') if base_url else '')
            url = f"{root}{links['webui']}"

        return cls(
            id=str(data.get('id', '')),
            title=data.get('title', ''),
            space_key=(data.get('space', {}) or {}).get('key', ''),
            storage=(body.get('storage') or {}).get('value'),
            view=(body.get('view') or {}).get('value'),
            version=version.get('number', 1),
            created_by=created_by,
            created_at=history.get('createdDate'),
            updated_at=version.get('when'),
            parent_id=str(ancestors[-1]['id']) if ancestors else None,
            labels=[label.get('name') for label in labels.get('results', []) if label.get('name')],
            url=url,
        )


@dataclass
class ConvertedDocument:
    """Final output of one page conversion."""

    page_id: str
    title: str
    markdown: str
    metadata: Dict[str, Any] = field(default_factory=dict)
    macro_counts: Dict[str, int] = field(default_factory=dict)
    warnings: List[str] = field(default_factory=list)

    def __post_init__(self) -> None:
        """Initialize default macro counts if empty."""
        if not self.macro_counts:
            self.macro_counts = {
                'mermaid': 0,
                'code': 0,
                'diagrams': 0,
                'panels': 0,
                'toc': 0,
            }


__all__ = [
    'BodyKind',
    'MacroKind',
    'MacroOccurrence',
    'ResolvedMacroContent',
    'ConfluenceAttachment',
    'ConfluencePage',
    'ConvertedDocument',
]
