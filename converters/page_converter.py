"""Full storage + view to Markdown conversion for one page."""

import logging
from typing import Any, Dict, List, Mapping, Optional

from errors import ConversionError, ConverterError, MissingContentError
from models import ConfluencePage, ConvertedDocument, MacroKind

from .frontmatter import DEFAULT_EXPORTED_BY, build_frontmatter, cleanup_markdown, render_frontmatter
from .macro_extractor import MacroExtractor
from .macro_parser import MacroParser
from .markdown_converter import MarkdownConverter
from .placeholder_registry import PlaceholderRegistry
from .placeholder_resolver import PlaceholderResolver
from .view_injector import ViewInjector

logger = logging.getLogger('confluence_markdown_exporter.converters.pageconverter')


class PageConverter:
    """
    Runs the two-phase placeholder pipeline over a single page.

    1. Parse storage-format macros and resolve their content
    2. Register each resolved macro under a fresh token
    3. Inject the tokens into the view HTML in place of macro containers
    4. Render the view HTML to Markdown
    5. Substitute the tokens with final content and build the TOC
    6. Prepend frontmatter and normalize whitespace

    Every call gets its own PlaceholderRegistry, so one converter can be
    shared between threads.
    """

    def __init__(self, config: Dict[str, Any] = None, logger: logging.Logger = None):
        self.logger = logger or logging.getLogger('confluence_markdown_exporter.converters.pageconverter')
        self.config = config or {}
        self.conversion_config = self.config.get('conversion', {}) or {}
        self.export_config = self.config.get('export', {}) or {}

        self.parser = MacroParser.with_strategy(
            self.conversion_config.get('parser_strategy', 'soup'), self.logger
        )

    def convert(self, page: ConfluencePage,
                attachment_cache: Optional[Mapping[str, str]] = None) -> ConvertedDocument:
        """
        Convert ``page`` to a Markdown document.

        Args:
            page: Page carrying both storage and view bodies
            attachment_cache: Prefetched attachment text by filename

        Returns:
            ConvertedDocument with markdown, frontmatter metadata and macro counts

        Raises:
            MissingContentError: storage or view body is absent
            ConversionError: anything else failed for the whole document
        """
        missing = [name for name in ('storage', 'view') if not getattr(page, name)]
        if missing:
            raise MissingContentError(page.id, missing)

        self.logger.info(f"Converting page {page.id} ({page.title})")
        registry = PlaceholderRegistry(logger=self.logger)

        try:
            return self._convert(page, attachment_cache or {}, registry)
        except ConverterError:
            raise
        except Exception as e:
            self.logger.error(f"Conversion failed for page {page.id}: {e}", exc_info=True)
            raise ConversionError(page.id, str(e)) from e
        finally:
            registry.clear()

    def _convert(self, page: ConfluencePage, attachment_cache: Mapping[str, str],
                 registry: PlaceholderRegistry) -> ConvertedDocument:
        warnings: List[str] = []
        extractor = MacroExtractor(attachment_cache, self.conversion_config, self.logger)

        # Step 1-2: storage macros into the registry
        for occurrence in self.parser.parse(page.storage):
            try:
                resolved = extractor.extract(occurrence)
            except Exception as e:
                self.logger.warning(f"Skipping {occurrence.name} macro #{occurrence.index} on page {page.id}: {e}")
                warnings.append(f"Macro '{occurrence.name}' could not be resolved: {e}")
                continue
            if resolved is None:
                continue
            registry.register(resolved)

        self.logger.debug(f"Registered {len(registry)} macros for page {page.id}")

        # Step 3: tokens into the view
        injector = ViewInjector(self.conversion_config, self.logger)
        injected_html = injector.inject(page.view, registry)
        if injector.stats.get('unmatched_tokens'):
            warnings.append(
                f"{injector.stats['unmatched_tokens']} macro(s) had no matching container in the view"
            )

        # Counted after injection; absorbed macros have left the registry
        macro_counts = {'mermaid': 0, 'code': 0, 'diagrams': 0, 'panels': 0, 'toc': 0}
        for entry in registry.entries():
            self._count(entry.content, macro_counts)

        # Step 4: render
        renderer = MarkdownConverter(
            logger=self.logger,
            config={
                'heading_style': self.conversion_config.get('heading_style', 'ATX'),
                'asset_directory': self.export_config.get('asset_directory', 'assets'),
            },
        )
        rendered = renderer.convert_html(injected_html)

        # Step 5: tokens back out
        resolver = PlaceholderResolver(self.conversion_config, self.logger)
        body = resolver.resolve(rendered, registry)
        for token in resolver.unmatched:
            warnings.append(f"Placeholder {token} was not found in the rendered markdown")

        # Step 6: frontmatter and cleanup
        metadata = build_frontmatter(
            page, macro_counts,
            exported_by=self.export_config.get('exported_by', DEFAULT_EXPORTED_BY),
        )
        markdown = cleanup_markdown(body)
        if self.export_config.get('frontmatter', True):
            markdown = cleanup_markdown(f"{render_frontmatter(metadata)}\n\n{markdown}")

        self.logger.info(f"Page {page.id} converted ({len(markdown)} chars, {len(warnings)} warnings)")
        return ConvertedDocument(
            page_id=page.id,
            title=page.title,
            markdown=markdown,
            metadata=metadata,
            macro_counts=macro_counts,
            warnings=warnings,
        )

    @staticmethod
    def _count(resolved, macro_counts: Dict[str, int]) -> None:
        family = resolved.family
        if family == 'mermaid':
            if resolved.kind == MacroKind.DIAGRAM:
                macro_counts['mermaid'] += 1
            else:
                macro_counts['diagrams'] += 1
        elif family in ('code', 'noformat'):
            macro_counts['code'] += 1
        elif family == 'diagram':
            macro_counts['diagrams'] += 1
        elif family == 'panel':
            macro_counts['panels'] += 1
        elif family == 'toc':
            macro_counts['toc'] += 1
