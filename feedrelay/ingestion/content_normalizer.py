"""
Content Normalizer
==================

Turns an entry's HTML body into post text plus an ordered list of media
references.

The stages run in a fixed order and later stages rely on earlier ones:

1. ``line_breaks``          <br> variants become newlines
2. ``unescape_ampersands``  &amp; becomes & (must precede media extraction)
3. ``rewrite_quotes``       RSSHub quote blocks become a readable marker
4. ``extract_media``        img/video sources harvested in order of appearance
5. ``strip_tags``           anchors become their href, every other tag is dropped
6. ``tidy_whitespace``      trailing spaces and blank-line runs collapsed

Stages 4 and 5 parse with BeautifulSoup on the lxml backend, and character
references are decoded there, once. Inside attribute values lxml leaves a
bare ``&name`` without a semicolon alone, so media URLs such as
``?a=1&region=eu`` survive; ``html.parser`` turns that into ``?a=1®ion=eu``.
"""

import re
import warnings
from typing import Callable, List, Optional, Tuple

from bs4 import BeautifulSoup, MarkupResemblesLocatorWarning

from ..config.settings import FeedRelaySettings
from ..utils.logging import get_logger_for_component
from .models import MediaItem, MediaKind, NormalizedContent


Stage = Tuple[str, Callable[[str], str]]

# Bodies that are only a link are normal for RSSHub feeds
warnings.filterwarnings("ignore", category=MarkupResemblesLocatorWarning)


class ContentNormalizer:
    """Ordered HTML-to-text pipeline with media extraction."""

    PARSER = "lxml"
    MEDIA_TAGS = ("img", "video")

    BR_PATTERN = re.compile(r"<br\s*/?>", re.IGNORECASE)
    QUOTE_PATTERN = re.compile(r'<div\s+class="rsshub-quote"\s*>', re.IGNORECASE)
    # &amp; that escapes another reference (&amp;lt;) stays for the parser
    AMPERSAND_PATTERN = re.compile(r"&amp;(?!#?[A-Za-z0-9]+;)")
    TRAILING_SPACE_PATTERN = re.compile(r"[ \t]+\n")
    BLANK_LINES_PATTERN = re.compile(r"\n{3,}")

    DEFAULT_QUOTE_MARKER = "\n**🔁 Quote:**"

    def __init__(
        self,
        settings: Optional[FeedRelaySettings] = None,
        rewrite_quotes: Optional[bool] = None,
        quote_marker: Optional[str] = None,
    ):
        """Initialize normalizer.

        Args:
            settings: Application settings supplying the quote policy
            rewrite_quotes: Override for the quote rewrite toggle
            quote_marker: Override for the quote marker text
        """
        feed_settings = settings.feeds if settings else None
        if rewrite_quotes is None:
            rewrite_quotes = feed_settings.rewrite_quotes if feed_settings else True
        if quote_marker is None:
            quote_marker = feed_settings.quote_marker if feed_settings else self.DEFAULT_QUOTE_MARKER

        self.rewrite_quotes_enabled = rewrite_quotes
        self.quote_marker = quote_marker
        self.logger = get_logger_for_component("content_normalizer")

    @property
    def text_stages(self) -> List[Stage]:
        """Stages applied before media extraction."""
        stages: List[Stage] = [
            ("line_breaks", self.line_breaks),
            ("unescape_ampersands", self.unescape_ampersands),
        ]
        if self.rewrite_quotes_enabled:
            stages.append(("rewrite_quotes", self.rewrite_quotes))
        return stages

    @property
    def cleanup_stages(self) -> List[Stage]:
        """Stages applied after media extraction."""
        return [
            ("strip_tags", self.strip_tags),
            ("tidy_whitespace", self.tidy_whitespace),
        ]

    def normalize(self, raw_content: Optional[str]) -> NormalizedContent:
        """Run every stage over an entry body.

        Args:
            raw_content: Entry body markup

        Returns:
            NormalizedContent with plain text and media in order of appearance
        """
        text = raw_content or ""

        for _, stage in self.text_stages:
            text = stage(text)

        media = self.extract_media(text)

        for _, stage in self.cleanup_stages:
            text = stage(text)

        self.logger.debug(
            f"Normalized content: {len(raw_content or '')} -> {len(text)} chars, "
            f"{len(media)} media item(s)"
        )
        return NormalizedContent(text=text, media=media)

    # Individual stages

    def line_breaks(self, text: str) -> str:
        return self.BR_PATTERN.sub("\n", text)

    @classmethod
    def unescape_ampersands(cls, text: str) -> str:
        """Replace ``&amp;`` with ``&`` across the whole blob.

        ``&amp;`` directly followed by a reference name and ``;`` is kept, so
        ``&amp;lt;`` reaches the parser intact and decodes once, to ``&lt;``.
        """
        return cls.AMPERSAND_PATTERN.sub("&", text)

    def rewrite_quotes(self, text: str) -> str:
        return self.QUOTE_PATTERN.sub(self.quote_marker, text)

    def _parse(self, text: str) -> BeautifulSoup:
        return BeautifulSoup(text, self.PARSER)

    def extract_media(self, text: str) -> List[MediaItem]:
        """Collect img/video sources in document order."""
        items = []
        for element in self._parse(text).find_all(self.MEDIA_TAGS):
            # Attribute values may still carry a second level of escaping
            url = self.unescape_ampersands(element.get("src") or "").strip()
            if not url:
                continue
            kind = MediaKind.VIDEO if element.name == "video" else MediaKind.IMAGE
            items.append(MediaItem(source_url=url, kind=kind))
        return items

    def strip_tags(self, text: str) -> str:
        soup = self._parse(text)

        # An unclosed <a> ends where the next one starts
        for anchor in soup.find_all("a"):
            inner = anchor.find("a")
            if inner is None:
                continue
            while inner.parent is not anchor:
                inner = inner.parent
            for node in reversed([inner] + list(inner.next_siblings)):
                anchor.insert_after(node.extract())

        for anchor in soup.find_all("a", href=True):
            anchor.replace_with(self._anchor_text(anchor))

        return soup.get_text()

    @staticmethod
    def _anchor_text(anchor) -> str:
        """The href, keeping the label's outer spacing so words do not merge."""
        label = anchor.get_text()
        text = anchor["href"]
        if label[:1].isspace():
            text = " " + text
        if label[-1:].isspace():
            text += " "
        return text

    def tidy_whitespace(self, text: str) -> str:
        text = self.TRAILING_SPACE_PATTERN.sub("\n", text)
        text = self.BLANK_LINES_PATTERN.sub("\n\n", text)
        return text.strip()
