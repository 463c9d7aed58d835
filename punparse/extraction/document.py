"""Document loading and record extraction.

Turns one exported PunBB page into its records:
1. Load the page with BeautifulSoup (charset detected from the bytes)
2. Find the .pun container and dispatch on its page type
3. Parse each record element, keeping per-record errors in document order
"""
from typing import Optional, Union

from bs4 import BeautifulSoup, Tag

from punparse.config import settings, get_logger
from punparse.models import (
    DocumentLoadError,
    Forum,
    MalformedRecordError,
    NotApplicableError,
    PageType,
    Record,
)
from punparse.utils import get_query_int
from punparse.extraction.records import parse_category, parse_forum, parse_post, parse_post_user, parse_topic

logger = get_logger(__name__)

ExtractedItem = Union[Record, MalformedRecordError]

SUPPORTED_PAGES: tuple[PageType, ...] = ("punindex", "punviewforum", "punviewtopic", "punviewpoll")


# ============================================================================
# Document Loading
# ============================================================================


def load_document(html: bytes) -> BeautifulSoup:
    """Parse raw page bytes.

    The export's charset is unknown, so the bytes go to BeautifulSoup as-is
    and its encoding detection picks the charset.

    Raises:
        DocumentLoadError: If the bytes cannot be parsed as HTML
    """
    try:
        return BeautifulSoup(html, "html.parser")
    except Exception as e:
        raise DocumentLoadError(f"Couldn't parse document: {e}") from e


def find_container_id(element: Tag, fallback_field: Optional[str] = None) -> Optional[int]:
    """Find the ID of the topic or forum a page shows.

    The first page link carries it as the "id" query value. Single-page
    topics and forums have no page links, so the reply or new topic link
    ("tid" or "fid") is tried next when fallback_field is given.
    """
    pagelink = element.select_one(".pagelink a")
    if pagelink is not None:
        container_id = get_query_int(pagelink.get("href", ""), "id")
        if container_id is not None:
            return container_id
    if fallback_field:
        for link in element.select(".postlink a"):
            container_id = get_query_int(link.get("href", ""), fallback_field)
            if container_id is not None:
                return container_id
    return None


# ============================================================================
# Extraction
# ============================================================================


class DocumentExtractor:
    """Extracts records from exported PunBB pages.

    Stateless apart from the date format, so one instance is shared by all
    workers.
    """

    def __init__(self, date_format: Optional[str] = None):
        self.date_format = date_format or settings.date_format

    def extract(self, html: bytes) -> list[ExtractedItem]:
        """Extract every record of a page, in document order.

        Records that fail to parse appear in the list as their
        MalformedRecordError, in the position the record would have had.
        Redirect forums of an index page come last.

        Raises:
            DocumentLoadError: If the page cannot be parsed
            NotApplicableError: If the page is not a supported PunBB page
        """
        document = load_document(html)
        pun = document.select_one(".pun")
        if pun is None:
            raise NotApplicableError("No PunBB content in document")

        page_type = pun.get("id")
        if page_type not in SUPPORTED_PAGES:
            raise NotApplicableError(f"Unsupported page type: {page_type}")

        if page_type == "punindex":
            return self._extract_index(pun)
        if page_type == "punviewforum":
            return self._extract_forum(pun)
        return self._extract_topic(pun)

    def _extract_index(self, pun: Tag) -> list[ExtractedItem]:
        items: list[ExtractedItem] = []
        # Redirect forums take new IDs when written, so they follow every real forum
        redirects: list[Forum] = []
        for position, block in enumerate(pun.select(".blocktable")):
            try:
                category = parse_category(block, position)
            except MalformedRecordError as e:
                # Forums can't be placed without their category
                items.append(e)
                continue
            items.append(category)

            forum_position = 0
            for row in block.find_all("tr"):
                # Skip the heading row
                if row.select_one(".tclcon") is None:
                    continue
                try:
                    forum = parse_forum(row, self.date_format, forum_position, category)
                    (redirects if forum.is_redirect else items).append(forum)
                except MalformedRecordError as e:
                    items.append(e)
                forum_position += 1
        return items + redirects

    def _extract_forum(self, pun: Tag) -> list[ExtractedItem]:
        forum_id = find_container_id(pun, fallback_field="fid")
        if forum_id is None:
            logger.debug("No forum ID on forum page, using 0")
            forum_id = 0

        items: list[ExtractedItem] = []
        for row in pun.find_all("tr"):
            if row.select_one(".tclcon") is None:
                continue
            try:
                topic = parse_topic(row, self.date_format, forum_id)
                if topic is not None:
                    items.append(topic)
            except MalformedRecordError as e:
                items.append(e)
        return items

    def _extract_topic(self, pun: Tag) -> list[ExtractedItem]:
        # None leaves the posts pending until their topic is seen
        topic_id = find_container_id(pun, fallback_field="tid")

        items: list[ExtractedItem] = []
        for element in pun.select(".blockpost"):
            try:
                user = parse_post_user(element)
                if user is not None:
                    items.append(user)
            except MalformedRecordError as e:
                items.append(e)
            try:
                items.append(parse_post(element, self.date_format, topic_id))
            except MalformedRecordError as e:
                items.append(e)
        return items
