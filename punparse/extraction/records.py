"""Record parsers for the elements of PunBB pages.

Each parser takes one element and returns one record, raising
MalformedRecordError when a required part is missing or invalid. Parsers
return None for elements that describe nothing to migrate (moved topics).
"""
import re
from typing import Optional

from bs4 import Tag

from punparse.config import get_logger
from punparse.models import Category, Forum, GUEST_USER_ID, MalformedRecordError, Post, Topic, User
from punparse.utils import get_query_int, parse_date
from punparse.extraction.markup import contains_smilies, to_bbcode

logger = get_logger(__name__)

_EDITED = re.compile(r"Last edited by (?P<user>.+?) \((?P<date>[^)]+)\)")


def _text(element: Tag) -> str:
    """Element text with whitespace collapsed, like a browser renders it."""
    return " ".join(element.get_text().split())


def _strip_by(text: str) -> str:
    # "by Username" in topic and forum listings
    return text[3:] if text.startswith("by ") else text


def _own_text(element: Optional[Tag]) -> Optional[str]:
    # Text directly inside element, not inside its children
    if element is None:
        return None
    own_text = " ".join(" ".join(element.find_all(string=True, recursive=False)).split())
    return own_text or None


def _parse_int(element: Optional[Tag], what: str) -> int:
    if element is None:
        raise MalformedRecordError(f"Couldn't get {what}.")
    try:
        return int(_text(element).replace(",", ""))
    except ValueError:
        raise MalformedRecordError(f"Couldn't get {what}: {_text(element)!r}") from None


def _parse_date(text: str, date_format: str, what: str) -> int:
    try:
        return parse_date(text, date_format)
    except ValueError:
        raise MalformedRecordError(f"Couldn't parse date of {what}: {text!r}") from None


def _last_post(cell: Optional[Tag], date_format: str, what: str) -> tuple[Optional[int], Optional[int], Optional[str]]:
    """(last_post_id, last_posted, last_poster) from a .tcr cell."""
    if cell is None or not _text(cell):
        # Empty forums show a non-breaking space
        return None, None, None
    link = cell.find("a")
    post_id = get_query_int(link.get("href", ""), "pid") if link is not None else None
    if post_id is None:
        raise MalformedRecordError(f"Couldn't get ID of last post in {what}")
    posted = _parse_date(_text(link), date_format, f"last post in {what}")
    byuser = cell.select_one(".byuser")
    if byuser is None:
        raise MalformedRecordError(f"Couldn't get last poster in {what}")
    return post_id, posted, _strip_by(_text(byuser))


# ============================================================================
# Index page
# ============================================================================


def parse_category(element: Tag, display_position: int) -> Category:
    """Parse a .blocktable element of the board index."""
    heading = element.find("h2")
    if heading is None:
        raise MalformedRecordError("Couldn't get category name.")
    return Category(name=_text(heading), display_position=display_position)


def parse_forum(element: Tag, date_format: str, display_position: int,
                category: Category) -> Forum:
    """Parse a forum row of the board index.

    Redirect forums keep their link as redirect_url instead of a forum ID,
    and have no topics or posts of their own.
    """
    heading = element.find("h3")
    link = heading.find("a") if heading is not None else element.find("a")
    if link is None or not link.get("href"):
        raise MalformedRecordError("Couldn't get forum URL.")

    if "iredirect" in (element.get("class") or []):
        if heading is None:
            raise MalformedRecordError(f"Couldn't get name of redirect forum to {link['href']}")
        return Forum(
            name=_text(heading),
            redirect_url=link["href"],
            description=_own_text(element.select_one(".tclcon")),
            display_position=display_position,
            category_name=category.name,
            category_position=category.display_position,
        )

    forum_id = get_query_int(link["href"], "id")
    if forum_id is None:
        raise MalformedRecordError("Couldn't get forum ID.")
    if heading is None:
        raise MalformedRecordError(f"Couldn't get name of forum {forum_id}")

    description = _own_text(element.select_one(".tclcon"))
    last_post_id, last_posted, last_poster = _last_post(
        element.select_one(".tcr"), date_format, f"forum {forum_id}")

    return Forum(
        id=forum_id,
        name=_text(heading),
        description=description,
        num_topics=_parse_int(element.select_one(".tc2"), f"number of topics in forum {forum_id}"),
        num_posts=_parse_int(element.select_one(".tc3"), f"number of posts in forum {forum_id}"),
        last_posted=last_posted,
        last_post_id=last_post_id,
        last_poster=last_poster,
        display_position=display_position,
        category_name=category.name,
        category_position=category.display_position,
    )


# ============================================================================
# Forum page
# ============================================================================


def parse_topic(element: Tag, date_format: str, forum_id: int) -> Optional[Topic]:
    """Parse a topic row of a forum page.

    Returns None for moved topics; the topic itself is listed in the forum it
    was moved to.
    """
    classes = element.get("class") or []
    if "imoved" in classes:
        logger.debug("Skipping moved topic")
        return None

    container = element.select_one(".tclcon")
    link = container.find("a") if container is not None else None
    if link is None:
        raise MalformedRecordError("Couldn't get topic URL.")
    topic_id = get_query_int(link.get("href", ""), "id")
    if topic_id is None:
        raise MalformedRecordError("Couldn't get topic ID.")

    byuser = container.select_one(".byuser")
    last_post_id, last_posted, last_poster = _last_post(
        element.select_one(".tcr"), date_format, f"topic {topic_id}")
    if last_post_id is None:
        raise MalformedRecordError(f"Couldn't get ID of last post in topic {topic_id}")

    return Topic(
        id=topic_id,
        poster=_strip_by(_text(byuser)) if byuser is not None else "",
        subject=_text(link),
        last_posted=last_posted,
        last_post_id=last_post_id,
        last_poster=last_poster,
        num_replies=_parse_int(element.select_one(".tc2"), f"number of replies in topic {topic_id}"),
        num_views=_parse_int(element.select_one(".tc3"), f"number of views in topic {topic_id}"),
        closed="iclosed" in classes,
        sticky="isticky" in classes,
        forum_id=forum_id,
    )


# ============================================================================
# Topic page
# ============================================================================


def parse_post_user(element: Tag) -> Optional[User]:
    """Parse the poster of a .blockpost element. Guests give None."""
    poster = element.find("dt")
    if poster is None:
        raise MalformedRecordError("Couldn't get poster of post")
    link = poster.find("a")
    if link is None:
        return None
    user_id = get_query_int(link.get("href", ""), "id")
    if user_id is None:
        raise MalformedRecordError("Couldn't get poster ID of post")

    title = element.select_one(".usertitle")
    if title is None:
        raise MalformedRecordError(f"Couldn't get user title of user {user_id}")

    signature = element.select_one(".postsignature")
    return User(
        id=user_id,
        username=_text(poster),
        title=_text(title),
        has_avatar=element.select_one(".postavatar") is not None,
        signature=to_bbcode(signature) if signature is not None else None,
    )


def parse_post(element: Tag, date_format: str, topic_id: Optional[int]) -> Post:
    """Parse a .blockpost element.

    topic_id is None when the page does not link to its own topic; the post
    is then pending until its topic turns up.
    """
    id_text = element.get("id")
    if not id_text:
        raise MalformedRecordError("Couldn't get post ID.")
    try:
        # Skip the leading 'p'
        post_id = int(id_text[1:])
    except ValueError:
        raise MalformedRecordError(f"Invalid post ID: {id_text}") from None

    poster = element.find("dt")
    if poster is None:
        raise MalformedRecordError(f"Couldn't get poster of post {post_id}")
    poster_link = poster.find("a")
    if poster_link is None:
        poster_id = GUEST_USER_ID
    else:
        poster_id = get_query_int(poster_link.get("href", ""), "id")
        if poster_id is None:
            raise MalformedRecordError(f"Couldn't get poster ID of post {post_id}")

    message = element.select_one(".postmsg")
    if message is None:
        raise MalformedRecordError(f"Couldn't get message body of post {post_id}")

    edited = edited_by = None
    edit_note = message.select_one(".postedit")
    if edit_note is not None:
        match = _EDITED.search(_text(edit_note))
        if match:
            edited_by = match.group("user")
            edited = _parse_date(match.group("date"), date_format, f"edit of post {post_id}")
        edit_note.decompose()

    date_link = element.select_one("h2 a") or element.find("a")
    if date_link is None:
        raise MalformedRecordError(f"Couldn't get date of post {post_id}")

    return Post(
        id=post_id,
        poster=_text(poster),
        poster_id=poster_id,
        message=to_bbcode(message),
        # Set "hide smilies" if there are no smilies in the post
        hide_smilies=not contains_smilies(message),
        posted=_parse_date(_text(date_link), date_format, f"post {post_id}"),
        edited=edited,
        edited_by=edited_by,
        topic_id=topic_id,
    )
