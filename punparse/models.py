"""Records, types, and exceptions for the punparse migration."""
from typing import Any, ClassVar, Literal, Optional

from pydantic import BaseModel, ConfigDict

# ============================================================================
# Type Aliases
# ============================================================================

PageType = Literal["punindex", "punviewforum", "punviewtopic", "punviewpoll", "punprofile"]

# The ID 1 is used by all guests
GUEST_USER_ID = 1


# ============================================================================
# Records
# ============================================================================


class Record(BaseModel):
    """One destination row. Immutable."""
    model_config = ConfigDict(frozen=True)

    TABLE: ClassVar[str] = ""

    @property
    def key(self) -> Any:
        """Primary key of the row, or None when the sink assigns it."""
        return getattr(self, "id", None)

    def to_row(self) -> dict[str, Any]:
        raise NotImplementedError


class Category(Record):
    TABLE: ClassVar[str] = "categories"

    name: str
    display_position: int = 0

    @property
    def key(self) -> Any:
        return None

    def to_row(self) -> dict[str, Any]:
        return {"cat_name": self.name, "disp_position": self.display_position}


class Forum(Record):
    TABLE: ClassVar[str] = "forums"

    # None for redirect forums; the sink assigns their ID
    id: Optional[int] = None
    name: str
    redirect_url: Optional[str] = None
    description: Optional[str] = None
    num_topics: int = 0
    num_posts: int = 0
    last_posted: Optional[int] = None
    last_post_id: Optional[int] = None
    last_poster: Optional[str] = None
    sort_by_topic_start: bool = False
    display_position: int = 0
    # Resolved to a category ID by the sink when the forum is written
    category_name: str
    category_position: int = 0

    @property
    def is_redirect(self) -> bool:
        return self.redirect_url is not None

    def to_row(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "forum_name": self.name,
            "forum_desc": self.description,
            "redirect_url": self.redirect_url,
            "num_topics": self.num_topics,
            "num_posts": self.num_posts,
            "last_post": self.last_posted,
            "last_post_id": self.last_post_id,
            "last_poster": self.last_poster,
            "sort_by": int(self.sort_by_topic_start),
            "disp_position": self.display_position,
        }


class Topic(Record):
    TABLE: ClassVar[str] = "topics"

    id: int
    poster: str = ""
    subject: str
    posted: int = 0
    last_posted: int = 0
    # Derived key: posts on pages without a topic link find their topic by
    # recognising this ID among their own
    last_post_id: int
    last_poster: Optional[str] = None
    num_views: int = 0
    num_replies: int = 0
    closed: bool = False
    sticky: bool = False
    forum_id: int = 0

    def to_row(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "poster": self.poster,
            "subject": self.subject,
            "posted": self.posted,
            "last_post": self.last_posted,
            "last_post_id": self.last_post_id,
            "last_poster": self.last_poster,
            "num_views": self.num_views,
            "num_replies": self.num_replies,
            "closed": int(self.closed),
            "sticky": int(self.sticky),
            "forum_id": self.forum_id,
        }


class Post(Record):
    TABLE: ClassVar[str] = "posts"

    id: int
    poster: str
    poster_id: int = GUEST_USER_ID
    message: str = ""
    hide_smilies: bool = False
    posted: int = 0
    edited: Optional[int] = None
    edited_by: Optional[str] = None
    # None until the topic is known
    topic_id: Optional[int] = None

    @property
    def is_pending(self) -> bool:
        return self.topic_id is None

    def with_topic(self, topic_id: int) -> "Post":
        return self.model_copy(update={"topic_id": topic_id})

    def to_row(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "poster": self.poster,
            "poster_id": self.poster_id,
            "message": self.message,
            "hide_smilies": int(self.hide_smilies),
            "posted": self.posted,
            "edited": self.edited,
            "edited_by": self.edited_by,
            "topic_id": self.topic_id,
        }


class User(Record):
    TABLE: ClassVar[str] = "users"

    id: int
    username: str
    title: Optional[str] = None
    has_avatar: bool = False
    signature: Optional[str] = None

    def to_row(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "username": self.username,
            "title": self.title,
            "use_avatar": int(self.has_avatar),
            "signature": self.signature,
        }


# ============================================================================
# Exceptions
# ============================================================================


class PunParseError(Exception):
    """Base exception for all migration errors"""
    pass


class ExtractionError(PunParseError):
    """Failed to get records out of a document"""
    pass


class MalformedRecordError(ExtractionError):
    """A record is missing a required field or has an invalid one"""
    pass


class NotApplicableError(ExtractionError):
    """The document is not a page type records can be extracted from"""
    pass


class DocumentLoadError(ExtractionError):
    """Failed to parse a document"""
    pass


class ResolutionError(PunParseError):
    """Failed to resolve a derived key"""
    pass


class DerivedKeyConflictError(ResolutionError):
    """A derived key was registered for two different parents"""

    def __init__(self, derived_key: int, existing_id: int, new_id: int):
        self.derived_key = derived_key
        self.existing_id = existing_id
        self.new_id = new_id
        super().__init__(
            f"Last post {derived_key} claimed by topic {new_id}, "
            f"already belongs to topic {existing_id}"
        )


class StorageError(PunParseError):
    """Failed storage operation"""
    pass


class SinkConnectionError(StorageError):
    """Failed to connect to the destination database"""
    pass


class SinkClosedError(StorageError):
    """Sink used after it was closed"""
    pass


class IngestionSetupError(PunParseError):
    """Migration could not start"""
    pass
