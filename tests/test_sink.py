"""Tests for the database sink on SQLite."""
import threading

import pytest
from sqlalchemy import text

from punparse.models import (
    Category,
    Forum,
    Post,
    SinkClosedError,
    SinkConnectionError,
    StorageError,
    Topic,
    User,
)
from punparse.storage.dialects import Dialect
from punparse.storage.sink import DatabaseSink, normalize_url


def _forum(forum_id: int, category: str = "General", position: int = 0) -> Forum:
    return Forum(id=forum_id, name=f"Forum {forum_id}", category_name=category, category_position=position)


def _rows(sink: DatabaseSink, sql: str):
    with sink.engine.connect() as conn:
        return conn.execute(text(sql)).fetchall()


class TestDatabaseSink:
    """Test idempotent writes, categories and lifecycle."""

    @pytest.fixture
    def db_path(self, tmp_path):
        return tmp_path / "forum.db"

    @pytest.fixture
    def sink(self, db_path):
        sink = DatabaseSink.connect(f"sqlite:{db_path}")
        sink.provision_schema()
        yield sink
        sink.close()

    def test_short_sqlite_url(self):
        assert normalize_url("sqlite:forum.db") == "sqlite:///forum.db"
        assert normalize_url("sqlite:///forum.db") == "sqlite:///forum.db"
        assert normalize_url("postgresql://host/db") == "postgresql://host/db"

    def test_dialect_detected(self, sink):
        assert sink.dialect is Dialect.SQLITE

    def test_provision_seeds_groups_and_guest(self, sink):
        assert sink.count("groups") == 4
        assert sink.count("users") == 1
        assert _rows(sink, "SELECT id, group_id, username FROM users") == [(1, 3, "Guest")]

    def test_insert_is_idempotent(self, sink):
        post = Post(id=5, poster="Bob", poster_id=2, message="hi", topic_id=7)

        assert sink.insert(post) is True
        assert sink.insert(post) is False
        assert sink.count("posts") == 1

    def test_first_write_wins(self, sink):
        sink.insert(User(id=2, username="Bob"))
        sink.insert(User(id=2, username="Robert"))
        assert _rows(sink, "SELECT username FROM users WHERE id = 2") == [("Bob",)]

    def test_record_columns(self, sink):
        sink.insert(Topic(id=7, subject="Hello", poster="Bob", last_post_id=42,
                          sticky=True, forum_id=3))
        row = _rows(sink, "SELECT id, subject, last_post_id, sticky, closed, forum_id FROM topics")
        assert row == [(7, "Hello", 42, 1, 0, 3)]

    def test_category_found_or_created(self, sink):
        first = sink.category_id("General", 0)
        again = sink.category_id("General", 0)
        other = sink.category_id("Games", 1)

        assert first == again
        assert other != first
        assert sink.count("categories") == 2

    def test_repeated_category_name_at_other_position(self, sink):
        sink.insert(Category(name="General", display_position=0))
        sink.insert(Category(name="Other", display_position=1))
        assert sink.insert(Category(name="General", display_position=2)) is True
        sink.insert(_forum(1, "General", 0))
        sink.insert(_forum(2, "General", 2))

        assert sink.count("categories") == 3
        rows = _rows(sink, "SELECT f.id, c.disp_position FROM forums f "
                           "JOIN categories c ON c.id = f.cat_id ORDER BY f.id")
        assert rows == [(1, 0), (2, 2)]

    def test_repeated_category_names_survive_reconnect(self, db_path, sink):
        sink.insert(Category(name="General", display_position=0))
        sink.insert(Category(name="General", display_position=2))
        sink.close()

        with DatabaseSink.connect(f"sqlite:{db_path}") as again:
            assert again.insert(Category(name="General", display_position=0)) is False
            assert again.insert(Category(name="General", display_position=2)) is False
            assert again.count("categories") == 2

    def test_redirect_forum_gets_next_id(self, sink):
        sink.insert(_forum(4))
        redirect = Forum(name="Wiki", redirect_url="http://wiki.example.com/",
                         category_name="General", display_position=1)

        assert sink.insert(redirect) is True
        assert sink.insert(_forum(2)) is True

        rows = _rows(sink, "SELECT id, forum_name, redirect_url, num_topics FROM forums ORDER BY id")
        assert rows == [
            (2, "Forum 2", None, 0),
            (4, "Forum 4", None, 0),
            (5, "Wiki", "http://wiki.example.com/", 0),
        ]

    def test_redirect_forum_written_once(self, db_path, sink):
        redirect = Forum(name="Wiki", redirect_url="http://wiki.example.com/", category_name="General")
        other = Forum(name="Wiki", redirect_url="http://other.example.com/", category_name="General")

        assert sink.insert(redirect) is True
        assert sink.insert(redirect) is False
        assert sink.insert(other) is True
        sink.close()

        with DatabaseSink.connect(f"sqlite:{db_path}") as again:
            assert again.insert(redirect) is False
            assert again.count("forums") == 2

    def test_category_insert_deduplicated_by_name(self, sink):
        assert sink.insert(Category(name="General", display_position=0)) is True
        assert sink.insert(Category(name="General", display_position=0)) is False
        assert sink.count("categories") == 1

    def test_forum_gets_category_id(self, sink):
        sink.insert(Category(name="Games", display_position=1))
        sink.insert(_forum(3, "Games", 1))
        sink.insert(_forum(4, "General", 0))

        rows = _rows(sink, "SELECT f.id, c.cat_name FROM forums f JOIN categories c ON c.id = f.cat_id ORDER BY f.id")
        assert rows == [(3, "Games"), (4, "General")]

    def test_forum_before_category(self, sink):
        sink.insert(_forum(3, "Games", 1))
        assert sink.insert(Category(name="Games", display_position=1)) is False
        assert sink.count("categories") == 1

    def test_category_cache_survives_reconnect(self, db_path, sink):
        category_id = sink.category_id("General")
        sink.close()

        with DatabaseSink.connect(f"sqlite:///{db_path}") as again:
            assert again.category_id("General") == category_id

    def test_concurrent_inserts(self, sink):
        barrier = threading.Barrier(4)
        results = []

        def insert_all():
            barrier.wait()
            for n in range(50):
                results.append(sink.insert(Post(id=n, poster="Bob", topic_id=1)))

        threads = [threading.Thread(target=insert_all) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert results.count(True) == 50
        assert sink.count("posts") == 50

    def test_error_leaves_connection_usable(self, sink):
        with pytest.raises(StorageError):
            sink.count("no_such_table")
        assert sink.insert(User(id=2, username="Bob")) is True

    def test_close_is_idempotent(self, sink):
        sink.close()
        sink.close()
        assert sink.closed

    def test_use_after_close_raises(self, sink):
        sink.close()
        with pytest.raises(SinkClosedError):
            sink.insert(User(id=2, username="Bob"))
        with pytest.raises(SinkClosedError):
            sink.category_id("General")

    def test_table_prefix(self, tmp_path):
        with DatabaseSink.connect(f"sqlite:{tmp_path / 'prefixed.db'}", table_prefix="pun_") as sink:
            sink.provision_schema()
            sink.insert(User(id=2, username="Bob"))
            assert sink.count("users") == 2
            names = {row[0] for row in _rows(sink, "SELECT name FROM sqlite_master WHERE type = 'table'")}
        assert "pun_users" in names
        assert "users" not in names

    def test_provision_drops_existing_rows(self, sink):
        sink.insert(User(id=2, username="Bob"))
        sink.provision_schema()
        assert sink.count("users") == 1

    def test_unreachable_database(self, tmp_path):
        with pytest.raises(SinkConnectionError):
            DatabaseSink.connect(f"sqlite:///{tmp_path / 'missing' / 'dir' / 'forum.db'}")

    def test_unsupported_url(self):
        with pytest.raises(SinkConnectionError):
            DatabaseSink.connect("nosuchdb://localhost/forum")
