"""Tests for file discovery, query strings and dates."""
import pytest

from punparse.models import IngestionSetupError
from punparse.utils import discover_files, get_query_int, get_query_value, parse_date, should_exclude_file

from forum_pages import DATE_FORMAT, timestamp


class TestDiscoverFiles:
    """Test export file discovery."""

    def test_recursive_largest_first(self, tmp_path):
        (tmp_path / "topics").mkdir()
        (tmp_path / "small.html").write_text("a")
        (tmp_path / "topics" / "large.html").write_text("a" * 100)
        (tmp_path / "medium.html").write_text("a" * 10)

        files = discover_files(tmp_path)

        assert [f.name for f in files] == ["large.html", "medium.html", "small.html"]

    def test_hidden_and_temporary_files_excluded(self, tmp_path):
        for name in [".htaccess", "page.html.tmp", "~page.html", "Thumbs.db", "page.html"]:
            (tmp_path / name).write_text("x")

        assert [f.name for f in discover_files(tmp_path)] == ["page.html"]

    def test_empty_directory(self, tmp_path):
        assert discover_files(tmp_path) == []

    def test_missing_directory(self, tmp_path):
        with pytest.raises(IngestionSetupError):
            discover_files(tmp_path / "missing")

    def test_file_is_not_a_root(self, tmp_path):
        page = tmp_path / "index.html"
        page.write_text("x")
        with pytest.raises(IngestionSetupError):
            discover_files(page)

    @pytest.mark.parametrize("name, excluded", [
        (".DS_Store", True),
        ("__init__", True),
        ("viewtopic.php?id=3.html", False),
        ("index.html.bak", True),
    ])
    def test_should_exclude_file(self, tmp_path, name, excluded):
        assert should_exclude_file(tmp_path / name) is excluded


class TestQueryValues:
    """Test reading IDs out of board links."""

    def test_full_url(self):
        assert get_query_value("viewtopic.php?id=37&p=2#p5", "id") == "37"
        assert get_query_value("viewtopic.php?id=37&p=2#p5", "p") == "2"

    def test_bare_query(self):
        assert get_query_value("id=37&p=2", "id") == "37"

    def test_escaped_ampersand_already_decoded(self):
        # BeautifulSoup hands over href values with &amp; decoded
        assert get_query_value("viewforum.php?id=9&p=2", "id") == "9"

    def test_missing_field(self):
        assert get_query_value("viewtopic.php?pid=5#p5", "id") is None
        assert get_query_value("index.php", "id") is None

    def test_fragment_ignored(self):
        assert get_query_value("viewtopic.php?pid=5#p5", "pid") == "5"

    def test_int(self):
        assert get_query_int("profile.php?id=12", "id") == 12
        assert get_query_int("profile.php?id=twelve", "id") is None
        assert get_query_int("profile.php", "id") is None


class TestParseDate:
    """Test board date parsing."""

    def test_utc_timestamp(self):
        assert parse_date("2008-01-03 11:00:00", DATE_FORMAT) == timestamp("2008-01-03 11:00:00")
        assert parse_date("1970-01-01 00:00:00", DATE_FORMAT) == 0

    def test_whitespace_collapsed(self):
        assert parse_date(" 2008-01-03\n  11:00:00 ", DATE_FORMAT) == timestamp("2008-01-03 11:00:00")

    def test_custom_format(self):
        assert parse_date("03.01.2008 11:00", "%d.%m.%Y %H:%M") == timestamp("2008-01-03 11:00:00")

    def test_mismatch_raises(self):
        with pytest.raises(ValueError):
            parse_date("yesterday", DATE_FORMAT)
