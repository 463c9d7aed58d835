"""SQL dialects and the PunBB 1.2 schema.

Each supported database gets a capability set: the column types, keywords and
insert syntax that differ between them. SchemaProvisioner renders the
destination schema with one of them.
"""
from dataclasses import asdict, dataclass
from enum import Enum


@dataclass(frozen=True)
class Capabilities:
    integer: str
    medium_int: str
    small_int: str
    tiny_int: str
    boolean: str
    real: str
    primary_key: str
    unique: str
    table_suffix: str
    memory_suffix: str
    insert_prefix: str
    insert_suffix: str
    returning_id: bool
    quote: str


class Dialect(Enum):
    MYSQL = "mysql"
    POSTGRESQL = "postgresql"
    SQLITE = "sqlite"

    @property
    def caps(self) -> Capabilities:
        return _CAPABILITIES[self]

    @classmethod
    def from_name(cls, name: str) -> "Dialect":
        """Dialect for a SQLAlchemy dialect name or a command-line spelling.

        Raises:
            ValueError: If the database is not supported
        """
        normalized = name.lower().split("+", 1)[0]
        aliases = {"mariadb": "mysql", "postgres": "postgresql"}
        try:
            return cls(aliases.get(normalized, normalized))
        except ValueError:
            raise ValueError(f"Unsupported database type: {name}") from None


_CAPABILITIES = {
    Dialect.MYSQL: Capabilities(
        integer="INT(10) UNSIGNED",
        medium_int="MEDIUMINT(8) UNSIGNED",
        small_int="SMALLINT(6)",
        tiny_int="TINYINT(3) UNSIGNED",
        boolean="TINYINT(1)",
        real="FLOAT",
        primary_key="INT(10) UNSIGNED NOT NULL AUTO_INCREMENT",
        unique="UNIQUE ",
        table_suffix=" ENGINE=MyISAM",
        memory_suffix=" ENGINE=MEMORY",
        insert_prefix="INSERT IGNORE INTO",
        insert_suffix="",
        returning_id=False,
        quote="`",
    ),
    Dialect.POSTGRESQL: Capabilities(
        integer="INT",
        medium_int="INT",
        small_int="SMALLINT",
        tiny_int="SMALLINT",
        boolean="SMALLINT",
        real="REAL",
        primary_key="SERIAL",
        unique="",
        table_suffix="",
        memory_suffix="",
        insert_prefix="INSERT INTO",
        insert_suffix=" ON CONFLICT DO NOTHING",
        returning_id=True,
        quote='"',
    ),
    Dialect.SQLITE: Capabilities(
        integer="INTEGER",
        medium_int="INTEGER",
        small_int="INTEGER",
        tiny_int="INTEGER",
        boolean="INTEGER",
        real="FLOAT",
        # INTEGER PRIMARY KEY aliases the rowid, so it auto-increments
        primary_key="INTEGER NOT NULL",
        unique="",
        table_suffix="",
        memory_suffix="",
        insert_prefix="INSERT OR IGNORE INTO",
        insert_suffix="",
        returning_id=False,
        quote='"',
    ),
}


# ============================================================================
# Schema
# ============================================================================

# (column, type) pairs. Types are formatted with the dialect's capabilities.
_Columns = list[tuple[str, str]]


@dataclass(frozen=True)
class _Table:
    name: str
    columns: _Columns
    primary_key: tuple[str, ...] = ()
    memory: bool = False


_TABLES = [
    _Table("bans", [
        ("id", "{primary_key}"),
        ("username", "VARCHAR(200)"),
        ("ip", "VARCHAR(255)"),
        ("email", "VARCHAR(50)"),
        ("message", "VARCHAR(255)"),
        ("expire", "{integer}"),
    ], ("id",)),
    _Table("categories", [
        ("id", "{primary_key}"),
        ("cat_name", "VARCHAR(80) NOT NULL DEFAULT 'New Category'"),
        ("disp_position", "{integer} NOT NULL DEFAULT 0"),
    ], ("id",)),
    _Table("censoring", [
        ("id", "{primary_key}"),
        ("search_for", "VARCHAR(60) NOT NULL DEFAULT ''"),
        ("replace_with", "VARCHAR(60) NOT NULL DEFAULT ''"),
    ], ("id",)),
    _Table("config", [
        ("conf_name", "VARCHAR(255) NOT NULL DEFAULT ''"),
        ("conf_value", "TEXT"),
    ], ("conf_name",)),
    _Table("forum_perms", [
        ("group_id", "{integer} NOT NULL DEFAULT 0"),
        ("forum_id", "{integer} NOT NULL DEFAULT 0"),
        ("read_forum", "{boolean} NOT NULL DEFAULT 1"),
        ("read_replies", "{boolean} NOT NULL DEFAULT 1"),
        ("post_topics", "{boolean} NOT NULL DEFAULT 1"),
    ], ("group_id", "forum_id")),
    _Table("forums", [
        ("id", "{primary_key}"),
        ("forum_name", "VARCHAR(80) NOT NULL DEFAULT 'New forum'"),
        ("forum_desc", "TEXT"),
        ("redirect_url", "VARCHAR(100)"),
        ("moderators", "TEXT"),
        ("num_topics", "{medium_int} NOT NULL DEFAULT 0"),
        ("num_posts", "{medium_int} NOT NULL DEFAULT 0"),
        ("last_post", "{integer}"),
        ("last_post_id", "{integer}"),
        ("last_poster", "VARCHAR(200)"),
        ("sort_by", "{boolean} NOT NULL DEFAULT 0"),
        ("disp_position", "{integer} NOT NULL DEFAULT 0"),
        ("cat_id", "{integer} NOT NULL DEFAULT 0"),
    ], ("id",)),
    _Table("groups", [
        ("g_id", "{primary_key}"),
        ("g_title", "VARCHAR(50) NOT NULL DEFAULT ''"),
        ("g_user_title", "VARCHAR(50)"),
        ("g_read_board", "{boolean} NOT NULL DEFAULT 1"),
        ("g_post_replies", "{boolean} NOT NULL DEFAULT 1"),
        ("g_post_topics", "{boolean} NOT NULL DEFAULT 1"),
        ("g_post_polls", "{boolean} NOT NULL DEFAULT 1"),
        ("g_edit_posts", "{boolean} NOT NULL DEFAULT 1"),
        ("g_delete_posts", "{boolean} NOT NULL DEFAULT 1"),
        ("g_delete_topics", "{boolean} NOT NULL DEFAULT 1"),
        ("g_set_title", "{boolean} NOT NULL DEFAULT 1"),
        ("g_search", "{boolean} NOT NULL DEFAULT 1"),
        ("g_search_users", "{boolean} NOT NULL DEFAULT 1"),
        ("g_edit_subjects_interval", "{small_int} NOT NULL DEFAULT 300"),
        ("g_post_flood", "{small_int} NOT NULL DEFAULT 30"),
        ("g_search_flood", "{small_int} NOT NULL DEFAULT 30"),
    ], ("g_id",)),
    _Table("online", [
        ("user_id", "{integer} NOT NULL DEFAULT 1"),
        ("ident", "VARCHAR(200) NOT NULL DEFAULT ''"),
        ("logged", "{integer} NOT NULL DEFAULT 0"),
        ("idle", "{boolean} NOT NULL DEFAULT 0"),
    ], memory=True),
    _Table("posts", [
        ("id", "{primary_key}"),
        ("poster", "VARCHAR(200) NOT NULL DEFAULT ''"),
        ("poster_id", "{integer} NOT NULL DEFAULT 1"),
        ("poster_ip", "VARCHAR(15)"),
        ("poster_email", "VARCHAR(50)"),
        ("message", "TEXT"),
        ("hide_smilies", "{boolean} NOT NULL DEFAULT 0"),
        ("posted", "{integer} NOT NULL DEFAULT 0"),
        ("edited", "{integer}"),
        ("edited_by", "VARCHAR(200)"),
        ("topic_id", "{integer} NOT NULL DEFAULT 0"),
    ], ("id",)),
    _Table("ranks", [
        ("id", "{primary_key}"),
        ("rank", "VARCHAR(50) NOT NULL DEFAULT ''"),
        ("min_posts", "{medium_int} NOT NULL DEFAULT 0"),
    ], ("id",)),
    _Table("reports", [
        ("id", "{primary_key}"),
        ("post_id", "{integer} NOT NULL DEFAULT 0"),
        ("topic_id", "{integer} NOT NULL DEFAULT 0"),
        ("forum_id", "{integer} NOT NULL DEFAULT 0"),
        ("reported_by", "{integer} NOT NULL DEFAULT 0"),
        ("created", "{integer} NOT NULL DEFAULT 0"),
        ("message", "TEXT"),
        ("zapped", "{integer}"),
        ("zapped_by", "{integer}"),
    ], ("id",)),
    _Table("search_cache", [
        ("id", "{integer} NOT NULL DEFAULT 0"),
        ("ident", "VARCHAR(200) NOT NULL DEFAULT ''"),
        ("search_data", "TEXT"),
    ], ("id",)),
    _Table("search_matches", [
        ("post_id", "{integer} NOT NULL DEFAULT 0"),
        ("word_id", "{medium_int} NOT NULL DEFAULT 0"),
        ("subject_match", "{boolean} NOT NULL DEFAULT 0"),
    ]),
    # search_words differs too much between databases; see _search_words()
    _Table("subscriptions", [
        ("user_id", "{integer} NOT NULL DEFAULT 0"),
        ("topic_id", "{integer} NOT NULL DEFAULT 0"),
    ], ("user_id", "topic_id")),
    _Table("topics", [
        ("id", "{primary_key}"),
        ("poster", "VARCHAR(200) NOT NULL DEFAULT ''"),
        ("subject", "VARCHAR(255) NOT NULL DEFAULT ''"),
        ("posted", "{integer} NOT NULL DEFAULT 0"),
        ("last_post", "{integer} NOT NULL DEFAULT 0"),
        ("last_post_id", "{integer} NOT NULL DEFAULT 0"),
        ("last_poster", "VARCHAR(200)"),
        ("num_views", "{medium_int} NOT NULL DEFAULT 0"),
        ("num_replies", "{medium_int} NOT NULL DEFAULT 0"),
        ("closed", "{boolean} NOT NULL DEFAULT 0"),
        ("sticky", "{boolean} NOT NULL DEFAULT 0"),
        ("moved_to", "{integer}"),
        ("forum_id", "{integer} NOT NULL DEFAULT 0"),
    ], ("id",)),
    _Table("users", [
        ("id", "{primary_key}"),
        ("group_id", "{integer} NOT NULL DEFAULT 4"),
        ("username", "VARCHAR(200) NOT NULL DEFAULT ''"),
        ("password", "VARCHAR(40) NOT NULL DEFAULT ''"),
        ("email", "VARCHAR(50) NOT NULL DEFAULT ''"),
        ("title", "VARCHAR(50)"),
        ("realname", "VARCHAR(40)"),
        ("url", "VARCHAR(100)"),
        ("jabber", "VARCHAR(75)"),
        ("icq", "VARCHAR(12)"),
        ("msn", "VARCHAR(50)"),
        ("aim", "VARCHAR(30)"),
        ("yahoo", "VARCHAR(30)"),
        ("location", "VARCHAR(30)"),
        ("use_avatar", "{boolean} NOT NULL DEFAULT 0"),
        ("signature", "TEXT"),
        ("disp_topics", "{tiny_int}"),
        ("disp_posts", "{tiny_int}"),
        ("email_setting", "{boolean} NOT NULL DEFAULT 1"),
        ("save_pass", "{boolean} NOT NULL DEFAULT 1"),
        ("notify_with_post", "{boolean} NOT NULL DEFAULT 0"),
        ("show_smilies", "{boolean} NOT NULL DEFAULT 1"),
        ("show_img", "{boolean} NOT NULL DEFAULT 1"),
        ("show_img_sig", "{boolean} NOT NULL DEFAULT 1"),
        ("show_avatars", "{boolean} NOT NULL DEFAULT 1"),
        ("show_sig", "{boolean} NOT NULL DEFAULT 1"),
        ("timezone", "{real} NOT NULL DEFAULT 0"),
        ("language", "VARCHAR(25) NOT NULL DEFAULT 'English'"),
        ("style", "VARCHAR(25) NOT NULL DEFAULT 'Oxygen'"),
        ("num_posts", "{integer} NOT NULL DEFAULT 0"),
        ("last_post", "{integer}"),
        ("registered", "{integer} NOT NULL DEFAULT 0"),
        ("registration_ip", "VARCHAR(15) NOT NULL DEFAULT '0.0.0.0'"),
        ("last_visit", "{integer} NOT NULL DEFAULT 0"),
        ("admin_note", "VARCHAR(30)"),
        ("activate_string", "VARCHAR(50)"),
        ("activate_key", "VARCHAR(8)"),
    ], ("id",)),
]

# (index name, table, columns, unique)
_INDEXES = [
    ("online_user_id_idx", "online", ("user_id",), True),
    ("posts_topic_id_idx", "posts", ("topic_id",), False),
    ("posts_multi_idx", "posts", ("poster_id", "topic_id"), False),
    ("reports_zapped_idx", "reports", ("zapped",), False),
    ("search_matches_word_id_idx", "search_matches", ("word_id",), False),
    ("search_matches_post_id_idx", "search_matches", ("post_id",), False),
    ("topics_forum_id_idx", "topics", ("forum_id",), False),
    ("topics_moved_to_idx", "topics", ("moved_to",), False),
    ("users_registered_idx", "users", ("registered",), False),
    ("users_username_idx", "users", ("username",), False),
    ("search_cache_ident_idx", "search_cache", ("ident",), False),
]

_GROUP_COLUMNS = (
    "g_id", "g_title", "g_user_title", "g_read_board", "g_post_replies",
    "g_post_topics", "g_post_polls", "g_edit_posts", "g_delete_posts",
    "g_delete_topics", "g_set_title", "g_search", "g_search_users",
    "g_edit_subjects_interval", "g_post_flood", "g_search_flood",
)

DEFAULT_GROUPS = [
    (1, "Administrators", "Administrator", 1, 1, 1, 1, 1, 1, 1, 1, 1, 1, 0, 0, 0),
    (2, "Moderators", "Moderator", 1, 1, 1, 1, 1, 1, 1, 1, 1, 1, 0, 0, 0),
    (3, "Guest", None, 1, 0, 0, 0, 0, 0, 0, 0, 1, 1, 0, 0, 0),
    (4, "Members", None, 1, 1, 1, 1, 1, 1, 1, 0, 1, 1, 300, 60, 30),
]

GUEST_GROUP_ID = 3

TABLE_NAMES = sorted([t.name for t in _TABLES] + ["search_words"])


def _literal(value) -> str:
    if value is None:
        return "NULL"
    if isinstance(value, str):
        return "'" + value.replace("'", "''") + "'"
    return str(value)


class SchemaProvisioner:
    """Renders the destination schema for one dialect and table prefix."""

    def __init__(self, dialect: Dialect, prefix: str = ""):
        self.dialect = dialect
        self.caps = dialect.caps
        self.prefix = prefix or ""

    def quote(self, identifier: str) -> str:
        q = self.caps.quote
        return f"{q}{identifier}{q}"

    def table(self, name: str) -> str:
        """Quoted, prefixed table name."""
        return self.quote(self.prefix + name)

    # ========================================================================
    # DDL
    # ========================================================================

    def drop_statements(self) -> list[str]:
        return [f"DROP TABLE IF EXISTS {self.table(name)}" for name in TABLE_NAMES]

    def create_statements(self) -> list[str]:
        """CREATE TABLE and CREATE INDEX statements for the whole schema."""
        statements = []
        for table in _TABLES:
            statements.append(self._create_table(table))
            if table.name == "search_matches":
                statements.append(self._search_words())

        for index_name, table, columns, unique in _INDEXES:
            statements.append(self._create_index(index_name, table, columns, unique))
        if self.dialect is not Dialect.MYSQL:
            # MySQL declares this one inline
            statements.append(self._create_index("search_words_id_idx", "search_words", ("id",), False))
        return statements

    def seed_statements(self) -> list[str]:
        """Default user groups and the guest user."""
        statements = []
        columns = ", ".join(self.quote(c) for c in _GROUP_COLUMNS)
        for row in DEFAULT_GROUPS:
            values = ", ".join(_literal(v) for v in row)
            statements.append(f"INSERT INTO {self.table('groups')} ({columns}) VALUES ({values})")

        user_columns = ", ".join(self.quote(c) for c in ("id", "group_id", "username", "password", "email"))
        statements.append(
            f"INSERT INTO {self.table('users')} ({user_columns}) "
            f"VALUES (1, {GUEST_GROUP_ID}, 'Guest', 'Guest', 'Guest')"
        )
        return statements

    def provision_statements(self) -> list[str]:
        return self.drop_statements() + self.create_statements() + self.seed_statements()

    # ========================================================================
    # DML
    # ========================================================================

    def insert_if_absent(self, table: str, columns: list[str]) -> str:
        """INSERT that leaves an existing row with the same key untouched.

        Values are named bind parameters matching the column names.
        """
        column_list = ", ".join(self.quote(c) for c in columns)
        params = ", ".join(f":{c}" for c in columns)
        return (f"{self.caps.insert_prefix} {self.table(table)} ({column_list}) "
                f"VALUES ({params}){self.caps.insert_suffix}")

    def insert_returning_id(self, table: str, columns: list[str]) -> str:
        column_list = ", ".join(self.quote(c) for c in columns)
        params = ", ".join(f":{c}" for c in columns)
        statement = f"INSERT INTO {self.table(table)} ({column_list}) VALUES ({params})"
        if self.caps.returning_id:
            statement += " RETURNING " + self.quote("id")
        return statement

    # ========================================================================
    # Internals
    # ========================================================================

    def _create_table(self, table: _Table) -> str:
        fields = asdict(self.caps)
        parts = [f"{self.quote(name)} {type_.format(**fields)}" for name, type_ in table.columns]
        if table.primary_key:
            parts.append(f"PRIMARY KEY ({', '.join(self.quote(c) for c in table.primary_key)})")
        suffix = self.caps.memory_suffix if table.memory else self.caps.table_suffix
        return f"CREATE TABLE {self.table(table.name)} ({', '.join(parts)}){suffix}"

    def _create_index(self, name: str, table: str, columns: tuple[str, ...],
                      unique: bool) -> str:
        keyword = self.caps.unique if unique else ""
        column_list = ", ".join(self.quote(c) for c in columns)
        return (f"CREATE {keyword}INDEX {self.quote(self.prefix + name)} "
                f"ON {self.table(table)} ({column_list})")

    def _search_words(self) -> str:
        name = self.table("search_words")
        if self.dialect is Dialect.MYSQL:
            return (f"CREATE TABLE {name} ("
                    f"{self.quote('id')} MEDIUMINT(8) UNSIGNED NOT NULL AUTO_INCREMENT, "
                    f"{self.quote('word')} VARCHAR(20) BINARY NOT NULL DEFAULT '', "
                    f"PRIMARY KEY ({self.quote('word')}), "
                    f"KEY {self.quote(self.prefix + 'search_words_id_idx')} ({self.quote('id')})"
                    f") ENGINE=MyISAM")
        if self.dialect is Dialect.POSTGRESQL:
            return (f"CREATE TABLE {name} ("
                    f"{self.quote('id')} SERIAL, "
                    f"{self.quote('word')} VARCHAR(20) NOT NULL DEFAULT '', "
                    f"PRIMARY KEY ({self.quote('word')}))")
        return (f"CREATE TABLE {name} ("
                f"{self.quote('id')} INTEGER NOT NULL, "
                f"{self.quote('word')} VARCHAR(20) NOT NULL DEFAULT '', "
                f"PRIMARY KEY ({self.quote('id')}), "
                f"UNIQUE ({self.quote('word')}))")
