"""Tests for dialect capabilities and schema rendering."""
import pytest

from punparse.storage.dialects import TABLE_NAMES, Dialect, SchemaProvisioner


class TestDialect:
    """Test dialect lookup."""

    @pytest.mark.parametrize("name, expected", [
        ("sqlite", Dialect.SQLITE),
        ("mysql", Dialect.MYSQL),
        ("mysql+pymysql", Dialect.MYSQL),
        ("mariadb", Dialect.MYSQL),
        ("postgresql", Dialect.POSTGRESQL),
        ("postgres", Dialect.POSTGRESQL),
        ("PostgreSQL", Dialect.POSTGRESQL),
    ])
    def test_from_name(self, name, expected):
        assert Dialect.from_name(name) is expected

    def test_unsupported(self):
        with pytest.raises(ValueError):
            Dialect.from_name("oracle")


class TestSchemaProvisioner:
    """Test DDL and DML rendering per dialect."""

    def test_every_table_created(self):
        statements = SchemaProvisioner(Dialect.SQLITE).create_statements()
        created = [s for s in statements if s.startswith("CREATE TABLE")]
        assert len(created) == len(TABLE_NAMES) == 17

    def test_mysql_types_and_engine(self):
        statements = SchemaProvisioner(Dialect.MYSQL, "pun_").create_statements()
        posts = next(s for s in statements if s.startswith("CREATE TABLE `pun_posts`"))
        online = next(s for s in statements if s.startswith("CREATE TABLE `pun_online`"))

        assert "`id` INT(10) UNSIGNED NOT NULL AUTO_INCREMENT" in posts
        assert "`hide_smilies` TINYINT(1) NOT NULL DEFAULT 0" in posts
        assert posts.endswith(" ENGINE=MyISAM")
        assert online.endswith(" ENGINE=MEMORY")
        assert "CREATE UNIQUE INDEX `pun_online_user_id_idx`" in "\n".join(statements)

    def test_search_words_index_only_outside_mysql(self):
        mysql = "\n".join(SchemaProvisioner(Dialect.MYSQL).create_statements())
        postgres = "\n".join(SchemaProvisioner(Dialect.POSTGRESQL).create_statements())

        assert mysql.count("search_words_id_idx") == 1
        assert "KEY `search_words_id_idx`" in mysql
        assert 'CREATE INDEX "search_words_id_idx"' in postgres

    def test_postgresql_serial_keys(self):
        statements = SchemaProvisioner(Dialect.POSTGRESQL).create_statements()
        topics = next(s for s in statements if s.startswith('CREATE TABLE "topics"'))
        assert '"id" SERIAL' in topics
        assert "ENGINE" not in topics

    @pytest.mark.parametrize("dialect, prefix, suffix", [
        (Dialect.SQLITE, "INSERT OR IGNORE INTO", ""),
        (Dialect.MYSQL, "INSERT IGNORE INTO", ""),
        (Dialect.POSTGRESQL, "INSERT INTO", " ON CONFLICT DO NOTHING"),
    ])
    def test_insert_if_absent(self, dialect, prefix, suffix):
        statement = SchemaProvisioner(dialect).insert_if_absent("users", ["id", "username"])
        assert statement.startswith(prefix + " ")
        assert statement.endswith(f"VALUES (:id, :username){suffix}")

    def test_returning_id_only_for_postgresql(self):
        assert SchemaProvisioner(Dialect.POSTGRESQL).insert_returning_id(
            "categories", ["cat_name"]).endswith('RETURNING "id"')
        assert "RETURNING" not in SchemaProvisioner(Dialect.SQLITE).insert_returning_id(
            "categories", ["cat_name"])

    def test_seed_rows(self):
        seeds = SchemaProvisioner(Dialect.SQLITE, "pun_").seed_statements()
        assert len(seeds) == 5
        assert all('"pun_' in s for s in seeds)
        assert "'Guest'" in seeds[-1]

    def test_drop_before_create(self):
        statements = SchemaProvisioner(Dialect.SQLITE).provision_statements()
        first_create = next(i for i, s in enumerate(statements) if s.startswith("CREATE"))
        assert all(s.startswith("DROP TABLE IF EXISTS") for s in statements[:first_create])
        assert first_create == len(TABLE_NAMES)
