"""Tests for import-side rewriting of dump string literals."""

from wp_migrate.core.database import MySQLDialect, SQLiteDialect
from wp_migrate.core.dump import StatementRewriter
from wp_migrate.core.serialization import replace

from .conftest import NEW_URL, OLD_URL, widget_value


class TestStatementRewriter:
    """Test suite for StatementRewriter."""

    def test_mysql_escaped_serialized_literal(self):
        """Escaped serialized values are rewritten with correct length prefixes."""
        dialect = MySQLDialect()
        literal = dialect.escape_string(widget_value())
        sql = f"INSERT INTO `wp_options` (`option_value`) VALUES ('{literal}')"

        result = StatementRewriter({OLD_URL: NEW_URL}, dialect).rewrite(sql)

        expected = dialect.escape_string(replace(widget_value(), {OLD_URL: NEW_URL}))
        assert result == f"INSERT INTO `wp_options` (`option_value`) VALUES ('{expected}')"
        assert 's:27:\\"http://new-site.example.org\\"' in result

    def test_sqlite_doubled_quotes(self):
        """Doubled quotes survive the unescape/escape cycle."""
        sql = f"INSERT INTO \"wp_posts\" VALUES (1, 'It''s at {OLD_URL}')"
        result = StatementRewriter({OLD_URL: NEW_URL}, SQLiteDialect()).rewrite(sql)
        assert result == f"INSERT INTO \"wp_posts\" VALUES (1, 'It''s at {NEW_URL}')"

    def test_ddl_is_left_alone(self):
        """Only INSERT and REPLACE statements are rewritten."""
        sql = f"CREATE TABLE t (a TEXT DEFAULT '{OLD_URL}')"
        assert StatementRewriter({OLD_URL: NEW_URL}, MySQLDialect()).rewrite(sql) == sql

    def test_identifiers_are_left_alone(self):
        """Quoted identifiers are copied verbatim."""
        sql = f"REPLACE INTO `{OLD_URL}` VALUES ('{OLD_URL}')"
        result = StatementRewriter({OLD_URL: NEW_URL}, MySQLDialect()).rewrite(sql)
        assert result == f"REPLACE INTO `{OLD_URL}` VALUES ('{NEW_URL}')"

    def test_corrupted_literal_counts_fallback(self):
        """Corrupted serialized literals fall back to raw replacement."""
        sql = f"INSERT INTO t VALUES ('a:1:{{i:0;s:5:\"{OLD_URL}\";}}')"
        rewriter = StatementRewriter({OLD_URL: NEW_URL}, SQLiteDialect())
        result = rewriter.rewrite(sql)

        assert NEW_URL in result
        assert rewriter.fallbacks == 1

    def test_without_matches_returns_input(self):
        """Statements without a match are returned unchanged."""
        sql = "INSERT INTO t VALUES ('nothing here')"
        rewriter = StatementRewriter({OLD_URL: NEW_URL}, MySQLDialect())
        assert rewriter.rewrite(sql) is sql
        assert StatementRewriter({}, MySQLDialect()).rewrite(sql) is sql

    def test_sqlite_nul_spliced_value_is_one_literal(self):
        """A NUL-spliced chain is rewritten as one serialized value."""
        dialect = SQLiteDialect()
        value = f'O:8:"stdClass":1:{{s:6:"\0*\0url";s:{len(OLD_URL)}:"{OLD_URL}";}}'
        sql = f"INSERT INTO \"wp_options\" VALUES (1, {dialect.quote_value(value)}, 'keep')"

        result = StatementRewriter({OLD_URL: NEW_URL}, dialect).rewrite(sql)

        expected = f'O:8:"stdClass":1:{{s:6:"\0*\0url";s:27:"{NEW_URL}";}}'
        assert result == f"INSERT INTO \"wp_options\" VALUES (1, {dialect.quote_value(expected)}, 'keep')"
        assert "\0" not in result

    def test_sqlite_nul_in_unchanged_value_is_copied(self):
        """Spliced values without a match are copied verbatim."""
        dialect = SQLiteDialect()
        sql = f"INSERT INTO t VALUES ({dialect.quote_value('a' + chr(0) + 'b')}, '{OLD_URL}')"
        result = StatementRewriter({OLD_URL: NEW_URL}, dialect).rewrite(sql)
        assert result == f"INSERT INTO t VALUES ('a' || char(0) || 'b', '{NEW_URL}')"
