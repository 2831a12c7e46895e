"""Tests for database URL normalization."""

from jobwatch.core.database import prepare_database_url


class TestPrepareDatabaseUrl:
    def test_sqlite_untouched(self):
        url = "sqlite+aiosqlite:///:memory:"

        assert prepare_database_url(url) == (url, {})

    def test_local_postgres_without_ssl(self):
        url, connect_args = prepare_database_url(
            "postgresql+asyncpg://u:p@localhost:5432/jobwatch?sslmode=disable"
        )

        assert url == "postgresql+asyncpg://u:p@localhost:5432/jobwatch"
        assert connect_args == {}

    def test_remote_postgres_gets_ssl(self):
        """Should strip libpq-only params and pass SSL through connect_args."""
        url, connect_args = prepare_database_url(
            "postgresql+asyncpg://u:p@db.example.com/jobwatch"
            "?sslmode=require&channel_binding=require&application_name=jobwatch"
        )

        assert url == "postgresql+asyncpg://u:p@db.example.com/jobwatch?application_name=jobwatch"
        assert "ssl" in connect_args
