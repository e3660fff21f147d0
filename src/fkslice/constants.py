DEFAULT_REQUIRED_ROWS = 2
"""Default number of rows drawn per table in the seed phase."""

DEFAULT_MAX_ROWS = 8
"""Default hard cap on rows per table."""

DEFAULT_SEED = 0
"""Default key for deterministic seed sampling."""

DEFAULT_SCHEMA = "public"
"""Schema assumed for unqualified table names in config files."""

MAX_ROWS_HEADROOM = 2
"""max_rows below required_rows + this value leaves little room for FK pulls."""

DEFAULT_POSTGRESQL_PORT = 5432
"""Default port number for PostgreSQL connections."""

DEFAULT_CURSOR_ITERSIZE = 500
"""Rows fetched per round trip by server-side row cursors."""

SYSTEM_SCHEMAS = frozenset({"pg_catalog", "information_schema", "pg_toast"})
"""Schemas never included in the dependency list."""

SUPABASE_EXCLUDED_SCHEMAS = (
    "extensions",
    "graphql",
    "auth",
    "graphql_public",
    "pgsodium",
    "pgbouncer",
    "storage",
    "realtime",
    "vault",
)
"""Platform schemas skipped when sampling a Supabase-hosted database."""

SUPABASE_HOST_SUFFIXES = (".supabase.co", ".supabase.com")
"""Hostname suffixes identifying Supabase-hosted databases."""

MAX_SIMILAR_SUGGESTIONS = 3
"""Maximum number of similar suggestions to show in error messages."""
