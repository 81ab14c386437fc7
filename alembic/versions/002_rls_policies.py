"""Row-level security on every user-owned table.

Each policy scopes rows to current_setting('app.user_id'), set per
transaction by user_conn(). When the setting is empty (system_conn) the
policy lets everything through.

FORCE makes the policies apply to the table owner as well.

Revision ID: 002
Revises: 001
Create Date: 2026-10-18
"""

from alembic import op

# revision identifiers, used by Alembic.
revision = "002"
down_revision = "001"
branch_labels = None
depends_on = None

_TABLES = ("database_tables", "database_columns", "database_rows", "database_cells", "pages")

# The empty-setting test must gate the ::uuid cast; ''::uuid raises
_OWNER_CHECK = """
    CASE
        WHEN NULLIF(current_setting('app.user_id', true), '') IS NULL THEN true
        ELSE user_id = current_setting('app.user_id', true)::uuid
    END
"""


def upgrade():
    for table in _TABLES:
        op.execute(f"ALTER TABLE {table} ENABLE ROW LEVEL SECURITY")
        op.execute(f"ALTER TABLE {table} FORCE ROW LEVEL SECURITY")
        op.execute(f"""
            CREATE POLICY {table}_owner
            ON {table}
            FOR ALL
            USING ({_OWNER_CHECK})
            WITH CHECK ({_OWNER_CHECK});
        """)


def downgrade():
    for table in _TABLES:
        op.execute(f"DROP POLICY IF EXISTS {table}_owner ON {table}")
        op.execute(f"ALTER TABLE {table} NO FORCE ROW LEVEL SECURITY")
        op.execute(f"ALTER TABLE {table} DISABLE ROW LEVEL SECURITY")
