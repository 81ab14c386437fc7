"""Initial schema: user tables (columns, rows, cells) and pages.

Revision ID: 001
Revises:
Create Date: 2026-10-18
"""

from alembic import op

# revision identifiers, used by Alembic.
revision = "001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    # Ids are generated client-side; user_id comes from the identity provider (no users table)
    op.execute("""
        CREATE TABLE database_tables (
            id UUID PRIMARY KEY,
            user_id UUID NOT NULL,
            name TEXT NOT NULL DEFAULT 'Untitled Table',
            seq BIGINT GENERATED ALWAYS AS IDENTITY,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
        );
    """)
    op.execute("CREATE INDEX idx_database_tables_user ON database_tables(user_id, created_at DESC);")

    op.execute("""
        CREATE TABLE database_columns (
            id UUID PRIMARY KEY,
            table_id UUID NOT NULL REFERENCES database_tables(id) ON DELETE CASCADE,
            user_id UUID NOT NULL,
            name TEXT NOT NULL,
            type TEXT NOT NULL DEFAULT 'text',
            metadata JSONB NOT NULL DEFAULT '{}',
            "order" INTEGER NOT NULL DEFAULT 0,
            seq BIGINT GENERATED ALWAYS AS IDENTITY,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now()
        );
    """)
    op.execute('CREATE INDEX idx_database_columns_table ON database_columns(table_id, "order");')

    op.execute("""
        CREATE TABLE database_rows (
            id UUID PRIMARY KEY,
            table_id UUID NOT NULL REFERENCES database_tables(id) ON DELETE CASCADE,
            user_id UUID NOT NULL,
            seq BIGINT GENERATED ALWAYS AS IDENTITY,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now()
        );
    """)
    op.execute("CREATE INDEX idx_database_rows_table ON database_rows(table_id, created_at);")

    op.execute("""
        CREATE TABLE database_cells (
            id UUID PRIMARY KEY,
            row_id UUID NOT NULL REFERENCES database_rows(id) ON DELETE CASCADE,
            column_id UUID NOT NULL REFERENCES database_columns(id) ON DELETE CASCADE,
            user_id UUID NOT NULL,
            content TEXT NOT NULL DEFAULT '',
            updated_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            UNIQUE (row_id, column_id)
        );
    """)
    op.execute("CREATE INDEX idx_database_cells_column ON database_cells(column_id);")

    op.execute("""
        CREATE TABLE pages (
            id UUID PRIMARY KEY,
            user_id UUID NOT NULL,
            name TEXT NOT NULL DEFAULT 'Untitled',
            slug TEXT NOT NULL DEFAULT '',
            is_published BOOLEAN NOT NULL DEFAULT false,
            content JSONB NOT NULL DEFAULT '[]',
            created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
        );
    """)
    op.execute("CREATE INDEX idx_pages_user ON pages(user_id, updated_at DESC);")
    op.execute("CREATE INDEX idx_pages_published_slug ON pages(slug, updated_at DESC) WHERE is_published;")


def downgrade():
    op.execute("DROP TABLE IF EXISTS pages CASCADE;")
    op.execute("DROP TABLE IF EXISTS database_cells CASCADE;")
    op.execute("DROP TABLE IF EXISTS database_rows CASCADE;")
    op.execute("DROP TABLE IF EXISTS database_columns CASCADE;")
    op.execute("DROP TABLE IF EXISTS database_tables CASCADE;")
