"""documents table with change notifications

Revision ID: 3f1c2a9d7b10
Revises:
Create Date: 2026-10-19 09:12:41.208113

"""

from collections.abc import Sequence

import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "3f1c2a9d7b10"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    op.create_table(
        "documents",
        sa.Column(
            "id",
            sa.Text(),
            nullable=False,
            server_default=sa.text("gen_random_uuid()::text"),
        ),
        sa.Column("collection", sa.Text(), nullable=False),
        sa.Column(
            "data",
            postgresql.JSONB(),
            nullable=False,
            server_default=sa.text("'{}'::jsonb"),
        ),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.text("now()")),
        sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=sa.text("now()")),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("idx_documents_collection", "documents", ["collection"])
    op.create_index("idx_documents_data", "documents", ["data"], postgresql_using="gin")

    op.execute(
        """
        CREATE FUNCTION notify_document_change() RETURNS trigger AS $$
        BEGIN
            PERFORM pg_notify('document_changes', COALESCE(NEW.collection, OLD.collection));
            RETURN NULL;
        END;
        $$ LANGUAGE plpgsql
        """
    )
    op.execute(
        """
        CREATE TRIGGER documents_changed
        AFTER INSERT OR UPDATE OR DELETE ON documents
        FOR EACH ROW EXECUTE FUNCTION notify_document_change()
        """
    )


def downgrade() -> None:
    op.execute("DROP TRIGGER IF EXISTS documents_changed ON documents")
    op.execute("DROP FUNCTION IF EXISTS notify_document_change()")
    op.drop_index("idx_documents_data", table_name="documents")
    op.drop_index("idx_documents_collection", table_name="documents")
    op.drop_table("documents")
