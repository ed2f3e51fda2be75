"""
Add bookmarks table with row-level security.

Each principal may only select, insert and delete its own rows. Supabase
evaluates these policies for PostgREST requests and for Realtime change
events, so the client never filters by owner.

Revision ID: 5c1e9a7d2b40
Revises:
Create Date: 2026-02-14 10:12:31.482911
"""
from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "5c1e9a7d2b40"
down_revision: str | Sequence[str] | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

POLICIES = {
    "bookmarks_select_own": "FOR SELECT TO authenticated USING (auth.uid() = user_id)",
    "bookmarks_insert_own": "FOR INSERT TO authenticated WITH CHECK (auth.uid() = user_id)",
    "bookmarks_delete_own": "FOR DELETE TO authenticated USING (auth.uid() = user_id)",
}


def _is_postgres() -> bool:
    return op.get_bind().dialect.name == "postgresql"


def upgrade() -> None:
    """Upgrade schema."""
    if _is_postgres():
        op.execute(
            """
            CREATE TABLE bookmarks (
                id uuid PRIMARY KEY DEFAULT gen_random_uuid(),
                user_id uuid NOT NULL DEFAULT auth.uid()
                    REFERENCES auth.users (id) ON DELETE CASCADE,
                title text NOT NULL CHECK (length(trim(title)) > 0),
                url text NOT NULL CHECK (length(trim(url)) > 0),
                created_at timestamptz NOT NULL DEFAULT now()
            )
            """,
        )
        op.create_index("ix_bookmarks_user_id", "bookmarks", ["user_id"])
        op.create_index("ix_bookmarks_created_at", "bookmarks", ["created_at"])
        op.execute("ALTER TABLE bookmarks ENABLE ROW LEVEL SECURITY")
        for name, clause in POLICIES.items():
            op.execute(f"CREATE POLICY {name} ON bookmarks {clause}")
        op.execute("ALTER PUBLICATION supabase_realtime ADD TABLE bookmarks")
        return

    # Other dialects (local SQLite) have no policies; owner scoping is done in queries
    op.create_table(
        "bookmarks",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("user_id", sa.String(length=36), nullable=False),
        sa.Column("title", sa.Text(), nullable=False),
        sa.Column("url", sa.Text(), nullable=False),
        sa.Column(
            "created_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"),
            nullable=False,
        ),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_bookmarks_user_id", "bookmarks", ["user_id"])
    op.create_index("ix_bookmarks_created_at", "bookmarks", ["created_at"])


def downgrade() -> None:
    """Downgrade schema."""
    if _is_postgres():
        op.execute("ALTER PUBLICATION supabase_realtime DROP TABLE bookmarks")
        for name in POLICIES:
            op.execute(f"DROP POLICY IF EXISTS {name} ON bookmarks")
    op.drop_index("ix_bookmarks_created_at", table_name="bookmarks")
    op.drop_index("ix_bookmarks_user_id", table_name="bookmarks")
    op.drop_table("bookmarks")
