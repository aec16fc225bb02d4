"""Host record store and options table

Revision ID: 20261017_host_store
Revises:
Create Date: 2026-10-17

The relational invoice tables are not managed here; the schema reconciler
creates and extends them at runtime.
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "20261017_host_store"
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    bind = op.get_bind()
    inspector = sa.inspect(bind)

    if not inspector.has_table("host_records"):
        op.create_table(
            "host_records",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("record_type", sa.String(length=32), nullable=False),
            sa.Column("title", sa.String(length=255), nullable=False),
            sa.Column("status", sa.String(length=20), nullable=False),
            sa.Column("author_id", sa.Integer(), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=False),
            sa.Column("modified_at", sa.DateTime(), nullable=False),
            sa.PrimaryKeyConstraint("id"),
            sqlite_autoincrement=True,
        )

    if not inspector.has_table("host_record_meta"):
        op.create_table(
            "host_record_meta",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("record_id", sa.Integer(), nullable=False),
            sa.Column("meta_key", sa.String(length=191), nullable=False),
            sa.Column("meta_value", sa.Text(), nullable=True),
            sa.ForeignKeyConstraint(["record_id"], ["host_records.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("record_id", "meta_key", name="uq_host_record_meta_record_key"),
            sqlite_autoincrement=True,
        )

    if not inspector.has_table("options"):
        op.create_table(
            "options",
            sa.Column("key", sa.String(length=191), nullable=False),
            sa.Column("value", sa.Text(), nullable=True),
            sa.Column("updated_at", sa.DateTime(), nullable=False),
            sa.PrimaryKeyConstraint("key"),
        )

    inspector = sa.inspect(bind)
    indexes = {ix["name"] for ix in inspector.get_indexes("host_records")}
    with op.batch_alter_table("host_records", schema=None) as batch_op:
        if "ix_host_records_record_type" not in indexes:
            batch_op.create_index("ix_host_records_record_type", ["record_type"], unique=False)
        if "ix_host_records_type_created" not in indexes:
            batch_op.create_index("ix_host_records_type_created", ["record_type", "created_at"], unique=False)

    indexes = {ix["name"] for ix in inspector.get_indexes("host_record_meta")}
    with op.batch_alter_table("host_record_meta", schema=None) as batch_op:
        if "ix_host_record_meta_record_id" not in indexes:
            batch_op.create_index("ix_host_record_meta_record_id", ["record_id"], unique=False)
        if "ix_host_record_meta_key_record" not in indexes:
            batch_op.create_index("ix_host_record_meta_key_record", ["meta_key", "record_id"], unique=False)


def downgrade():
    op.drop_table("options")
    op.drop_table("host_record_meta")
    op.drop_table("host_records")
