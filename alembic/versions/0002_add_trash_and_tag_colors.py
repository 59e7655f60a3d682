"""add file size, soft-delete timestamp, tag color and parent

Revision ID: 0002_add_trash_and_tag_colors
Revises: 0001_initial
Create Date: 2025-11-09 00:00:00.000000

"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = '0002_add_trash_and_tag_colors'
down_revision = '0001_initial'
branch_labels = None
depends_on = None


def upgrade() -> None:
    with op.batch_alter_table('files') as batch:
        batch.add_column(sa.Column('size', sa.Integer, nullable=True))
        batch.add_column(sa.Column('deleted_at', sa.DateTime, nullable=True))
    op.create_index('ix_files_deleted_at', 'files', ['deleted_at'])

    with op.batch_alter_table('tags') as batch:
        batch.add_column(sa.Column('color', sa.String(7), nullable=True))
        batch.add_column(sa.Column('parent_id', sa.Integer, nullable=True))
        batch.create_foreign_key('fk_tags_parent_id', 'tags', ['parent_id'], ['id'])


def downgrade() -> None:
    with op.batch_alter_table('tags') as batch:
        batch.drop_constraint('fk_tags_parent_id', type_='foreignkey')
        batch.drop_column('parent_id')
        batch.drop_column('color')

    op.drop_index('ix_files_deleted_at', table_name='files')
    with op.batch_alter_table('files') as batch:
        batch.drop_column('deleted_at')
        batch.drop_column('size')
