"""unique file/tag pairs and lookup indexes on file_tags

Revision ID: 0003_add_file_tag_indexes
Revises: 0002_add_trash_and_tag_colors
Create Date: 2025-11-16 00:00:00.000000

"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = '0003_add_file_tag_indexes'
down_revision = '0002_add_trash_and_tag_colors'
branch_labels = None
depends_on = None


def upgrade() -> None:
    # Drop duplicate pairs left behind before the constraint existed
    op.execute(sa.text(
        "DELETE FROM file_tags WHERE id NOT IN "
        "(SELECT keep_id FROM (SELECT MIN(id) AS keep_id FROM file_tags GROUP BY file_id, tag_id) AS keep)"
    ))
    with op.batch_alter_table('file_tags') as batch:
        batch.create_unique_constraint('uq_file_tags_file_tag', ['file_id', 'tag_id'])
    op.create_index('ix_file_tags_file_id', 'file_tags', ['file_id'])
    op.create_index('ix_file_tags_tag_id', 'file_tags', ['tag_id'])


def downgrade() -> None:
    op.drop_index('ix_file_tags_tag_id', table_name='file_tags')
    op.drop_index('ix_file_tags_file_id', table_name='file_tags')
    with op.batch_alter_table('file_tags') as batch:
        batch.drop_constraint('uq_file_tags_file_tag', type_='unique')
