"""create wiki tables

Revision ID: 3f1a9c2e7b40
Revises:
Create Date: 2026-10-19

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from pgvector.sqlalchemy import Vector
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = '3f1a9c2e7b40'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

wiki_source = postgresql.ENUM(
    'osrs', 'nlab', 'wikipedia', 'vintage_machinery', 'wikiart',
    name='wiki_source', create_type=False,
)
article_status = postgresql.ENUM('synced', 'diverged', 'local_only', name='article_status', create_type=False)
edit_status = postgresql.ENUM('pending', 'approved', 'rejected', name='edit_status', create_type=False)
cross_link_relationship = postgresql.ENUM(
    'same_topic', 'related', 'see_also', name='cross_link_relationship', create_type=False,
)
sync_status = postgresql.ENUM('running', 'completed', 'failed', 'interrupted', name='sync_status', create_type=False)

ENUMS = (wiki_source, article_status, edit_status, cross_link_relationship, sync_status)


def upgrade() -> None:
    op.execute('CREATE EXTENSION IF NOT EXISTS pg_trgm')
    op.execute('CREATE EXTENSION IF NOT EXISTS vector')

    bind = op.get_bind()
    for enum_type in ENUMS:
        enum_type.create(bind, checkfirst=True)

    op.create_table(
        'articles',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('source', wiki_source, nullable=False),
        sa.Column('slug', sa.String(), nullable=False),
        sa.Column('title', sa.String(), nullable=False),
        sa.Column('extracted_text', sa.Text(), nullable=True),
        sa.Column('rendered_html_key', sa.String(), nullable=True),
        sa.Column('raw_content_key', sa.String(), nullable=True),
        sa.Column('upstream_url', sa.String(), nullable=True),
        sa.Column('upstream_hash', sa.String(length=64), nullable=True),
        sa.Column('status', article_status, nullable=False),
        sa.Column('license', sa.String(), nullable=True),
        sa.Column('metadata', sa.JSON(), nullable=False),
        sa.Column('embedding', Vector(768), nullable=True),
        sa.Column('synced_at', sa.DateTime(), nullable=True),
        sa.Column('embedded_at', sa.DateTime(), nullable=True),
        sa.Column('cross_links_checked_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('source', 'slug', name='uq_articles_source_slug'),
    )
    op.create_index('ix_articles_source', 'articles', ['source'], unique=False)
    op.create_index('ix_articles_status', 'articles', ['status'], unique=False)
    op.execute(
        "CREATE INDEX ix_articles_fts ON articles USING gin "
        "(to_tsvector('english', coalesce(title, '') || ' ' || coalesce(extracted_text, '')))"
    )
    op.execute('CREATE INDEX ix_articles_title_trgm ON articles USING gin (title gin_trgm_ops)')

    op.create_table(
        'wiki_redirects',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('source', wiki_source, nullable=False),
        sa.Column('from_slug', sa.String(), nullable=False),
        sa.Column('to_slug', sa.String(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('source', 'from_slug', name='uq_wiki_redirects_source_from'),
    )

    op.create_table(
        'revisions',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('article_id', sa.Integer(), nullable=False),
        sa.Column('content_hash', sa.String(length=64), nullable=False),
        sa.Column('rendered_html_key', sa.String(), nullable=True),
        sa.Column('raw_content_key', sa.String(), nullable=True),
        sa.Column('upstream_revision_id', sa.String(), nullable=True),
        sa.Column('editor', sa.String(), nullable=False),
        sa.Column('comment', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['article_id'], ['articles.id'], ),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(op.f('ix_revisions_article_id'), 'revisions', ['article_id'], unique=False)

    op.create_table(
        'pending_edits',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('article_id', sa.Integer(), nullable=False),
        sa.Column('suggested_content', sa.Text(), nullable=False),
        sa.Column('reason', sa.Text(), nullable=True),
        sa.Column('submitter_email', sa.String(), nullable=True),
        sa.Column('submitter_ip', sa.String(), nullable=False),
        sa.Column('status', edit_status, nullable=False),
        sa.Column('reviewer_note', sa.Text(), nullable=True),
        sa.Column('reviewed_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['article_id'], ['articles.id'], ),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(op.f('ix_pending_edits_article_id'), 'pending_edits', ['article_id'], unique=False)
    op.create_index('ix_pending_edits_ip_status', 'pending_edits', ['submitter_ip', 'status'], unique=False)
    op.create_index('ix_pending_edits_ip_created', 'pending_edits', ['submitter_ip', 'created_at'], unique=False)

    op.create_table(
        'cross_links',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('source_article_id', sa.Integer(), nullable=False),
        sa.Column('target_article_id', sa.Integer(), nullable=False),
        sa.Column('relationship', cross_link_relationship, nullable=False),
        sa.Column('confidence', sa.Float(), nullable=False),
        sa.Column('auto_detected', sa.Boolean(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['source_article_id'], ['articles.id'], ),
        sa.ForeignKeyConstraint(['target_article_id'], ['articles.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('source_article_id', 'target_article_id', name='uq_cross_links_pair'),
        sa.CheckConstraint('confidence >= 0 AND confidence <= 1', name='ck_cross_links_confidence'),
    )
    op.create_index(op.f('ix_cross_links_target_article_id'), 'cross_links', ['target_article_id'], unique=False)

    op.create_table(
        'sync_runs',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('source', wiki_source, nullable=False),
        sa.Column('strategy', sa.String(), nullable=False),
        sa.Column('resume_from', sa.String(), nullable=True),
        sa.Column('checkpoint', sa.String(), nullable=True),
        sa.Column('changes_since', sa.DateTime(), nullable=True),
        sa.Column('page_limit', sa.Integer(), nullable=True),
        sa.Column('pages_processed', sa.Integer(), nullable=False),
        sa.Column('pages_created', sa.Integer(), nullable=False),
        sa.Column('pages_updated', sa.Integer(), nullable=False),
        sa.Column('pages_unchanged', sa.Integer(), nullable=False),
        sa.Column('pages_diverged', sa.Integer(), nullable=False),
        sa.Column('pages_failed', sa.Integer(), nullable=False),
        sa.Column('errors', sa.JSON(), nullable=False),
        sa.Column('status', sync_status, nullable=False),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('started_at', sa.DateTime(), nullable=False),
        sa.Column('completed_at', sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_sync_runs_source_status', 'sync_runs', ['source', 'status'], unique=False)
    op.create_index('ix_sync_runs_completed_at', 'sync_runs', ['completed_at'], unique=False)


def downgrade() -> None:
    op.drop_index('ix_sync_runs_completed_at', table_name='sync_runs')
    op.drop_index('ix_sync_runs_source_status', table_name='sync_runs')
    op.drop_table('sync_runs')
    op.drop_index(op.f('ix_cross_links_target_article_id'), table_name='cross_links')
    op.drop_table('cross_links')
    op.drop_index('ix_pending_edits_ip_created', table_name='pending_edits')
    op.drop_index('ix_pending_edits_ip_status', table_name='pending_edits')
    op.drop_index(op.f('ix_pending_edits_article_id'), table_name='pending_edits')
    op.drop_table('pending_edits')
    op.drop_index(op.f('ix_revisions_article_id'), table_name='revisions')
    op.drop_table('revisions')
    op.drop_table('wiki_redirects')
    op.execute('DROP INDEX IF EXISTS ix_articles_title_trgm')
    op.execute('DROP INDEX IF EXISTS ix_articles_fts')
    op.drop_index('ix_articles_status', table_name='articles')
    op.drop_index('ix_articles_source', table_name='articles')
    op.drop_table('articles')

    bind = op.get_bind()
    for enum_type in reversed(ENUMS):
        enum_type.drop(bind, checkfirst=True)
