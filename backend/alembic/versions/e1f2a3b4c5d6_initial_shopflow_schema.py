"""Initial shopflow schema

Revision ID: e1f2a3b4c5d6
Revises:
Create Date: 2026-10-19 12:00:00.000000

pipeline_runs, catalog_items and marketing_content. The unique, nullable
`pipeline_runs.active_slot` column admits at most one queued/running run.
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = 'e1f2a3b4c5d6'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        'pipeline_runs',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('run_id', sa.String(64), nullable=False),
        sa.Column('type', sa.String(20), nullable=False, server_default='full'),
        sa.Column('status', sa.String(20), nullable=False, server_default='queued'),
        sa.Column('triggered_by', sa.String(20), nullable=False, server_default='manual'),
        sa.Column('active_slot', sa.String(10), nullable=True),
        sa.Column('started_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('duration_ms', sa.Integer(), nullable=True),
        sa.Column('config', postgresql.JSONB(), nullable=True),
        sa.Column('logs', postgresql.JSONB(), nullable=True),
        sa.Column('results', postgresql.JSONB(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.UniqueConstraint('active_slot', name='uq_pipeline_runs_active_slot'),
    )
    op.create_index('ix_pipeline_runs_run_id', 'pipeline_runs', ['run_id'], unique=True)
    op.create_index('ix_pipeline_runs_status', 'pipeline_runs', ['status'])

    op.create_table(
        'catalog_items',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('title', sa.String(300), nullable=False),
        sa.Column('category', sa.String(100), nullable=True),
        sa.Column('source', sa.String(50), nullable=False, server_default=''),
        sa.Column('source_id', sa.String(100), nullable=True),
        sa.Column('sales_proxy', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('image_url', sa.String(1000), nullable=True),
        sa.Column('cost', sa.Float(), nullable=True),
        sa.Column('selling_price', sa.Float(), nullable=False, server_default='0'),
        sa.Column('compare_price', sa.Float(), nullable=True),
        sa.Column('margin_percent', sa.Float(), nullable=False, server_default='0'),
        sa.Column('supplier_url', sa.String(1000), nullable=False, server_default=''),
        sa.Column('supplier_ref', sa.String(100), nullable=False, server_default=''),
        sa.Column('description', sa.Text(), nullable=False, server_default=''),
        sa.Column('short_description', sa.String(500), nullable=False, server_default=''),
        sa.Column('seo_title', sa.String(120), nullable=False, server_default=''),
        sa.Column('seo_description', sa.String(300), nullable=False, server_default=''),
        sa.Column('tags', postgresql.JSONB(), nullable=True),
        sa.Column('status', sa.String(20), nullable=True, server_default='discovered'),
        sa.Column('listing_id', sa.String(64), nullable=True),
        sa.Column('listed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('discovered_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('research_score', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('approved', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('approved_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('rejection_reason', sa.String(200), nullable=False, server_default=''),
        sa.Column('run_id', sa.String(64), nullable=False, server_default=''),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index('ix_catalog_items_title', 'catalog_items', ['title'])
    op.create_index('ix_catalog_items_category', 'catalog_items', ['category'])
    op.create_index('ix_catalog_items_source_id', 'catalog_items', ['source_id'])
    op.create_index('ix_catalog_items_status', 'catalog_items', ['status'])
    op.create_index('ix_catalog_items_listing_id', 'catalog_items', ['listing_id'])
    op.create_index('ix_catalog_items_approved', 'catalog_items', ['approved'])

    op.create_table(
        'marketing_content',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('catalog_item_id', sa.Integer(), sa.ForeignKey('catalog_items.id'), nullable=False),
        sa.Column('product_title', sa.String(300), nullable=False),
        sa.Column('product_image', sa.String(1000), nullable=True),
        sa.Column('product_price', sa.Float(), nullable=True),
        sa.Column('product_category', sa.String(100), nullable=True),
        sa.Column('status', sa.String(20), nullable=False, server_default='generating'),
        sa.Column('caption', postgresql.JSONB(), nullable=True),
        sa.Column('image', postgresql.JSONB(), nullable=True),
        sa.Column('generation_cost', sa.Float(), nullable=False, server_default='0'),
        sa.Column('post_results', postgresql.JSONB(), nullable=True),
        sa.Column('approved_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('rejected_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('rejection_reason', sa.String(500), nullable=True),
        sa.Column('posted_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('pipeline_run_id', sa.String(64), nullable=True),
        sa.Column('regeneration_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('regenerated_from', sa.Integer(), sa.ForeignKey('marketing_content.id'), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index('ix_marketing_content_catalog_item_id', 'marketing_content', ['catalog_item_id'])
    op.create_index('ix_marketing_content_status', 'marketing_content', ['status'])


def downgrade() -> None:
    op.drop_index('ix_marketing_content_status', table_name='marketing_content')
    op.drop_index('ix_marketing_content_catalog_item_id', table_name='marketing_content')
    op.drop_table('marketing_content')
    for column in ('approved', 'listing_id', 'status', 'source_id', 'category', 'title'):
        op.drop_index(f'ix_catalog_items_{column}', table_name='catalog_items')
    op.drop_table('catalog_items')
    op.drop_index('ix_pipeline_runs_status', table_name='pipeline_runs')
    op.drop_index('ix_pipeline_runs_run_id', table_name='pipeline_runs')
    op.drop_table('pipeline_runs')
