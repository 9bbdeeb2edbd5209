# alembic/versions/001_initial.py

"""Daily performance and consolidated period tables

Revision ID: 001
Revises:
Create Date: 2026-10-01
"""
from alembic import op
import sqlalchemy as sa

# revision identifiers
revision = '001'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    # One row per scope and date, per-currency blocks in payload
    op.create_table('daily_performance',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('scope_key', sa.String(length=200), nullable=False),
        sa.Column('date', sa.Date(), nullable=False),
        sa.Column('payload', sa.JSON(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.text('now()')),
        sa.Column('updated_at', sa.DateTime(), nullable=False, server_default=sa.text('now()')),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('scope_key', 'date', name='uq_daily_performance_scope_date')
    )
    op.create_index('idx_daily_performance_scope_date', 'daily_performance', ['scope_key', 'date'])

    # Month / year checkpoints
    op.create_table('consolidated_period',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('scope_key', sa.String(length=200), nullable=False),
        sa.Column('period_type', sa.String(length=10), nullable=False),
        sa.Column('period_key', sa.String(length=7), nullable=False),
        sa.Column('start_date', sa.Date(), nullable=False),
        sa.Column('end_date', sa.Date(), nullable=False),
        sa.Column('docs_count', sa.Integer(), nullable=False),
        sa.Column('version', sa.Integer(), nullable=False),
        sa.Column('payload', sa.JSON(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False, server_default=sa.text('now()')),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('scope_key', 'period_type', 'period_key', name='uq_consolidated_period_key')
    )
    op.create_index('idx_consolidated_period_scope_type', 'consolidated_period', ['scope_key', 'period_type'])


def downgrade():
    op.drop_index('idx_consolidated_period_scope_type', table_name='consolidated_period')
    op.drop_table('consolidated_period')
    op.drop_index('idx_daily_performance_scope_date', table_name='daily_performance')
    op.drop_table('daily_performance')
