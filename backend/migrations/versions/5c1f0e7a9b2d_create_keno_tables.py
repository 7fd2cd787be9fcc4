"""create keno round, ticket, account, stats and history tables

Revision ID: 5c1f0e7a9b2d
Revises:
Create Date: 2026-10-19 09:00:00

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '5c1f0e7a9b2d'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        'account',
        sa.Column('user_id', sa.String(length=64), primary_key=True),
        sa.Column('balance', sa.BigInteger(), nullable=False, server_default='0'),
        sa.CheckConstraint('balance >= 0', name='ck_account_balance_non_negative'),
    )
    op.create_table(
        'keno_round',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=False),
        sa.Column('status', sa.String(length=16), nullable=False),
        sa.Column('cutoff_time', sa.Float(), nullable=False),
        sa.Column('bets_closed', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('ticket_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('winning_numbers', sa.Text(), nullable=True),
        sa.Column('revealed_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('last_activity_time', sa.Float(), nullable=False),
        sa.Column('draw_trials', sa.Integer(), nullable=True),
        sa.Column('projected_payout', sa.BigInteger(), nullable=True),
        sa.Column('settled', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('created_at', sa.Float(), nullable=False),
        sa.Column('finished_at', sa.Float(), nullable=True),
    )
    op.create_index('ix_keno_round_status', 'keno_round', ['status'])
    op.create_table(
        'ticket',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('user_id', sa.String(length=64), sa.ForeignKey('account.user_id'), nullable=False),
        sa.Column('round_id', sa.Integer(), sa.ForeignKey('keno_round.id'), nullable=False),
        sa.Column('numbers', sa.Text(), nullable=False),
        sa.Column('stake', sa.BigInteger(), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False),
        sa.Column('hits', sa.Integer(), nullable=True),
        sa.Column('win_amount', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('bonus_amount', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('created_at', sa.Float(), nullable=False),
        sa.Column('settled_at', sa.Float(), nullable=True),
    )
    op.create_index('ix_ticket_user_id', 'ticket', ['user_id'])
    op.create_index('ix_ticket_round_id', 'ticket', ['round_id'])
    op.create_index('ix_ticket_status', 'ticket', ['status'])
    op.create_table(
        'aggregate_stats',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=False),
        sa.Column('total_staked', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('total_paid_out', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('jackpot_pool', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('tickets_settled', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('rounds_finished', sa.Integer(), nullable=False, server_default='0'),
    )
    op.create_table(
        'round_history',
        sa.Column('round_id', sa.Integer(), primary_key=True, autoincrement=False),
        sa.Column('winning_numbers', sa.Text(), nullable=False),
        sa.Column('finished_at', sa.Float(), nullable=False),
    )
    op.execute("INSERT INTO aggregate_stats (id) VALUES (1)")


def downgrade():
    op.drop_table('round_history')
    op.drop_table('aggregate_stats')
    op.drop_index('ix_ticket_status', table_name='ticket')
    op.drop_index('ix_ticket_round_id', table_name='ticket')
    op.drop_index('ix_ticket_user_id', table_name='ticket')
    op.drop_table('ticket')
    op.drop_index('ix_keno_round_status', table_name='keno_round')
    op.drop_table('keno_round')
    op.drop_table('account')
