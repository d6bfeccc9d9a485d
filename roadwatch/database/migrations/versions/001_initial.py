"""
Initial migration - Create reporters, incidents and confirmations

Revision ID: 001_initial
Create Date: 2026-10-18
"""

from alembic import op
import sqlalchemy as sa

# Revision identifiers
revision = '001_initial'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    """Create all tables."""

    # Create reporters table
    op.create_table(
        'reporters',
        sa.Column('id', sa.String(64), primary_key=True),
        sa.Column('username', sa.String(100)),
        sa.Column('trust_score', sa.Integer(), nullable=False, server_default='50'),
        sa.Column('reports_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('accurate_reports', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('language', sa.String(5), nullable=False, server_default='fr'),
        sa.Column('emergency_contacts', sa.JSON(), nullable=False, server_default='[]'),
        sa.Column('subscription_tier', sa.String(20), nullable=False, server_default='free'),
        sa.Column('subscribed_alerts', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.func.now()),
        sa.CheckConstraint('trust_score >= 0 AND trust_score <= 100', name='ck_reporter_trust_range'),
        sa.CheckConstraint('reports_count >= 0', name='ck_reporter_reports_count'),
        sa.CheckConstraint('accurate_reports >= 0', name='ck_reporter_accurate_reports'),
    )

    # Create incidents table
    op.create_table(
        'incidents',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('type', sa.String(20), nullable=False),
        sa.Column('description', sa.Text()),
        sa.Column('severity', sa.Integer(), nullable=False, server_default='3'),
        sa.Column('latitude', sa.Float(), nullable=False),
        sa.Column('longitude', sa.Float(), nullable=False),
        sa.Column('address', sa.String(255)),
        sa.Column('status', sa.String(10), nullable=False, server_default='pending'),
        sa.Column('confirmations', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('reporter_id', sa.String(64), sa.ForeignKey('reporters.id')),
        sa.Column('media_ref', sa.String(500)),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column('expires_at', sa.DateTime(), nullable=False),
        sa.CheckConstraint('severity >= 1 AND severity <= 5', name='ck_incident_severity'),
        sa.CheckConstraint('confirmations >= 0', name='ck_incident_confirmations'),
        sa.CheckConstraint(
            "status IN ('pending', 'verified', 'expired', 'false')",
            name='ck_incident_status',
        ),
        sa.CheckConstraint(
            "status != 'verified' OR confirmations >= 2",
            name='ck_incident_verified_confirmations',
        ),
        sa.CheckConstraint('expires_at > created_at', name='ck_incident_expiry'),
    )

    op.create_index('idx_incident_status', 'incidents', ['status'])
    op.create_index('idx_incident_created_at', 'incidents', ['created_at'])
    op.create_index('idx_incident_location', 'incidents', ['latitude', 'longitude'])
    op.create_index('idx_incident_type_status', 'incidents', ['type', 'status'])

    # Create confirmations table (one vote per reporter per incident)
    op.create_table(
        'confirmations',
        sa.Column(
            'incident_id', sa.String(36),
            sa.ForeignKey('incidents.id', ondelete='CASCADE'), primary_key=True,
        ),
        sa.Column(
            'reporter_id', sa.String(64),
            sa.ForeignKey('reporters.id', ondelete='CASCADE'), primary_key=True,
        ),
        sa.Column('vote', sa.String(10), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint("vote IN ('confirm', 'deny')", name='ck_confirmation_vote'),
    )

    op.create_index('idx_confirmation_incident', 'confirmations', ['incident_id'])


def downgrade() -> None:
    """Drop all tables."""
    op.drop_table('confirmations')
    op.drop_table('incidents')
    op.drop_table('reporters')
