"""Create users, campaigns and the proposal workflow tables

This migration adds:
1. users and campaigns
2. proposals (approval + payment workflow state)
3. proposal_milestones
4. payments and payment_transactions
5. campaign_contents
6. invoices
7. audit_entries (append-only)

Revision ID: create_workflow_tables_001
Revises:
Create Date: 2026-10-19
"""

from alembic import op
import sqlalchemy as sa

# revision identifiers
revision = 'create_workflow_tables_001'
down_revision = None
branch_labels = None
depends_on = None


def _enum(name, *values):
    return sa.Enum(*values, name=name)


def upgrade():
    # 1. Users and campaigns
    op.create_table('users',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('email', sa.String(255), nullable=False, unique=True, index=True),
        sa.Column('name', sa.String(255)),
        sa.Column('user_type', _enum('usertype', 'brand', 'influencer', 'admin'), server_default='brand'),
        sa.Column('created_at', sa.DateTime, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime, server_default=sa.func.now()),
    )

    op.create_table('campaigns',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('brand_id', sa.String(36), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('title', sa.String(255), nullable=False),
        sa.Column('description', sa.Text),
        sa.Column('budget', sa.Integer, server_default='0'),
        sa.Column('currency', sa.String(3), server_default='INR'),
        sa.Column('payment_structure', sa.JSON),
        sa.Column('status', _enum('campaignstatusdb', 'draft', 'active', 'completed', 'cancelled'), server_default='active'),
        sa.Column('created_at', sa.DateTime, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime, server_default=sa.func.now()),
    )

    # 2. Proposals
    op.create_table('proposals',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('campaign_id', sa.String(36), sa.ForeignKey('campaigns.id', ondelete='CASCADE'), nullable=False, index=True),
        sa.Column('influencer_id', sa.String(36), sa.ForeignKey('users.id'), nullable=False, index=True),
        sa.Column('proposal_text', sa.Text),
        sa.Column('proposed_compensation', sa.Numeric(12, 2), nullable=False, server_default='0'),
        sa.Column('status', _enum('approvalstatusdb', 'pending', 'approved', 'rejected'), nullable=False, server_default='pending'),
        sa.Column('payment_status', _enum(
            'paymentworkflowstatusdb', 'none', 'upfront_payment_pending', 'work_in_progress',
            'deliverables_submitted', 'completion_payment_pending', 'paid'
        ), nullable=False, server_default='none'),
        sa.Column('brand_feedback', sa.Text),
        sa.Column('progress_percentage', sa.Integer, server_default='0'),
        sa.Column('approved_at', sa.DateTime),
        sa.Column('rejected_at', sa.DateTime),
        sa.Column('work_started_at', sa.DateTime),
        sa.Column('deliverables_submitted_at', sa.DateTime),
        sa.Column('completed_at', sa.DateTime),
        sa.Column('created_at', sa.DateTime, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime, server_default=sa.func.now()),
    )

    # 3. Milestones
    op.create_table('proposal_milestones',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('proposal_id', sa.String(36), sa.ForeignKey('proposals.id', ondelete='CASCADE'), nullable=False, index=True),
        sa.Column('title', sa.String(100), nullable=False),
        sa.Column('description', sa.Text),
        sa.Column('milestone_order', sa.Integer, nullable=False),
        sa.Column('status', _enum('milestonestatusdb', 'pending', 'in_progress', 'completed', 'manual_intervention'),
                  nullable=False, server_default='pending'),
        sa.Column('retry_count', sa.Integer, nullable=False, server_default='0'),
        sa.Column('max_retries', sa.Integer, nullable=False, server_default='3'),
        sa.Column('requires_url', sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column('live_url', sa.String(2048)),
        sa.Column('last_error', sa.Text),
        sa.Column('metadata_json', sa.JSON),
        sa.Column('started_at', sa.DateTime),
        sa.Column('completed_by', sa.String(36), sa.ForeignKey('users.id'), nullable=True),
        sa.Column('completed_at', sa.DateTime),
        sa.Column('created_at', sa.DateTime, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime, server_default=sa.func.now()),
        sa.UniqueConstraint('proposal_id', 'milestone_order', name='uq_milestone_proposal_order'),
    )

    # 4. Payments
    op.create_table('payments',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('proposal_id', sa.String(36), sa.ForeignKey('proposals.id', ondelete='CASCADE'), nullable=False, index=True),
        sa.Column('campaign_id', sa.String(36), sa.ForeignKey('campaigns.id'), nullable=False),
        sa.Column('brand_id', sa.String(36), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('influencer_id', sa.String(36), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('payment_type', _enum('paymenttypedb', 'upfront', 'completion', 'bonus'), nullable=False),
        sa.Column('attempt_number', sa.Integer, nullable=False, server_default='1'),
        # "{proposal_id}:{payment_type}" while not failed, NULL once failed
        sa.Column('active_key', sa.String(100), unique=True, nullable=True),
        sa.Column('amount', sa.Numeric(12, 2), nullable=False),
        sa.Column('platform_fee', sa.Numeric(12, 2), nullable=False, server_default='0'),
        sa.Column('net_amount', sa.Numeric(12, 2), nullable=False, server_default='0'),
        sa.Column('currency', sa.String(3), server_default='INR'),
        sa.Column('status', _enum('paymentstatusdb', 'created', 'processing', 'completed', 'failed'),
                  nullable=False, server_default='created'),
        sa.Column('gateway_order_id', sa.String(100), index=True),
        sa.Column('gateway_payment_id', sa.String(100), unique=True, nullable=True),
        sa.Column('failure_reason', sa.Text),
        sa.Column('notes', sa.Text),
        sa.Column('paid_at', sa.DateTime),
        sa.Column('created_at', sa.DateTime, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime, server_default=sa.func.now()),
    )

    op.create_table('payment_transactions',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('payment_id', sa.String(36), sa.ForeignKey('payments.id', ondelete='CASCADE'), nullable=False, index=True),
        sa.Column('amount', sa.Numeric(12, 2), nullable=False),
        sa.Column('gateway_payment_id', sa.String(100)),
        sa.Column('source', sa.String(20), nullable=False),
        sa.Column('status', _enum('paymenttransactionstatusdb', 'success', 'failed'), nullable=False),
        sa.Column('gateway_response', sa.JSON),
        sa.Column('processed_at', sa.DateTime, server_default=sa.func.now()),
    )

    # 5. Content
    op.create_table('campaign_contents',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('proposal_id', sa.String(36), sa.ForeignKey('proposals.id', ondelete='CASCADE'), nullable=False, index=True),
        sa.Column('campaign_id', sa.String(36), sa.ForeignKey('campaigns.id'), nullable=False),
        sa.Column('influencer_id', sa.String(36), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('title', sa.String(255), nullable=False),
        sa.Column('description', sa.Text),
        sa.Column('platform', sa.String(50), nullable=False),
        sa.Column('content_type', sa.String(50), nullable=False),
        sa.Column('content_url', sa.String(2048)),
        sa.Column('live_post_url', sa.String(2048)),
        sa.Column('status', _enum('contentstatusdb', 'submitted', 'approved', 'rejected', 'published'),
                  nullable=False, server_default='submitted'),
        sa.Column('brand_feedback', sa.Text),
        sa.Column('submitted_at', sa.DateTime, server_default=sa.func.now()),
        sa.Column('approved_at', sa.DateTime),
        sa.Column('rejected_at', sa.DateTime),
        sa.Column('published_at', sa.DateTime),
        sa.Column('published_by', sa.String(36), sa.ForeignKey('users.id'), nullable=True),
        sa.Column('created_at', sa.DateTime, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime, server_default=sa.func.now()),
    )

    # 6. Invoices
    op.create_table('invoices',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('invoice_number', sa.String(50), nullable=False, unique=True),
        sa.Column('campaign_id', sa.String(36), sa.ForeignKey('campaigns.id'), nullable=False),
        sa.Column('proposal_id', sa.String(36), sa.ForeignKey('proposals.id', ondelete='CASCADE'), nullable=False, unique=True),
        sa.Column('subtotal', sa.Numeric(12, 2), nullable=False),
        sa.Column('tax_amount', sa.Numeric(12, 2), nullable=False),
        sa.Column('total_amount', sa.Numeric(12, 2), nullable=False),
        sa.Column('paid_amount', sa.Numeric(12, 2), nullable=False, server_default='0'),
        sa.Column('currency', sa.String(3), server_default='INR'),
        sa.Column('status', _enum('invoicestatusdb', 'sent', 'partially_paid', 'paid'), nullable=False, server_default='sent'),
        sa.Column('paid_at', sa.DateTime),
        sa.Column('created_at', sa.DateTime, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime, server_default=sa.func.now()),
    )

    # 7. Audit trail
    op.create_table('audit_entries',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('timestamp', sa.DateTime, nullable=False),
        sa.Column('actor_id', sa.String(36), nullable=True),
        sa.Column('is_system_action', sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column('action', sa.String(100), nullable=False, index=True),
        sa.Column('description', sa.Text),
        sa.Column('correlation_id', sa.String(100), nullable=False, index=True),
        sa.Column('amount_affected', sa.Numeric(12, 2)),
        sa.Column('proposal_id', sa.String(36), index=True),
        sa.Column('payment_id', sa.String(36)),
        sa.Column('milestone_id', sa.String(36)),
        sa.Column('before_state', sa.JSON),
        sa.Column('after_state', sa.JSON),
        sa.Column('error_message', sa.Text),
        sa.Column('metadata_json', sa.JSON),
    )


def downgrade():
    for table in (
        'audit_entries', 'invoices', 'campaign_contents', 'payment_transactions',
        'payments', 'proposal_milestones', 'proposals', 'campaigns', 'users',
    ):
        op.drop_table(table)

    bind = op.get_bind()
    if bind.dialect.name == 'postgresql':
        for enum_name in (
            'invoicestatusdb', 'contentstatusdb', 'paymenttransactionstatusdb', 'paymentstatusdb',
            'paymenttypedb', 'milestonestatusdb', 'paymentworkflowstatusdb', 'approvalstatusdb',
            'campaignstatusdb', 'usertype',
        ):
            op.execute(f"DROP TYPE IF EXISTS {enum_name}")
