"""initial booking schema

Revision ID: a1c3e5f70b21
Revises:
Create Date: 2026-10-18 09:12:44.518203

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = 'a1c3e5f70b21'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps():
    return [
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()')),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()')),
    ]


def upgrade() -> None:
    """Upgrade schema."""

    # 1. Plans and companies
    op.create_table(
        'plans',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('free_days', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('price', sa.Numeric(10, 2), nullable=False),
        sa.Column('max_professionals', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('permissions', sa.JSON(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
    )

    op.create_table(
        'companies',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('fantasy_name', sa.String(255), nullable=False),
        sa.Column('document', sa.String(20), nullable=True, unique=True),
        sa.Column('email', sa.String(255), nullable=False, unique=True),
        sa.Column('hashed_password', sa.String(255), nullable=False),
        sa.Column('phone', sa.String(20), nullable=True),
        sa.Column('ai_agent_prompt', sa.Text(), nullable=True),
        sa.Column('plan_id', sa.Integer(), sa.ForeignKey('plans.id'), nullable=True),
        sa.Column('mercadopago_enabled', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('mercadopago_access_token', sa.String(500), nullable=True),
        sa.Column('mercadopago_public_key', sa.String(255), nullable=True),
        sa.Column('timezone', sa.String(50), nullable=True),
        sa.Column('is_active', sa.Boolean(), server_default=sa.true()),
        *_timestamps(),
    )
    op.create_index('ix_companies_email', 'companies', ['email'])

    # 2. Catalog
    op.create_table(
        'services',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('company_id', sa.Integer(), sa.ForeignKey('companies.id', ondelete='CASCADE'), nullable=False),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('duration', sa.Integer(), nullable=False),
        sa.Column('price', sa.Numeric(10, 2), nullable=False),
        sa.Column('color', sa.String(7), server_default='#3b82f6'),
        sa.Column('active', sa.Boolean(), server_default=sa.true()),
        *_timestamps(),
    )
    op.create_index('ix_services_company_id', 'services', ['company_id'])
    op.create_index('ix_services_active', 'services', ['active'])

    op.create_table(
        'professionals',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('company_id', sa.Integer(), sa.ForeignKey('companies.id', ondelete='CASCADE'), nullable=False),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('email', sa.String(255), nullable=True),
        sa.Column('phone', sa.String(20), nullable=True),
        sa.Column('specialties', sa.JSON(), nullable=True),
        sa.Column('work_days', sa.JSON(), nullable=True),
        sa.Column('work_start_time', sa.String(5), server_default='09:00'),
        sa.Column('work_end_time', sa.String(5), server_default='18:00'),
        sa.Column('active', sa.Boolean(), server_default=sa.true()),
        *_timestamps(),
    )
    op.create_index('ix_professionals_company_id', 'professionals', ['company_id'])

    # 3. Appointments; the unique slot key blocks double booking under concurrency
    op.create_table(
        'appointments',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('company_id', sa.Integer(), sa.ForeignKey('companies.id', ondelete='CASCADE'), nullable=False),
        sa.Column('service_id', sa.Integer(), sa.ForeignKey('services.id', ondelete='CASCADE'), nullable=False),
        sa.Column('professional_id', sa.Integer(), sa.ForeignKey('professionals.id', ondelete='CASCADE'),
                  nullable=False),
        sa.Column('client_name', sa.String(255), nullable=False),
        sa.Column('client_phone', sa.String(20), nullable=False),
        sa.Column('client_email', sa.String(255), nullable=True),
        sa.Column('appointment_date', sa.Date(), nullable=False),
        sa.Column('appointment_time', sa.String(5), nullable=False),
        sa.Column('duration', sa.Integer(), nullable=False),
        sa.Column('total_price', sa.Numeric(10, 2), nullable=False),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('status', sa.String(20), nullable=False, server_default='scheduled'),
        sa.Column('booking_source', sa.String(20), server_default='manual'),
        sa.Column('slot_key', sa.String(64), nullable=True),
        sa.Column('reminder_sent', sa.Boolean(), server_default=sa.false()),
        *_timestamps(),
        sa.UniqueConstraint('company_id', 'slot_key', name='uq_appointments_company_slot'),
    )
    op.create_index('ix_appointments_company_date', 'appointments', ['company_id', 'appointment_date'])
    op.create_index('ix_appointments_client_phone', 'appointments', ['client_phone'])

    # 4. WhatsApp
    op.create_table(
        'whatsapp_instances',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('company_id', sa.Integer(), sa.ForeignKey('companies.id', ondelete='CASCADE'), nullable=False),
        sa.Column('instance_name', sa.String(255), nullable=False, unique=True),
        sa.Column('status', sa.String(50), server_default='disconnected'),
        sa.Column('api_url', sa.String(500), nullable=True),
        sa.Column('api_key', sa.String(500), nullable=True),
        *_timestamps(),
    )
    op.create_index('ix_whatsapp_instances_company_id', 'whatsapp_instances', ['company_id'])

    op.create_table(
        'conversations',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('company_id', sa.Integer(), sa.ForeignKey('companies.id', ondelete='CASCADE'), nullable=False),
        sa.Column('whatsapp_instance_id', sa.Integer(),
                  sa.ForeignKey('whatsapp_instances.id', ondelete='CASCADE'), nullable=False),
        sa.Column('phone_number', sa.String(20), nullable=False),
        sa.Column('contact_name', sa.String(100), nullable=True),
        sa.Column('message_count', sa.Integer(), server_default='0'),
        sa.Column('last_message_at', sa.DateTime(timezone=True), server_default=sa.text('now()')),
        *_timestamps(),
    )
    op.create_index('ix_conversations_instance_phone', 'conversations', ['whatsapp_instance_id', 'phone_number'])
    op.create_index('ix_conversations_company', 'conversations', ['company_id'])

    op.create_table(
        'messages',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('conversation_id', sa.Integer(), sa.ForeignKey('conversations.id', ondelete='CASCADE'),
                  nullable=False),
        sa.Column('message_id', sa.String(100), nullable=True),
        sa.Column('role', sa.String(20), nullable=False),
        sa.Column('content', sa.Text(), nullable=False),
        sa.Column('message_type', sa.String(50), server_default='text'),
        sa.Column('message_metadata', sa.JSON(), nullable=True),
        sa.Column('delivered', sa.Boolean(), server_default=sa.false()),
        sa.Column('timestamp', sa.DateTime(timezone=True), server_default=sa.text('now()')),
    )
    op.create_index('ix_messages_conversation', 'messages', ['conversation_id', 'id'])
    op.create_index('ix_messages_gateway_id', 'messages', ['message_id'])

    # 5. Payment references
    op.create_table(
        'payment_references',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('reference', sa.String(64), nullable=False),
        sa.Column('company_id', sa.Integer(), sa.ForeignKey('companies.id', ondelete='CASCADE'), nullable=False),
        sa.Column('conversation_id', sa.Integer(), sa.ForeignKey('conversations.id', ondelete='SET NULL'),
                  nullable=True),
        sa.Column('whatsapp_instance_id', sa.Integer(),
                  sa.ForeignKey('whatsapp_instances.id', ondelete='SET NULL'), nullable=True),
        sa.Column('phone', sa.String(20), nullable=False),
        sa.Column('appointment_id', sa.Integer(), sa.ForeignKey('appointments.id', ondelete='SET NULL'),
                  nullable=True),
        sa.Column('booking', sa.JSON(), nullable=True),
        sa.Column('amount', sa.Numeric(10, 2), nullable=False),
        sa.Column('preference_id', sa.String(100), nullable=True),
        sa.Column('checkout_url', sa.String(500), nullable=True),
        sa.Column('payment_id', sa.String(50), nullable=True),
        sa.Column('payment_status', sa.String(30), nullable=True),
        sa.Column('status', sa.String(20), nullable=False, server_default='pending'),
        sa.Column('reconciliation_reason', sa.Text(), nullable=True),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('finalized_at', sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint('company_id', 'reference', name='uq_payment_references_company_reference'),
    )
    op.create_index('ix_payment_references_status_expires', 'payment_references', ['status', 'expires_at'])


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_index('ix_payment_references_status_expires', table_name='payment_references')
    op.drop_table('payment_references')

    op.drop_index('ix_messages_gateway_id', table_name='messages')
    op.drop_index('ix_messages_conversation', table_name='messages')
    op.drop_table('messages')

    op.drop_index('ix_conversations_company', table_name='conversations')
    op.drop_index('ix_conversations_instance_phone', table_name='conversations')
    op.drop_table('conversations')

    op.drop_index('ix_whatsapp_instances_company_id', table_name='whatsapp_instances')
    op.drop_table('whatsapp_instances')

    op.drop_index('ix_appointments_client_phone', table_name='appointments')
    op.drop_index('ix_appointments_company_date', table_name='appointments')
    op.drop_table('appointments')

    op.drop_index('ix_professionals_company_id', table_name='professionals')
    op.drop_table('professionals')

    op.drop_index('ix_services_active', table_name='services')
    op.drop_index('ix_services_company_id', table_name='services')
    op.drop_table('services')

    op.drop_index('ix_companies_email', table_name='companies')
    op.drop_table('companies')
    op.drop_table('plans')
