"""Baseline migration - clients, access control, messaging, and billing

Revision ID: 0001_baseline
Revises:
Create Date: 2026-01-15

Creates the full LeadRelay schema on PostgreSQL. Built-in role templates
are created afterwards with `python -m scripts.seed_roles`.
"""
from typing import Sequence, Union

from alembic import op


# revision identifiers, used by Alembic.
revision: str = '0001_baseline'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create all tables."""

    op.execute('CREATE EXTENSION IF NOT EXISTS pgcrypto')  # For gen_random_uuid()

    # ==========================================================================
    # Tenants & people
    # ==========================================================================
    op.execute('''
        CREATE TABLE clients (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            business_name VARCHAR(255) NOT NULL,
            owner_name VARCHAR(255) NOT NULL,
            email VARCHAR(255) UNIQUE NOT NULL,
            phone VARCHAR(20),
            timezone VARCHAR(50) NOT NULL DEFAULT 'America/Edmonton',
            google_business_url VARCHAR(500),
            twilio_number VARCHAR(20),
            status VARCHAR(20) NOT NULL DEFAULT 'pending',
            messages_sent_this_month INTEGER NOT NULL DEFAULT 0,
            monthly_message_limit INTEGER DEFAULT 10000,
            weekly_summary_enabled BOOLEAN NOT NULL DEFAULT true,
            weekly_summary_day INTEGER NOT NULL DEFAULT 1,
            weekly_summary_time VARCHAR(5) DEFAULT '08:00',
            last_weekly_summary_at TIMESTAMPTZ,
            missed_call_sms_enabled BOOLEAN NOT NULL DEFAULT true,
            ai_response_enabled BOOLEAN NOT NULL DEFAULT true,
            ai_agent_enabled BOOLEAN NOT NULL DEFAULT false,
            auto_escalation_enabled BOOLEAN NOT NULL DEFAULT true,
            voice_enabled BOOLEAN NOT NULL DEFAULT false,
            flows_enabled BOOLEAN NOT NULL DEFAULT true,
            lead_scoring_enabled BOOLEAN NOT NULL DEFAULT true,
            reputation_monitoring_enabled BOOLEAN NOT NULL DEFAULT false,
            auto_review_response_enabled BOOLEAN NOT NULL DEFAULT false,
            calendar_sync_enabled BOOLEAN NOT NULL DEFAULT false,
            hot_transfer_enabled BOOLEAN NOT NULL DEFAULT false,
            payment_links_enabled BOOLEAN NOT NULL DEFAULT false,
            photo_requests_enabled BOOLEAN NOT NULL DEFAULT true,
            multi_language_enabled BOOLEAN NOT NULL DEFAULT false,
            notification_email BOOLEAN NOT NULL DEFAULT true,
            notification_sms BOOLEAN NOT NULL DEFAULT true,
            google_access_token TEXT,
            google_refresh_token TEXT,
            google_token_expires_at TIMESTAMPTZ,
            voice_id VARCHAR(100),
            created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
        )
    ''')
    op.execute('CREATE INDEX ix_clients_twilio_number ON clients(twilio_number)')

    op.execute('''
        CREATE TABLE people (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            name VARCHAR(255) NOT NULL,
            email VARCHAR(255) UNIQUE,
            phone VARCHAR(20) UNIQUE,
            last_login_at TIMESTAMPTZ,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
        )
    ''')

    # ==========================================================================
    # Authentication
    # ==========================================================================
    op.execute('''
        CREATE TABLE users (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            email VARCHAR(255) UNIQUE NOT NULL,
            name VARCHAR(255),
            is_admin BOOLEAN NOT NULL DEFAULT false,
            person_id UUID REFERENCES people(id) ON DELETE SET NULL,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now()
        )
    ''')

    op.execute('''
        CREATE TABLE auth_sessions (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            token_hash VARCHAR(64) UNIQUE NOT NULL,
            user_id UUID NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            expires_at TIMESTAMPTZ NOT NULL,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now()
        )
    ''')
    op.execute('CREATE INDEX ix_auth_sessions_user_id ON auth_sessions(user_id)')

    op.execute('''
        CREATE TABLE verification_tokens (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            identifier VARCHAR(255) NOT NULL,
            token_hash VARCHAR(64) UNIQUE NOT NULL,
            expires_at TIMESTAMPTZ NOT NULL
        )
    ''')
    op.execute('CREATE INDEX ix_verification_tokens_identifier ON verification_tokens(identifier)')

    op.execute('''
        CREATE TABLE magic_link_tokens (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            client_id UUID NOT NULL REFERENCES clients(id) ON DELETE CASCADE,
            token_hash VARCHAR(64) UNIQUE NOT NULL,
            expires_at TIMESTAMPTZ NOT NULL,
            used_at TIMESTAMPTZ,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now()
        )
    ''')

    op.execute('''
        CREATE TABLE otp_codes (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            person_id UUID REFERENCES people(id) ON DELETE CASCADE,
            phone VARCHAR(20),
            email VARCHAR(255),
            code VARCHAR(6) NOT NULL,
            attempts INTEGER NOT NULL DEFAULT 0,
            max_attempts INTEGER NOT NULL DEFAULT 5,
            verified_at TIMESTAMPTZ,
            expires_at TIMESTAMPTZ NOT NULL,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now()
        )
    ''')
    op.execute('CREATE INDEX idx_otp_codes_phone_created ON otp_codes(phone, created_at)')
    op.execute('CREATE INDEX idx_otp_codes_email_created ON otp_codes(email, created_at)')

    # ==========================================================================
    # Access control
    # ==========================================================================
    op.execute('''
        CREATE TABLE role_templates (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            name VARCHAR(100) NOT NULL,
            slug VARCHAR(100) UNIQUE NOT NULL,
            description TEXT,
            scope VARCHAR(20) NOT NULL,
            permissions JSON NOT NULL DEFAULT '[]',
            is_built_in BOOLEAN NOT NULL DEFAULT false,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
        )
    ''')

    op.execute('''
        CREATE TABLE client_memberships (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            person_id UUID NOT NULL REFERENCES people(id) ON DELETE CASCADE,
            client_id UUID NOT NULL REFERENCES clients(id) ON DELETE CASCADE,
            role_template_id UUID NOT NULL REFERENCES role_templates(id),
            permission_overrides JSON,
            is_owner BOOLEAN NOT NULL DEFAULT false,
            receive_escalations BOOLEAN NOT NULL DEFAULT false,
            receive_hot_transfers BOOLEAN NOT NULL DEFAULT false,
            priority INTEGER NOT NULL DEFAULT 0,
            is_active BOOLEAN NOT NULL DEFAULT true,
            session_version INTEGER NOT NULL DEFAULT 1,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            CONSTRAINT uq_client_memberships_person_client UNIQUE (person_id, client_id)
        )
    ''')
    op.execute('CREATE INDEX ix_client_memberships_client_id ON client_memberships(client_id)')
    # At most one owner per client
    op.execute('''
        CREATE UNIQUE INDEX uq_client_memberships_owner
        ON client_memberships(client_id) WHERE is_owner
    ''')

    op.execute('''
        CREATE TABLE agency_memberships (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            person_id UUID UNIQUE NOT NULL REFERENCES people(id) ON DELETE CASCADE,
            role_template_id UUID NOT NULL REFERENCES role_templates(id),
            client_scope VARCHAR(20) NOT NULL DEFAULT 'all',
            is_active BOOLEAN NOT NULL DEFAULT true,
            session_version INTEGER NOT NULL DEFAULT 1,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
        )
    ''')

    op.execute('''
        CREATE TABLE agency_client_assignments (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            agency_membership_id UUID NOT NULL REFERENCES agency_memberships(id) ON DELETE CASCADE,
            client_id UUID NOT NULL REFERENCES clients(id) ON DELETE CASCADE,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            CONSTRAINT uq_agency_assignment UNIQUE (agency_membership_id, client_id)
        )
    ''')

    op.execute('''
        CREATE TABLE audit_log (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            person_id UUID REFERENCES people(id) ON DELETE SET NULL,
            client_id UUID REFERENCES clients(id) ON DELETE SET NULL,
            action VARCHAR(100) NOT NULL,
            resource_type VARCHAR(50),
            resource_id UUID,
            metadata JSON,
            ip_address VARCHAR(45),
            user_agent VARCHAR(500),
            created_at TIMESTAMPTZ NOT NULL DEFAULT now()
        )
    ''')
    op.execute('CREATE INDEX idx_audit_log_client_created ON audit_log(client_id, created_at)')

    # ==========================================================================
    # Leads & messaging
    # ==========================================================================
    op.execute('''
        CREATE TABLE leads (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            client_id UUID NOT NULL REFERENCES clients(id) ON DELETE CASCADE,
            name VARCHAR(255),
            phone VARCHAR(20) NOT NULL,
            email VARCHAR(255),
            source VARCHAR(50),
            status VARCHAR(30) NOT NULL DEFAULT 'new',
            stage VARCHAR(30) NOT NULL DEFAULT 'new',
            stage_changed_at TIMESTAMPTZ,
            action_required BOOLEAN NOT NULL DEFAULT false,
            action_required_reason VARCHAR(255),
            opted_out BOOLEAN NOT NULL DEFAULT false,
            stripe_customer_id VARCHAR(100),
            score INTEGER,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            CONSTRAINT uq_leads_client_phone UNIQUE (client_id, phone)
        )
    ''')
    op.execute('CREATE INDEX ix_leads_client_id ON leads(client_id)')

    op.execute('''
        CREATE TABLE conversations (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            lead_id UUID NOT NULL REFERENCES leads(id) ON DELETE CASCADE,
            client_id UUID NOT NULL REFERENCES clients(id) ON DELETE CASCADE,
            direction VARCHAR(10) NOT NULL,
            message_type VARCHAR(30) NOT NULL,
            content TEXT NOT NULL,
            twilio_sid VARCHAR(64),
            created_at TIMESTAMPTZ NOT NULL DEFAULT now()
        )
    ''')
    op.execute('CREATE INDEX ix_conversations_lead_id ON conversations(lead_id)')
    op.execute('CREATE INDEX ix_conversations_twilio_sid ON conversations(twilio_sid)')

    op.execute('''
        CREATE TABLE scheduled_messages (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            lead_id UUID NOT NULL REFERENCES leads(id) ON DELETE CASCADE,
            client_id UUID NOT NULL REFERENCES clients(id) ON DELETE CASCADE,
            sequence_type VARCHAR(50),
            content TEXT NOT NULL,
            send_at TIMESTAMPTZ NOT NULL,
            sent BOOLEAN NOT NULL DEFAULT false,
            sent_at TIMESTAMPTZ,
            cancelled BOOLEAN NOT NULL DEFAULT false,
            cancelled_at TIMESTAMPTZ,
            cancelled_reason VARCHAR(255),
            created_at TIMESTAMPTZ NOT NULL DEFAULT now()
        )
    ''')
    op.execute('CREATE INDEX idx_scheduled_messages_due ON scheduled_messages(sent, cancelled, send_at)')

    op.execute('''
        CREATE TABLE blocked_numbers (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            client_id UUID NOT NULL REFERENCES clients(id) ON DELETE CASCADE,
            phone VARCHAR(20) NOT NULL,
            reason VARCHAR(255),
            created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            CONSTRAINT uq_blocked_numbers_client_phone UNIQUE (client_id, phone)
        )
    ''')

    op.execute('''
        CREATE TABLE daily_stats (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            client_id UUID NOT NULL REFERENCES clients(id) ON DELETE CASCADE,
            date DATE NOT NULL,
            messages_sent INTEGER NOT NULL DEFAULT 0,
            missed_calls_captured INTEGER NOT NULL DEFAULT 0,
            forms_responded INTEGER NOT NULL DEFAULT 0,
            appointments_reminded INTEGER NOT NULL DEFAULT 0,
            estimates_followed_up INTEGER NOT NULL DEFAULT 0,
            reviews_requested INTEGER NOT NULL DEFAULT 0,
            payments_reminded INTEGER NOT NULL DEFAULT 0,
            conversations_started INTEGER NOT NULL DEFAULT 0,
            CONSTRAINT uq_daily_stats_client_date UNIQUE (client_id, date)
        )
    ''')

    op.execute('''
        CREATE TABLE appointments (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            client_id UUID NOT NULL REFERENCES clients(id) ON DELETE CASCADE,
            lead_id UUID NOT NULL REFERENCES leads(id) ON DELETE CASCADE,
            appointment_date DATE NOT NULL,
            appointment_time VARCHAR(5) NOT NULL,
            status VARCHAR(20) NOT NULL DEFAULT 'scheduled',
            created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
        )
    ''')

    op.execute('''
        CREATE TABLE nps_surveys (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            client_id UUID NOT NULL REFERENCES clients(id) ON DELETE CASCADE,
            lead_id UUID NOT NULL REFERENCES leads(id) ON DELETE CASCADE,
            appointment_id UUID REFERENCES appointments(id) ON DELETE SET NULL,
            sent_via VARCHAR(10) NOT NULL DEFAULT 'sms',
            status VARCHAR(20) NOT NULL DEFAULT 'sent',
            score INTEGER,
            comment TEXT,
            sent_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            responded_at TIMESTAMPTZ
        )
    ''')

    # ==========================================================================
    # Escalations
    # ==========================================================================
    op.execute('''
        CREATE TABLE escalation_rules (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            client_id UUID NOT NULL REFERENCES clients(id) ON DELETE CASCADE,
            name VARCHAR(100) NOT NULL,
            conditions JSON NOT NULL DEFAULT '{}',
            action JSON NOT NULL DEFAULT '{}',
            priority INTEGER NOT NULL DEFAULT 100,
            enabled BOOLEAN NOT NULL DEFAULT true,
            times_triggered INTEGER NOT NULL DEFAULT 0,
            last_triggered_at TIMESTAMPTZ,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now()
        )
    ''')

    op.execute('''
        CREATE TABLE escalation_queue (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            lead_id UUID NOT NULL REFERENCES leads(id) ON DELETE CASCADE,
            client_id UUID NOT NULL REFERENCES clients(id) ON DELETE CASCADE,
            reason VARCHAR(100) NOT NULL,
            reason_details TEXT,
            trigger_message_id UUID,
            priority INTEGER NOT NULL DEFAULT 3,
            conversation_summary TEXT,
            suggested_response TEXT,
            status VARCHAR(20) NOT NULL DEFAULT 'pending',
            assigned_to UUID REFERENCES client_memberships(id) ON DELETE SET NULL,
            assigned_at TIMESTAMPTZ,
            first_response_at TIMESTAMPTZ,
            resolved_at TIMESTAMPTZ,
            resolved_by UUID REFERENCES client_memberships(id) ON DELETE SET NULL,
            resolution VARCHAR(30),
            resolution_notes TEXT,
            return_to_ai BOOLEAN NOT NULL DEFAULT true,
            sla_deadline TIMESTAMPTZ,
            sla_breach BOOLEAN NOT NULL DEFAULT false,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
        )
    ''')
    op.execute('CREATE INDEX idx_escalation_queue_client_status ON escalation_queue(client_id, status)')

    # ==========================================================================
    # Agency <-> client communication
    # ==========================================================================
    op.execute('''
        CREATE TABLE agency_messages (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            client_id UUID NOT NULL REFERENCES clients(id) ON DELETE CASCADE,
            direction VARCHAR(10) NOT NULL,
            channel VARCHAR(10) NOT NULL DEFAULT 'sms',
            content TEXT NOT NULL,
            subject VARCHAR(255),
            category VARCHAR(30) NOT NULL,
            prompt_type VARCHAR(50),
            action_payload JSON,
            action_status VARCHAR(20),
            client_reply TEXT,
            in_reply_to UUID,
            twilio_sid VARCHAR(64),
            delivered BOOLEAN NOT NULL DEFAULT false,
            expires_at TIMESTAMPTZ,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now()
        )
    ''')
    op.execute('CREATE INDEX ix_agency_messages_client_id ON agency_messages(client_id)')

    op.execute('''
        CREATE TABLE notification_preferences (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            client_id UUID UNIQUE NOT NULL REFERENCES clients(id) ON DELETE CASCADE,
            email_daily_summary BOOLEAN NOT NULL DEFAULT false,
            quiet_hours_enabled BOOLEAN NOT NULL DEFAULT false,
            quiet_hours_start VARCHAR(5) NOT NULL DEFAULT '22:00',
            quiet_hours_end VARCHAR(5) NOT NULL DEFAULT '07:00',
            urgent_override BOOLEAN NOT NULL DEFAULT true
        )
    ''')

    op.execute('''
        CREATE TABLE system_settings (
            key VARCHAR(100) PRIMARY KEY,
            value TEXT,
            updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
        )
    ''')

    # ==========================================================================
    # Billing
    # ==========================================================================
    op.execute('''
        CREATE TABLE plans (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            name VARCHAR(100) NOT NULL,
            slug VARCHAR(50) UNIQUE NOT NULL,
            price_monthly INTEGER NOT NULL,
            features JSON,
            trial_days INTEGER NOT NULL DEFAULT 14,
            stripe_price_id VARCHAR(100),
            is_active BOOLEAN NOT NULL DEFAULT true,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now()
        )
    ''')

    op.execute('''
        CREATE TABLE subscriptions (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            client_id UUID UNIQUE NOT NULL REFERENCES clients(id) ON DELETE CASCADE,
            plan_id UUID REFERENCES plans(id),
            status VARCHAR(20) NOT NULL,
            stripe_subscription_id VARCHAR(100) UNIQUE,
            stripe_customer_id VARCHAR(100),
            current_period_end TIMESTAMPTZ,
            cancel_at_period_end BOOLEAN NOT NULL DEFAULT false,
            canceled_at TIMESTAMPTZ,
            coupon_code VARCHAR(50),
            created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
        )
    ''')

    op.execute('''
        CREATE TABLE billing_events (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            client_id UUID NOT NULL REFERENCES clients(id) ON DELETE CASCADE,
            event_type VARCHAR(50) NOT NULL,
            description TEXT,
            stripe_event_id VARCHAR(100) UNIQUE,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now()
        )
    ''')

    op.execute('''
        CREATE TABLE coupons (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            code VARCHAR(50) UNIQUE NOT NULL,
            name VARCHAR(100),
            discount_type VARCHAR(20) NOT NULL,
            discount_value INTEGER NOT NULL,
            duration VARCHAR(20),
            duration_months INTEGER,
            max_redemptions INTEGER,
            times_redeemed INTEGER NOT NULL DEFAULT 0,
            valid_from TIMESTAMPTZ,
            valid_until TIMESTAMPTZ,
            applicable_plans JSON,
            first_time_only BOOLEAN NOT NULL DEFAULT false,
            is_active BOOLEAN NOT NULL DEFAULT true,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now()
        )
    ''')

    op.execute('''
        CREATE TABLE invoices (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            client_id UUID NOT NULL REFERENCES clients(id) ON DELETE CASCADE,
            lead_id UUID NOT NULL REFERENCES leads(id) ON DELETE CASCADE,
            invoice_number VARCHAR(50),
            description TEXT,
            total_amount INTEGER NOT NULL,
            paid_amount INTEGER NOT NULL DEFAULT 0,
            remaining_amount INTEGER NOT NULL,
            status VARCHAR(20) NOT NULL DEFAULT 'pending',
            due_date DATE,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
        )
    ''')

    op.execute('''
        CREATE TABLE payments (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            client_id UUID NOT NULL REFERENCES clients(id) ON DELETE CASCADE,
            lead_id UUID NOT NULL REFERENCES leads(id) ON DELETE CASCADE,
            invoice_id UUID REFERENCES invoices(id) ON DELETE SET NULL,
            type VARCHAR(20) NOT NULL DEFAULT 'full',
            amount INTEGER NOT NULL,
            description TEXT,
            stripe_payment_link_id VARCHAR(100),
            stripe_payment_link_url VARCHAR(500),
            stripe_payment_intent_id VARCHAR(100),
            status VARCHAR(20) NOT NULL DEFAULT 'pending',
            paid_at TIMESTAMPTZ,
            link_expires_at TIMESTAMPTZ,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now()
        )
    ''')
    op.execute('CREATE INDEX ix_payments_stripe_payment_link_id ON payments(stripe_payment_link_id)')

    # ==========================================================================
    # Telephony & reviews
    # ==========================================================================
    op.execute('''
        CREATE TABLE active_calls (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            client_id UUID NOT NULL REFERENCES clients(id) ON DELETE CASCADE,
            call_sid VARCHAR(64) UNIQUE NOT NULL,
            caller_phone VARCHAR(20) NOT NULL,
            twilio_number VARCHAR(20) NOT NULL,
            received_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            processed BOOLEAN NOT NULL DEFAULT false,
            processed_at TIMESTAMPTZ
        )
    ''')

    op.execute('''
        CREATE TABLE reviews (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            client_id UUID NOT NULL REFERENCES clients(id) ON DELETE CASCADE,
            source VARCHAR(20) NOT NULL,
            external_id VARCHAR(500),
            author_name VARCHAR(255),
            rating INTEGER NOT NULL,
            text TEXT,
            has_response BOOLEAN NOT NULL DEFAULT false,
            response_text TEXT,
            response_date TIMESTAMPTZ,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
        )
    ''')

    op.execute('''
        CREATE TABLE review_responses (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            review_id UUID NOT NULL REFERENCES reviews(id) ON DELETE CASCADE,
            client_id UUID NOT NULL REFERENCES clients(id) ON DELETE CASCADE,
            response_text TEXT NOT NULL,
            status VARCHAR(20) NOT NULL DEFAULT 'draft',
            posted_at TIMESTAMPTZ,
            post_error TEXT,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
        )
    ''')


def downgrade() -> None:
    """Drop all tables in reverse dependency order."""
    for table in (
        'review_responses', 'reviews', 'active_calls',
        'payments', 'invoices', 'coupons', 'billing_events', 'subscriptions', 'plans',
        'system_settings', 'notification_preferences', 'agency_messages',
        'escalation_queue', 'escalation_rules',
        'nps_surveys', 'appointments', 'daily_stats', 'blocked_numbers',
        'scheduled_messages', 'conversations', 'leads',
        'audit_log', 'agency_client_assignments', 'agency_memberships',
        'client_memberships', 'role_templates',
        'otp_codes', 'magic_link_tokens', 'verification_tokens', 'auth_sessions', 'users',
        'people', 'clients',
    ):
        op.execute(f'DROP TABLE IF EXISTS {table} CASCADE')
