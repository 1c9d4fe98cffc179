"""Baseline migration - users, estate records and death verification

Revision ID: 0001_baseline
Revises:
Create Date: 2026-10-19

Creates every table used by the check-in, verification and executor
access workflow, including the partial unique index that allows at most
one open verification request per user.
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
    # Users & Contacts
    # ==========================================================================
    op.execute('''
        CREATE TABLE users (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            email VARCHAR(255),
            full_name VARCHAR(255),
            created_at TIMESTAMPTZ NOT NULL DEFAULT now()
        )
    ''')

    op.execute('''
        CREATE TABLE contacts (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            user_id UUID NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            contact_type VARCHAR(20) NOT NULL,
            name VARCHAR(255) NOT NULL,
            email VARCHAR(255),
            phone VARCHAR(50),
            relationship VARCHAR(100),
            is_primary BOOLEAN NOT NULL DEFAULT false,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now()
        )
    ''')
    op.execute('CREATE INDEX idx_contacts_user_type ON contacts(user_id, contact_type)')

    # ==========================================================================
    # Will & Documents
    # ==========================================================================
    op.execute('''
        CREATE TABLE wills (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            user_id UUID NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            title VARCHAR(255) NOT NULL,
            content TEXT NOT NULL DEFAULT '',
            status VARCHAR(20) NOT NULL DEFAULT 'draft',
            created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            CONSTRAINT uq_wills_user UNIQUE (user_id)
        )
    ''')

    op.execute('''
        CREATE TABLE will_documents (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            user_id UUID NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            filename VARCHAR(255) NOT NULL,
            content_type VARCHAR(100) NOT NULL,
            file_size INTEGER NOT NULL,
            storage_key VARCHAR(500) NOT NULL,
            checksum_sha256 VARCHAR(64) NOT NULL,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now()
        )
    ''')
    op.execute('CREATE INDEX idx_will_documents_user ON will_documents(user_id, created_at)')

    # ==========================================================================
    # Death Verification
    # ==========================================================================
    op.execute('''
        CREATE TABLE verification_settings (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            user_id UUID NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            check_in_frequency_days INTEGER NOT NULL,
            grace_period_days INTEGER NOT NULL,
            check_in_enabled BOOLEAN NOT NULL DEFAULT true,
            notification_preferences JSONB NOT NULL DEFAULT '[]'::jsonb,
            unlock_mode VARCHAR(20) NOT NULL DEFAULT 'pin',
            created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            CONSTRAINT uq_verification_settings_user UNIQUE (user_id)
        )
    ''')

    op.execute('''
        CREATE TABLE checkin_records (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            user_id UUID NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            checked_in_at TIMESTAMPTZ NOT NULL,
            next_check_in TIMESTAMPTZ NOT NULL,
            status VARCHAR(20) NOT NULL DEFAULT 'alive',
            reminder_sent_at TIMESTAMPTZ
        )
    ''')
    op.execute('CREATE INDEX idx_checkins_user_checked_in ON checkin_records(user_id, checked_in_at)')
    op.execute('CREATE INDEX idx_checkins_next_due ON checkin_records(next_check_in)')

    op.execute('''
        CREATE TABLE verification_requests (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            user_id UUID NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            status VARCHAR(20) NOT NULL DEFAULT 'pending',
            trigger_reason VARCHAR(50) NOT NULL,
            initiated_by VARCHAR(100) NOT NULL,
            unlock_token VARCHAR(64) UNIQUE,
            expires_at TIMESTAMPTZ NOT NULL,
            completed_at TIMESTAMPTZ,
            archive_downloaded_at TIMESTAMPTZ,
            verification_result VARCHAR(100),
            created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
        )
    ''')
    op.execute('CREATE INDEX idx_verification_requests_user ON verification_requests(user_id, created_at)')
    op.execute('''
        CREATE UNIQUE INDEX uq_verification_requests_open_user
        ON verification_requests(user_id)
        WHERE status IN ('pending', 'pins_sent', 'verified')
    ''')

    op.execute('''
        CREATE TABLE verification_pins (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            verification_request_id UUID NOT NULL
                REFERENCES verification_requests(id) ON DELETE CASCADE,
            contact_id UUID REFERENCES contacts(id) ON DELETE SET NULL,
            contact_type VARCHAR(20) NOT NULL,
            contact_name VARCHAR(255) NOT NULL,
            contact_email VARCHAR(255),
            pin_index INTEGER NOT NULL,
            pin_code VARCHAR(6) NOT NULL,
            used BOOLEAN NOT NULL DEFAULT false,
            used_at TIMESTAMPTZ,
            sent_at TIMESTAMPTZ,
            send_error TEXT,
            expires_at TIMESTAMPTZ NOT NULL,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            CONSTRAINT uq_verification_pins_request_code UNIQUE (verification_request_id, pin_code),
            CONSTRAINT uq_verification_pins_request_index UNIQUE (verification_request_id, pin_index)
        )
    ''')

    op.execute('''
        CREATE TABLE document_access_sessions (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            token VARCHAR(64) UNIQUE NOT NULL,
            verification_request_id UUID NOT NULL
                REFERENCES verification_requests(id) ON DELETE CASCADE,
            user_id UUID NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            granted_at TIMESTAMPTZ NOT NULL,
            expires_at TIMESTAMPTZ NOT NULL,
            revoked_at TIMESTAMPTZ
        )
    ''')

    op.execute('''
        CREATE TABLE verification_logs (
            id SERIAL PRIMARY KEY,
            user_id UUID NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            action VARCHAR(50) NOT NULL,
            details JSONB,
            ip_address VARCHAR(45),
            user_agent VARCHAR(500),
            prev_hash VARCHAR(64),
            entry_hash VARCHAR(64),
            created_at TIMESTAMPTZ NOT NULL DEFAULT now()
        )
    ''')
    op.execute('CREATE INDEX idx_verification_logs_user ON verification_logs(user_id, id)')
    op.execute('CREATE INDEX idx_verification_logs_action ON verification_logs(action, created_at)')

    # ==========================================================================
    # Jobs
    # ==========================================================================
    op.execute('''
        CREATE TABLE jobs (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            user_id UUID REFERENCES users(id) ON DELETE CASCADE,
            job_type VARCHAR(50) NOT NULL,
            payload JSONB NOT NULL DEFAULT '{}'::jsonb,
            run_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            status VARCHAR(20) NOT NULL DEFAULT 'pending',
            attempts INTEGER NOT NULL DEFAULT 0,
            last_error TEXT,
            idempotency_key VARCHAR(255) UNIQUE,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            completed_at TIMESTAMPTZ
        )
    ''')
    op.execute('CREATE INDEX idx_jobs_pending ON jobs(status, run_at)')


def downgrade() -> None:
    """Drop all tables."""
    for table in (
        'jobs',
        'verification_logs',
        'document_access_sessions',
        'verification_pins',
        'verification_requests',
        'checkin_records',
        'verification_settings',
        'will_documents',
        'wills',
        'contacts',
        'users',
    ):
        op.execute(f'DROP TABLE IF EXISTS {table} CASCADE')
