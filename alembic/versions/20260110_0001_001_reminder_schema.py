"""Reminder engine schema - projects, clients and reminders.

Revision ID: 001
Revises: None
Create Date: 2026-01-10

This migration creates:
- projects with JSON email, SMS and reminder policy settings
- clients with work status and reminder opt-out, unique per project email
- reminders with the due-query and per-project listing indexes

Enum types hold member names, as SQLModel writes them.
"""
from typing import Sequence, Union

from alembic import op

# revision identifiers, used by Alembic.
revision: str = '001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Create enums in PostgreSQL
    op.execute("CREATE TYPE workstatus AS ENUM ('NOT_STARTED', 'IN_PROGRESS', 'COMPLETED')")
    op.execute("CREATE TYPE reminderchannel AS ENUM ('EMAIL', 'SMS')")
    op.execute("CREATE TYPE reminderstatus AS ENUM ('PENDING', 'SENT', 'FAILED', 'CANCELED')")

    # Create projects table
    op.execute("""
        CREATE TABLE IF NOT EXISTS projects (
            id UUID PRIMARY KEY,
            user_id VARCHAR(255),
            name VARCHAR(200) NOT NULL,
            description TEXT,
            is_active BOOLEAN NOT NULL DEFAULT TRUE,
            email_settings JSON NOT NULL DEFAULT '{}',
            sms_settings JSON NOT NULL DEFAULT '{}',
            reminder_settings JSON NOT NULL DEFAULT '{}',
            created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
            updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
        );
        CREATE INDEX IF NOT EXISTS ix_projects_user_id ON projects(user_id);
    """)

    # Create clients table
    op.execute("""
        CREATE TABLE IF NOT EXISTS clients (
            id UUID PRIMARY KEY,
            project_id UUID NOT NULL REFERENCES projects(id),
            name VARCHAR(200) NOT NULL,
            email VARCHAR(255) NOT NULL,
            phone VARCHAR(32),
            company VARCHAR(200),
            work_status workstatus NOT NULL DEFAULT 'NOT_STARTED',
            is_contacted BOOLEAN NOT NULL DEFAULT FALSE,
            last_contacted_at TIMESTAMP,
            reminder_opt_out BOOLEAN NOT NULL DEFAULT FALSE,
            created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
            updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
            CONSTRAINT unique_project_client_email UNIQUE (project_id, email)
        );
        CREATE INDEX IF NOT EXISTS ix_clients_project_id ON clients(project_id);
    """)

    # Create reminders table
    op.execute("""
        CREATE TABLE IF NOT EXISTS reminders (
            id UUID PRIMARY KEY,
            project_id UUID NOT NULL REFERENCES projects(id),
            client_id UUID NOT NULL REFERENCES clients(id),
            channel reminderchannel NOT NULL,
            template_key VARCHAR(100),
            scheduled_at TIMESTAMP NOT NULL,
            status reminderstatus NOT NULL DEFAULT 'PENDING',
            attempt_number INTEGER NOT NULL DEFAULT 0,
            metadata JSON NOT NULL DEFAULT '{}',
            created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
            updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
        );
        CREATE INDEX IF NOT EXISTS ix_reminders_client_id ON reminders(client_id);
        CREATE INDEX IF NOT EXISTS ix_reminders_scheduled_at ON reminders(scheduled_at);
        CREATE INDEX IF NOT EXISTS idx_reminders_status_scheduled ON reminders(status, scheduled_at);
        CREATE INDEX IF NOT EXISTS idx_reminders_project_status ON reminders(project_id, status);
    """)


def downgrade() -> None:
    # Drop tables in reverse order
    op.execute("DROP TABLE IF EXISTS reminders CASCADE")
    op.execute("DROP TABLE IF EXISTS clients CASCADE")
    op.execute("DROP TABLE IF EXISTS projects CASCADE")

    # Drop enums
    op.execute("DROP TYPE IF EXISTS reminderstatus")
    op.execute("DROP TYPE IF EXISTS reminderchannel")
    op.execute("DROP TYPE IF EXISTS workstatus")
