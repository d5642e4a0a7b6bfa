"""Initial schema (users, profiles, sessions, verification events, audit log)

Revision ID: 20261019_1200
Revises:
Create Date: 2026-10-19

"""

from __future__ import annotations

from alembic import op

revision = "20261019_1200"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.execute("CREATE EXTENSION IF NOT EXISTS pgcrypto;")

    op.execute(
        """
CREATE TABLE IF NOT EXISTS users (
  id uuid PRIMARY KEY DEFAULT gen_random_uuid(),
  github_id bigint NOT NULL,
  github_username varchar(39) NOT NULL,
  avatar_url text,
  verified_veteran boolean NOT NULL DEFAULT false,
  verified_at timestamptz,
  created_at timestamptz NOT NULL DEFAULT now(),
  updated_at timestamptz NOT NULL DEFAULT now(),
  UNIQUE (github_id)
);
"""
    )
    op.execute(
        "CREATE INDEX IF NOT EXISTS ix_users_github_username ON users (github_username);"
    )
    op.execute(
        "CREATE INDEX IF NOT EXISTS ix_users_verified_veteran ON users (verified_veteran);"
    )

    op.execute(
        """
CREATE TABLE IF NOT EXISTS profiles (
  id uuid PRIMARY KEY DEFAULT gen_random_uuid(),
  user_id uuid NOT NULL REFERENCES users(id) ON DELETE CASCADE,
  bio text,
  website varchar(255),
  github_repos_count integer NOT NULL DEFAULT 0,
  github_stars_count integer NOT NULL DEFAULT 0,
  github_languages jsonb NOT NULL DEFAULT '[]'::jsonb,
  github_last_activity timestamptz,
  profile_cached_at timestamptz,
  created_at timestamptz NOT NULL DEFAULT now(),
  updated_at timestamptz NOT NULL DEFAULT now(),
  UNIQUE (user_id)
);
"""
    )

    op.execute(
        """
CREATE TABLE IF NOT EXISTS sessions (
  id uuid PRIMARY KEY DEFAULT gen_random_uuid(),
  user_id uuid NOT NULL REFERENCES users(id) ON DELETE CASCADE,
  token_hash varchar(64) NOT NULL,
  expires_at timestamptz NOT NULL,
  created_at timestamptz NOT NULL DEFAULT now(),
  UNIQUE (token_hash)
);
"""
    )
    op.execute("CREATE INDEX IF NOT EXISTS ix_sessions_user_id ON sessions (user_id);")
    op.execute("CREATE INDEX IF NOT EXISTS ix_sessions_expires_at ON sessions (expires_at);")

    op.execute(
        """
CREATE TABLE IF NOT EXISTS verification_events (
  id uuid PRIMARY KEY DEFAULT gen_random_uuid(),
  user_id uuid NOT NULL REFERENCES users(id) ON DELETE CASCADE,
  provider varchar(50) NOT NULL,
  provider_ref varchar(255),
  status varchar(20) NOT NULL CHECK (status IN ('pending','success','failed')),
  idempotency_key varchar(64) NOT NULL,
  metadata jsonb NOT NULL DEFAULT '{}'::jsonb,
  created_at timestamptz NOT NULL DEFAULT now(),
  UNIQUE (idempotency_key)
);
"""
    )
    op.execute(
        "CREATE INDEX IF NOT EXISTS ix_verification_events_user_id ON verification_events (user_id);"
    )

    op.execute(
        """
CREATE TABLE IF NOT EXISTS audit_log (
  id uuid PRIMARY KEY DEFAULT gen_random_uuid(),
  user_id uuid REFERENCES users(id) ON DELETE SET NULL,
  action varchar(100) NOT NULL,
  ip_address varchar(64),
  user_agent text,
  metadata jsonb NOT NULL DEFAULT '{}'::jsonb,
  created_at timestamptz NOT NULL DEFAULT now()
);
"""
    )
    op.execute("CREATE INDEX IF NOT EXISTS ix_audit_log_user_id ON audit_log (user_id);")
    op.execute("CREATE INDEX IF NOT EXISTS ix_audit_log_action ON audit_log (action);")
    op.execute("CREATE INDEX IF NOT EXISTS ix_audit_log_created_at ON audit_log (created_at DESC);")

    # Verification events and audit rows are a log: forbid in-place edits.
    op.execute(
        """
CREATE OR REPLACE FUNCTION forbid_update() RETURNS trigger AS $$
BEGIN
  RAISE EXCEPTION '% is append-only', TG_TABLE_NAME;
END;
$$ LANGUAGE plpgsql;
"""
    )
    op.execute(
        """
DROP TRIGGER IF EXISTS verification_events_append_only ON verification_events;
CREATE TRIGGER verification_events_append_only
BEFORE UPDATE ON verification_events
FOR EACH ROW EXECUTE FUNCTION forbid_update();
"""
    )


def downgrade() -> None:
    # No downgrade support (early-stage schema; breaking changes allowed).
    pass
