#!/usr/bin/env python3
"""
Setup Supabase Database Tables for the Sales Activity Dashboard
Creates the teams, daily_logs, dashboards and dashboard_templates tables
plus the RPC functions the backend calls.
"""

import os
import sys
from pathlib import Path
from dotenv import load_dotenv
from supabase import create_client, Client

ROOT_DIR = Path(__file__).parent / 'backend'
load_dotenv(ROOT_DIR / '.env')

supabase_url = os.environ.get('SUPABASE_URL')
supabase_key = os.environ.get('SUPABASE_SERVICE_KEY')

ACTIVITY_COLUMNS = [
    'cold_calls', 'text_messages', 'facebook_dms', 'linkedin_dms', 'instagram_dms',
    'cold_emails', 'quotes', 'booked_calls', 'completed_calls', 'booked_presentations',
    'completed_presentations', 'submitted_applications', 'deals_won', 'deal_value',
]

_counter_columns = ",\n            ".join(
    f"{col} INTEGER NOT NULL DEFAULT 0 CHECK ({col} >= 0)" for col in ACTIVITY_COLUMNS
)
_member_sums = ",\n                    ".join(f"'{col}', l.{col}" for col in ACTIVITY_COLUMNS)
_day_totals = ",\n                ".join(f"SUM(l.{col}) AS {col}" for col in ACTIVITY_COLUMNS)

SQL_COMMANDS = [
    # Teams table
    """
    CREATE TABLE IF NOT EXISTS teams (
        id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
        name VARCHAR(255) NOT NULL,
        user_id UUID NOT NULL,
        team_members TEXT[] DEFAULT '{}',
        default_activities JSONB DEFAULT '[]',
        created_at TIMESTAMPTZ DEFAULT NOW()
    );
    CREATE INDEX IF NOT EXISTS idx_teams_user_id ON teams(user_id);
    """,

    # Daily logs table: one row per user, team and day
    f"""
    CREATE TABLE IF NOT EXISTS daily_logs (
        id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
        user_id UUID NOT NULL,
        team_id UUID REFERENCES teams(id) ON DELETE CASCADE NOT NULL,
        date DATE NOT NULL,
        {_counter_columns},
        created_at TIMESTAMPTZ DEFAULT NOW(),
        UNIQUE (user_id, team_id, date)
    );
    CREATE INDEX IF NOT EXISTS idx_daily_logs_team_date ON daily_logs(team_id, date);
    """,

    # Dashboards table
    """
    CREATE TABLE IF NOT EXISTS dashboards (
        id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
        title VARCHAR(255) NOT NULL,
        description TEXT,
        config JSONB NOT NULL DEFAULT '{"metrics": [], "layout": [{"rowId": "default", "metrics": [], "order": 0, "height": null}]}',
        user_id UUID,
        team_id UUID REFERENCES teams(id) ON DELETE CASCADE,
        is_home BOOLEAN DEFAULT FALSE,
        version INTEGER DEFAULT 1,
        created_at TIMESTAMPTZ DEFAULT NOW(),
        updated_at TIMESTAMPTZ DEFAULT NOW(),
        CHECK ((user_id IS NULL) <> (team_id IS NULL))
    );
    CREATE INDEX IF NOT EXISTS idx_dashboards_user_id ON dashboards(user_id);
    CREATE INDEX IF NOT EXISTS idx_dashboards_team_id ON dashboards(team_id);
    """,

    # Dashboard templates table
    """
    CREATE TABLE IF NOT EXISTS dashboard_templates (
        id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
        name VARCHAR(255) NOT NULL,
        description TEXT,
        config JSONB NOT NULL,
        category VARCHAR(100),
        visibility VARCHAR(20) NOT NULL DEFAULT 'private' CHECK (visibility IN ('private', 'public')),
        owner_id UUID NOT NULL,
        downloads_count INTEGER NOT NULL DEFAULT 0,
        created_at TIMESTAMPTZ DEFAULT NOW(),
        updated_at TIMESTAMPTZ DEFAULT NOW()
    );
    CREATE INDEX IF NOT EXISTS idx_dashboard_templates_visibility ON dashboard_templates(visibility);
    """,

    # Per-day team window with one member_data entry per member
    f"""
    CREATE OR REPLACE FUNCTION get_team_member_logs(p_team_id UUID, p_start_date DATE, p_end_date DATE)
    RETURNS TABLE (date DATE, member_data JSONB, {", ".join(f"{c} BIGINT" for c in ACTIVITY_COLUMNS)})
    LANGUAGE sql STABLE AS $$
        SELECT
            l.date,
            jsonb_agg(jsonb_build_object(
                'id', l.user_id,
                'name', u.raw_user_meta_data->>'name',
                'email', u.email,
                {_member_sums}
            ) ORDER BY u.email),
            {_day_totals}
        FROM daily_logs l
        LEFT JOIN auth.users u ON u.id = l.user_id
        WHERE l.team_id = p_team_id AND l.date BETWEEN p_start_date AND p_end_date
        GROUP BY l.date
        ORDER BY l.date;
    $$;
    """,

    # Template download counter, incremented in the database to avoid lost updates
    """
    CREATE OR REPLACE FUNCTION increment_template_downloads(template_id UUID)
    RETURNS VOID
    LANGUAGE sql AS $$
        UPDATE dashboard_templates
        SET downloads_count = downloads_count + 1
        WHERE id = template_id;
    $$;
    """,
]

TABLES = ['teams', 'daily_logs', 'dashboards', 'dashboard_templates']


def create_tables(supabase: Client):
    """Create all required tables and functions"""
    print("🚀 Setting up Sales Activity Dashboard tables...")

    for i, sql in enumerate(SQL_COMMANDS, 1):
        try:
            print(f"   Executing SQL command {i}/{len(SQL_COMMANDS)}...")
            supabase.rpc('exec_sql', {'sql': sql}).execute()
            print(f"   ✅ Command {i} executed successfully")
        except Exception as e:
            print(f"   ❌ Error executing command {i}: {str(e)}")
            return False

    print("✅ Database setup completed successfully!")
    return True


def verify_tables(supabase: Client):
    """Verify that all tables were created"""
    print("\n🔍 Verifying table creation...")

    for table in TABLES:
        try:
            supabase.table(table).select('*').limit(1).execute()
            print(f"   ✅ Table '{table}' exists and is accessible")
        except Exception as e:
            print(f"   ❌ Table '{table}' error: {str(e)}")
            return False

    print("✅ All tables verified successfully!")
    return True


if __name__ == "__main__":
    print("Sales Activity Dashboard Database Setup")
    print("=" * 50)

    if not supabase_url or not supabase_key:
        print("❌ Missing Supabase credentials in environment variables")
        sys.exit(1)

    print(f"Supabase URL: {supabase_url}")
    print(f"Service Key: {'*' * 20}...{supabase_key[-10:]}")

    client = create_client(supabase_url, supabase_key)
    if create_tables(client):
        if verify_tables(client):
            print("\n🎉 Database setup completed successfully!")
        else:
            print("\n❌ Table verification failed")
            sys.exit(1)
    else:
        print("\n❌ Database setup failed")
        sys.exit(1)
