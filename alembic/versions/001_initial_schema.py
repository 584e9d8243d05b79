"""Initial schema: users, ledger, questions, tournaments.

Creates users, transactions, questions, tournaments, tournament_participants
and tournament_questions. Balance invariants are enforced with CHECK
constraints: both buckets non-negative and balance = playable + bonus.

Revision ID: 001_initial_schema
Revises:
Create Date: 2026-03-02
"""

from collections.abc import Sequence

from alembic import op

revision: str = "001_initial_schema"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    # --- Users ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS users (
            id BIGSERIAL PRIMARY KEY,
            telegram_id VARCHAR(32) UNIQUE,
            username VARCHAR(30) NOT NULL UNIQUE,
            display_name VARCHAR(100),
            is_admin BOOLEAN NOT NULL DEFAULT FALSE,
            is_blocked BOOLEAN NOT NULL DEFAULT FALSE,
            blocked_reason VARCHAR(256),
            is_verified BOOLEAN NOT NULL DEFAULT FALSE,
            withdrawal_enabled BOOLEAN NOT NULL DEFAULT FALSE,
            has_deposited BOOLEAN NOT NULL DEFAULT FALSE,
            balance NUMERIC(18, 2) NOT NULL DEFAULT 0,
            playable_balance NUMERIC(18, 2) NOT NULL DEFAULT 0,
            bonus_balance NUMERIC(18, 2) NOT NULL DEFAULT 0,
            total_earned NUMERIC(18, 2) NOT NULL DEFAULT 0,
            total_deposited NUMERIC(18, 2) NOT NULL DEFAULT 0,
            total_withdrawn NUMERIC(18, 2) NOT NULL DEFAULT 0,
            ledger_version INTEGER NOT NULL DEFAULT 0,
            xp INTEGER NOT NULL DEFAULT 0,
            total_xp INTEGER NOT NULL DEFAULT 0,
            level INTEGER NOT NULL DEFAULT 1,
            rank_title VARCHAR(32) NOT NULL DEFAULT 'Bronze',
            questions_answered INTEGER NOT NULL DEFAULT 0,
            correct_answers INTEGER NOT NULL DEFAULT 0,
            average_score DOUBLE PRECISION NOT NULL DEFAULT 0,
            referral_code VARCHAR(16) UNIQUE,
            referred_by_id BIGINT REFERENCES users(id),
            referral_rewarded BOOLEAN NOT NULL DEFAULT FALSE,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            last_activity TIMESTAMPTZ,
            CONSTRAINT users_playable_nonneg CHECK (playable_balance >= 0),
            CONSTRAINT users_bonus_nonneg CHECK (bonus_balance >= 0),
            CONSTRAINT users_balance_sum CHECK (balance = playable_balance + bonus_balance)
        )
    """)

    # --- Questions ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS questions (
            id BIGSERIAL PRIMARY KEY,
            question VARCHAR(500) NOT NULL,
            options JSONB NOT NULL,
            correct_answer INTEGER NOT NULL,
            explanation TEXT,
            difficulty VARCHAR(8) NOT NULL DEFAULT 'medium',
            category VARCHAR(50) NOT NULL,
            points INTEGER NOT NULL DEFAULT 10,
            time_limit INTEGER NOT NULL DEFAULT 30,
            is_active BOOLEAN NOT NULL DEFAULT TRUE,
            times_used INTEGER NOT NULL DEFAULT 0,
            correct_count INTEGER NOT NULL DEFAULT 0,
            incorrect_count INTEGER NOT NULL DEFAULT 0,
            average_time DOUBLE PRECISION NOT NULL DEFAULT 0,
            quality_score DOUBLE PRECISION NOT NULL DEFAULT 50,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_questions_selection
        ON questions(difficulty, category, is_active, quality_score DESC)
    """)

    # --- Tournaments ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS tournaments (
            id BIGSERIAL PRIMARY KEY,
            title VARCHAR(100) NOT NULL,
            description VARCHAR(500),
            category VARCHAR(50) NOT NULL,
            difficulty VARCHAR(8) NOT NULL DEFAULT 'medium',
            entry_fee NUMERIC(18, 2) NOT NULL,
            prize_pool NUMERIC(18, 2) NOT NULL,
            app_fee NUMERIC(18, 2) NOT NULL DEFAULT 0,
            max_participants INTEGER NOT NULL,
            min_participants INTEGER NOT NULL DEFAULT 2,
            status VARCHAR(16) NOT NULL DEFAULT 'upcoming',
            phase VARCHAR(16) NOT NULL DEFAULT 'registration',
            registration_start TIMESTAMPTZ NOT NULL,
            registration_end TIMESTAMPTZ NOT NULL,
            start_time TIMESTAMPTZ NOT NULL,
            end_time TIMESTAMPTZ NOT NULL,
            actual_start_time TIMESTAMPTZ,
            actual_end_time TIMESTAMPTZ,
            question_count INTEGER NOT NULL DEFAULT 10,
            time_per_question INTEGER NOT NULL DEFAULT 30,
            is_private BOOLEAN NOT NULL DEFAULT FALSE,
            invite_code VARCHAR(8) UNIQUE,
            settings JSONB NOT NULL DEFAULT '{}',
            prize_distribution JSONB NOT NULL DEFAULT '[]',
            total_prizes NUMERIC(18, 2) NOT NULL DEFAULT 0,
            created_by_id BIGINT NOT NULL REFERENCES users(id),
            winner_id BIGINT REFERENCES users(id),
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CONSTRAINT tournaments_min_participants CHECK (min_participants >= 2),
            CONSTRAINT tournaments_max_ge_min CHECK (max_participants >= min_participants),
            CONSTRAINT tournaments_status CHECK (status IN ('upcoming', 'active', 'completed', 'cancelled'))
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_tournaments_status_start
        ON tournaments(status, start_time)
    """)

    op.execute("""
        CREATE TABLE IF NOT EXISTS tournament_participants (
            id BIGSERIAL PRIMARY KEY,
            tournament_id BIGINT NOT NULL REFERENCES tournaments(id) ON DELETE CASCADE,
            user_id BIGINT NOT NULL REFERENCES users(id),
            joined_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            score INTEGER NOT NULL DEFAULT 0,
            time_spent INTEGER NOT NULL DEFAULT 0,
            answers JSONB NOT NULL DEFAULT '[]',
            rank INTEGER NOT NULL DEFAULT 0,
            prize NUMERIC(18, 2) NOT NULL DEFAULT 0,
            CONSTRAINT tournament_participants_tournament_user_key UNIQUE (tournament_id, user_id)
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_tournament_participants_user
        ON tournament_participants(user_id)
    """)

    op.execute("""
        CREATE TABLE IF NOT EXISTS tournament_questions (
            id BIGSERIAL PRIMARY KEY,
            tournament_id BIGINT NOT NULL REFERENCES tournaments(id) ON DELETE CASCADE,
            question_id BIGINT NOT NULL REFERENCES questions(id),
            position INTEGER NOT NULL,
            CONSTRAINT tournament_questions_tournament_question_key UNIQUE (tournament_id, question_id)
        )
    """)

    # --- Ledger ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS transactions (
            id BIGSERIAL PRIMARY KEY,
            reference VARCHAR(40) NOT NULL UNIQUE,
            user_id BIGINT NOT NULL REFERENCES users(id),
            type VARCHAR(24) NOT NULL,
            category VARCHAR(16) NOT NULL,
            bucket VARCHAR(16) NOT NULL DEFAULT 'playable',
            amount NUMERIC(18, 2) NOT NULL,
            fee NUMERIC(18, 2) NOT NULL DEFAULT 0,
            net_amount NUMERIC(18, 2) NOT NULL,
            currency VARCHAR(10) NOT NULL DEFAULT 'USDT',
            balance_before NUMERIC(18, 2) NOT NULL,
            balance_after NUMERIC(18, 2) NOT NULL,
            status VARCHAR(16) NOT NULL DEFAULT 'pending',
            payment_method VARCHAR(16) NOT NULL DEFAULT 'internal',
            description VARCHAR(500),
            ledger_seq INTEGER,
            tournament_id BIGINT REFERENCES tournaments(id) ON DELETE SET NULL,
            tournament_rank INTEGER,
            network VARCHAR(16),
            tx_hash VARCHAR(128),
            from_address VARCHAR(128),
            to_address VARCHAR(128),
            processed_by_id BIGINT REFERENCES users(id),
            processed_at TIMESTAMPTZ,
            admin_notes VARCHAR(1000),
            rejection_reason VARCHAR(500),
            metadata JSONB NOT NULL DEFAULT '{}',
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            completed_at TIMESTAMPTZ,
            CONSTRAINT transactions_amount_nonneg CHECK (amount >= 0),
            CONSTRAINT transactions_fee_nonneg CHECK (fee >= 0),
            CONSTRAINT transactions_type CHECK (type IN (
                'deposit', 'withdrawal', 'quiz', 'tournament', 'referral', 'bonus', 'refund', 'admin_adjustment'
            )),
            CONSTRAINT transactions_status CHECK (status IN (
                'pending', 'processing', 'completed', 'failed', 'cancelled', 'refunded'
            ))
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_transactions_user_created
        ON transactions(user_id, created_at)
    """)
    op.execute("CREATE INDEX IF NOT EXISTS idx_transactions_status ON transactions(status)")
    op.execute("CREATE INDEX IF NOT EXISTS idx_transactions_tournament ON transactions(tournament_id)")
    op.execute("""
        CREATE UNIQUE INDEX IF NOT EXISTS idx_transactions_user_ledger_seq
        ON transactions(user_id, ledger_seq) WHERE ledger_seq IS NOT NULL
    """)
    op.execute("""
        CREATE UNIQUE INDEX IF NOT EXISTS idx_transactions_deposit_tx_hash
        ON transactions(tx_hash) WHERE type = 'deposit' AND tx_hash IS NOT NULL
    """)


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS transactions CASCADE")
    op.execute("DROP TABLE IF EXISTS tournament_questions CASCADE")
    op.execute("DROP TABLE IF EXISTS tournament_participants CASCADE")
    op.execute("DROP TABLE IF EXISTS tournaments CASCADE")
    op.execute("DROP TABLE IF EXISTS questions CASCADE")
    op.execute("DROP TABLE IF EXISTS users CASCADE")
