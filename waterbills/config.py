import os
import logging
from dotenv import load_dotenv

load_dotenv()

class Config:
    # Database Configuration
    DB_USER = os.getenv("DB_USER", "postgres")
    DB_PASS = os.getenv("DB_PASS", "postgres")
    DB_HOST = os.getenv("DB_HOST")
    DB_PORT = os.getenv("DB_PORT", "5432")
    DB_NAME = os.getenv("DB_NAME", "waterbills")

    @property
    def DATABASE_URL(self):
        # Prefer DATABASE_URL env var if set
        url = os.getenv("DATABASE_URL")
        if url:
            return url

        if self.DB_HOST:
            return f"postgresql+asyncpg://{self.DB_USER}:{self.DB_PASS}@{self.DB_HOST}:{self.DB_PORT}/{self.DB_NAME}"

        # Local development fallback
        return "sqlite+aiosqlite:///waterbills.db"

    # Operator alerts (OPTIONAL) - terminal job failures are sent here
    BOT_TOKEN = os.getenv("BOT_TOKEN")
    OPERATOR_IDS = [int(x.strip()) for x in os.getenv("OPERATOR_IDS", "").split(",") if x.strip() and x.strip().isdigit()]

    # Worker pool
    WORKER_CONCURRENCY = int(os.getenv("WORKER_CONCURRENCY", "3"))
    WORKER_POLL_SECONDS = float(os.getenv("WORKER_POLL_SECONDS", "5"))
    JOB_MAX_ATTEMPTS = int(os.getenv("JOB_MAX_ATTEMPTS", "3"))
    JOB_TIMEOUT_SECONDS = float(os.getenv("JOB_TIMEOUT_SECONDS", "300"))
    JOB_BACKOFF_SECONDS = float(os.getenv("JOB_BACKOFF_SECONDS", "30"))

    # Scheduler triggers (local time)
    INVOICE_GENERATION_DAY = int(os.getenv("INVOICE_GENERATION_DAY", "25"))
    INVOICE_GENERATION_HOUR = int(os.getenv("INVOICE_GENERATION_HOUR", "0"))
    PENALTY_HOUR = int(os.getenv("PENALTY_HOUR", "0"))
    DISCONNECT_HOUR = int(os.getenv("DISCONNECT_HOUR", "6"))
    SCHEDULER_TICK_SECONDS = float(os.getenv("SCHEDULER_TICK_SECONDS", "60"))

config = Config()

# Log configuration on startup
logging.info(f"Database: {config.DATABASE_URL.split('@')[1] if '@' in config.DATABASE_URL else 'SQLite'}")
logging.info(f"Operator alerts: {'enabled' if config.BOT_TOKEN and config.OPERATOR_IDS else 'disabled'}")
