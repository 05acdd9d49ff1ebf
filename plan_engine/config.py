# plan_engine/config.py

import os


class Config:
    # Environment (dev, staging, prod)
    ENVIRONMENT = os.getenv("ENVIRONMENT", "dev")

    # Logging
    DEBUG_MODE = os.getenv("DEBUG_MODE", "false").lower() == "true"
    LOG_LEVEL = os.getenv("LOG_LEVEL", "DEBUG" if DEBUG_MODE else "INFO")

    # Database Configuration (in-memory SQLite when unset)
    DATABASE_URL = os.getenv("DATABASE_URL", "sqlite://")
    DATABASE_CREATE_TABLES = os.getenv("DATABASE_CREATE_TABLES", "true").lower() in ("true", "1", "t")

    # Shared secret for the scheduler / manual job trigger (X-API-Key header)
    JOB_API_KEY = os.getenv("JOB_API_KEY")

    # Overdue status job
    JOB_MAX_WORKERS = int(os.getenv("JOB_MAX_WORKERS", 4))
    JOB_MAX_RETRIES = int(os.getenv("JOB_MAX_RETRIES", 3))
    JOB_RETRY_INITIAL_DELAY = float(os.getenv("JOB_RETRY_INITIAL_DELAY", 1.0))  # seconds: 1s, 2s, 4s
    JOB_STUCK_AFTER_SECONDS = int(os.getenv("JOB_STUCK_AFTER_SECONDS", 600))

    # Job health thresholds (hours since last run)
    JOB_HEALTHY_HOURS = float(os.getenv("JOB_HEALTHY_HOURS", 24))
    JOB_ALERT_THRESHOLD_HOURS = float(os.getenv("JOB_ALERT_THRESHOLD_HOURS", 25))
