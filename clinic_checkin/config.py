"""
config.py
=========
Environment-driven settings for the clinic check-in backend.
Every value can be overridden through an environment variable.
"""

import os

# Database path (from environment or default to local SQLite file)
DB_PATH = os.getenv("CLINIC_DB", "data/clinic.db")

# Full SQLAlchemy URL wins over DB_PATH when set (e.g. PostgreSQL in production)
DATABASE_URL = os.getenv("CLINIC_DATABASE_URL", f"sqlite:///{DB_PATH}")

# Comma-separated list of origins allowed to call the API (the SPA)
CORS_ORIGINS = [
    origin.strip()
    for origin in os.getenv("CLINIC_CORS_ORIGINS", "http://localhost:3000").split(",")
    if origin.strip()
]

LOG_LEVEL = os.getenv("CLINIC_LOG_LEVEL", "INFO").upper()

# Seed the default doctor roster on startup when the table is empty
SEED_DOCTORS = os.getenv("CLINIC_SEED_DOCTORS", "true").lower() == "true"

# Window used by the "completed recently" view when no value is given
RECENT_COMPLETED_MINUTES = int(os.getenv("CLINIC_RECENT_MINUTES", "30"))

# Pushover application token (optional)
PUSHOVER_TOKEN = os.getenv("PUSHOVER_TOKEN")
