"""Runtime configuration read from the environment (and an optional .env file)."""

import os

from dotenv import load_dotenv

load_dotenv()

# Persistence
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./depgov.db")

# Risk assessments stay valid for this many days after creation
ASSESSMENT_VALIDITY_DAYS = int(os.getenv("DEPGOV_ASSESSMENT_VALIDITY_DAYS", "30"))

# Batch policy evaluation
MAX_CONCURRENCY = int(os.getenv("DEPGOV_MAX_CONCURRENCY", "8"))
ACTION_TIMEOUT_SECONDS = float(os.getenv("DEPGOV_ACTION_TIMEOUT", "10"))

# Optional HTTP sink for engine events
EVENT_WEBHOOK_URL = os.getenv("DEPGOV_EVENT_WEBHOOK_URL", "")

DEFAULT_TENANT = os.getenv("DEPGOV_DEFAULT_TENANT", "default")
