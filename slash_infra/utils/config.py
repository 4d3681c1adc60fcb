import os
from dotenv import load_dotenv

load_dotenv()

# ── Slack ─────────────────────────────────────────────────────────────────────
SLACK_SIGNING_SECRET: str = os.getenv("SLACK_SIGNING_SECRET", "")

# Requests older than this (seconds) are treated as replays
SLACK_REQUEST_MAX_AGE: int = int(os.getenv("SLACK_REQUEST_MAX_AGE", 10 * 60))

# How long the handler may run before the "still working" notice goes out
PENDING_GRACE_PERIOD: float = float(os.getenv("PENDING_GRACE_PERIOD", 0.7))

# ── Error reporting ───────────────────────────────────────────────────────────
SENTRY_DSN: str         = os.getenv("SENTRY_DSN", "")
SENTRY_ENVIRONMENT: str = os.getenv("SENTRY_ENVIRONMENT", "production")

# ── Server ────────────────────────────────────────────────────────────────────
PORT: int = int(os.getenv("PORT", 8090))

# ── Mock mode (for local testing without AWS credentials) ─────────────────────
MOCK_AWS: bool = os.getenv("MOCK_AWS", "false").lower() == "true"
