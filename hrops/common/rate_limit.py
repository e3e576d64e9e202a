"""Rate limiting with slowapi.

The module-level Limiter is wired into the app in main.py; routers apply
per-endpoint limits with ``@limiter.limit(...)``.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

# Per client IP, applied to every endpoint
limiter = Limiter(
    key_func=get_remote_address,
    default_limits=["120/minute"],
)

# Scheduler endpoints: a cron fires a handful of times per hour at most
JOB_TRIGGER_LIMIT = "10/minute"
