"""Rate limiting configuration using slowapi.

Provides a module-level Limiter instance that routers import for
per-endpoint limits, wired into the FastAPI app in main.py.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

# Leave submission is the only write endpoint; reads are not limited.
SUBMIT_RATE_LIMIT = "20/minute"

limiter = Limiter(key_func=get_remote_address)
