"""Shared rate limiter so routes can decorate endpoints without importing main."""
import os

from dotenv import load_dotenv
from slowapi import Limiter
from slowapi.util import get_remote_address

# Imported before main reads .env, so load it here as well
load_dotenv()

# In-memory storage; each worker process counts on its own
limiter = Limiter(key_func=get_remote_address)
SIGN_RATE_LIMIT = os.getenv("SIGN_RATE_LIMIT", "30/minute")
