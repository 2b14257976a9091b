from slowapi import Limiter
from slowapi.util import get_remote_address

from .config import load_config

AUTH_LIMIT = "10/minute"
AI_LIMIT = "30/minute"
REGENERATE_LIMIT = "10/minute"

limiter = Limiter(key_func=get_remote_address, enabled=load_config().rate_limit_enabled)
