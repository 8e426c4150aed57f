"""
api/limiter.py -- The slowapi Limiter behind tokengate's signup and reset limits.

create_app() mounts it through SlowAPIMiddleware and api/routes.py decorates
the signup and password-reset endpoints with @limiter.limit(). Counters are
keyed on the client address and kept in process memory, so every route must
share this one instance for its limits to add up.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

limiter = Limiter(key_func=get_remote_address, storage_uri="memory://")
