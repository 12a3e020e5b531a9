"""
api/limiter.py -- Shared slowapi rate limiter instance.

Import this in api/main.py (to mount as middleware) and in the route modules
that apply per-route limits with @limiter.limit(). A single shared instance
means every route shares one in-memory counter store.

Per-IP limits on login and MFA endpoints sit in front of the account lockout:
lockout stops guessing against one account, the limiter slows a single
client spraying many accounts or many MFA codes.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

limiter = Limiter(key_func=get_remote_address, storage_uri="memory://")
