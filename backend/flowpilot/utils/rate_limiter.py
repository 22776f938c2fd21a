# /flowpilot/utils/rate_limiter.py

from slowapi import Limiter
from flowpilot.utils.request_utils import get_remote_address
from flowpilot.config.settings import settings

# Shared limiter instance; main.py registers it on the app and the session
# routes decorate their handlers with it.

limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[f"{settings.rate_limit_per_minute}/minute"]
)
