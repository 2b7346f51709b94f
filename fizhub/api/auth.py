from fastapi import Header, HTTPException
from fizhub.settings import settings


def require_api_key(x_api_key: str = Header(default="", alias="x-api-key")):
    """
    Guards the routes that change hub state (local taps, reset, recorder stop,
    wake). Status reads never need it. With API_KEY unset the hub trusts its
    local network and every caller passes.
    """
    if not settings.API_KEY:
        return
    if x_api_key != settings.API_KEY:
        raise HTTPException(status_code=401, detail="Invalid API key")


def require_admin(x_admin_key: str = Header(default="", alias="x-admin-key")):
    """Guards /admin/*, which exposes validated accounts and raw counters."""
    if not settings.ADMIN_RBAC_ENABLED:
        return
    # Guard switched on without a key: nobody gets the session internals
    if not settings.ADMIN_API_KEY:
        raise HTTPException(status_code=403, detail="Admin access disabled (no ADMIN_API_KEY set)")
    if x_admin_key != settings.ADMIN_API_KEY:
        raise HTTPException(status_code=403, detail="Invalid admin key")
