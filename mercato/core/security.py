from __future__ import annotations

import secrets

from fastapi import Depends, Header, HTTPException
from fastapi.security import HTTPBasic, HTTPBasicCredentials

from mercato.core.config import get_settings


security = HTTPBasic(auto_error=False)


def require_basic_auth(
    credentials: HTTPBasicCredentials | None = Depends(security),
    on_behalf_of: str | None = Header(None, alias="X-On-Behalf-Of", max_length=120),
) -> str:
    """
    Authenticate the calling service and return the audit actor.

    Storefront and seller portals call the API with one technical account and name the
    end user in `X-On-Behalf-Of`; the audit log records both.
    """
    settings = get_settings()
    if credentials is None:
        raise HTTPException(status_code=401, detail="Authentication required", headers={"WWW-Authenticate": "Basic"})

    valid_user = secrets.compare_digest(credentials.username, settings.basic_auth_username)
    valid_pass = secrets.compare_digest(credentials.password, settings.basic_auth_password)
    if not (valid_user and valid_pass):
        raise HTTPException(status_code=401, detail="Invalid credentials", headers={"WWW-Authenticate": "Basic"})

    delegate = (on_behalf_of or "").strip()
    if delegate:
        return f"{credentials.username}:{delegate}"
    return credentials.username
