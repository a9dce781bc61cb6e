"""
dependencies.py — Shared FastAPI Dependencies

Business Rules:
- Every request belongs to an installation, identified by the
  installation_id cookie; a new id is minted and set when it is missing
- Process-lifetime collaborators (snapshot orchestrator, credential
  manager, session factory) live on app.state and are read
  from there, never from module globals

Called by: all routers
Depends on: main.py (app.state wiring)
"""

import re
import uuid

from fastapi import Request, Response

INSTALLATION_COOKIE = "installation_id"
COOKIE_MAX_AGE = 60 * 60 * 24 * 365
_VALID_ID = re.compile(r"^[A-Za-z0-9-]{8,64}$")


def get_installation_id(request: Request, response: Response) -> str:
    installation_id = request.cookies.get(INSTALLATION_COOKIE)
    if installation_id and _VALID_ID.match(installation_id):
        return installation_id
    installation_id = str(uuid.uuid4())
    response.set_cookie(
        INSTALLATION_COOKIE,
        installation_id,
        max_age=COOKIE_MAX_AGE,
        httponly=True,
        samesite="lax",
    )
    return installation_id


def get_orchestrator(request: Request):
    return request.app.state.orchestrator


def get_credentials(request: Request):
    return request.app.state.credentials


def get_session_factory(request: Request):
    return request.app.state.session_factory
