"""
FastAPI dependencies shared by the v1 routes.

The service container lives on app.state (built by the lifespan); routes
receive it, the settings and paging parameters through these aliases.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Annotated

from fastapi import Depends, Query, Request

from newsdesk.core.config import Settings, get_settings
from newsdesk.core.security import verify_api_key
from newsdesk.services.container import ServiceContainer


@dataclass(frozen=True)
class PageParams:
    skip: int
    take: int


def page_params(
    skip: int = Query(default=0, ge=0),
    take: int = Query(default=20, ge=1, le=100),
) -> PageParams:
    return PageParams(skip=skip, take=take)


def get_container(request: Request) -> ServiceContainer:
    return request.app.state.container


AuthenticatedUser = Annotated[str, Depends(verify_api_key)]
AppSettings = Annotated[Settings, Depends(get_settings)]
Container = Annotated[ServiceContainer, Depends(get_container)]
Page = Annotated[PageParams, Depends(page_params)]
