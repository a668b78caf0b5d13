"""Dependency injection for FastAPI endpoints"""

import uuid
from typing import Callable

from fastapi import Depends, Header, HTTPException, Request
from sqlalchemy.orm import Session

from flow_gateway.config import settings
from flow_gateway.domain.models import RuntimeMode
from flow_gateway.infrastructure.clients.connectors import ConnectorClient, build_connector_client
from flow_gateway.infrastructure.database.session import SessionLocal, get_db
from flow_gateway.services.security import SecurityService


def get_request_id(request: Request) -> str:
    """Extract request ID from request state"""
    return getattr(request.state, "request_id", "unknown")


def get_user_id(x_user_id: str = Header(..., min_length=1, description="Authenticated user")) -> str:
    """Caller identity, set by the upstream identity provider"""
    return x_user_id


def get_device_id(x_device_id: str = Header(..., min_length=1, description="Calling device")) -> str:
    return x_device_id


def get_runtime_mode() -> RuntimeMode:
    return RuntimeMode(settings.runtime_mode)


def get_connector_client() -> ConnectorClient:
    """Provide connector client instance (simulated or HTTP per settings)"""
    return build_connector_client()


def get_security_service(db: Session = Depends(get_db)) -> SecurityService:
    return SecurityService(db)


def get_session_factory() -> Callable[[], Session]:
    """Session factory for work that outlives the request (job drains)"""
    return SessionLocal


def parse_id(value: str, label: str) -> str:
    """Normalise a UUID path or body id; malformed ids are a 400"""
    try:
        return str(uuid.UUID(value))
    except ValueError:
        raise HTTPException(status_code=400, detail=f"Invalid {label} ID format")
