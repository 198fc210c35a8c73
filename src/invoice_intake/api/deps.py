from __future__ import annotations

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from invoice_intake.core.errors import AppError, ErrorCode
from invoice_intake.core.logging import set_user_context
from invoice_intake.core.security import decode_access_token
from invoice_intake.modules.extraction.ai import InferenceClient
from invoice_intake.state import Stores

bearer_scheme = HTTPBearer(auto_error=False)


def get_stores(request: Request) -> Stores:
    return request.app.state.stores


def get_inference_client(request: Request) -> InferenceClient:
    return request.app.state.inference


def get_optional_user_id(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
) -> str | None:
    """User id from a bearer token. Anonymous callers get None; a bad token is rejected."""
    token = credentials.credentials if credentials else None
    if not token:
        return None
    subject = decode_access_token(token)
    if not subject:
        raise AppError(ErrorCode.AUTH_REQUIRED, "Invalid token.")
    set_user_context(subject)
    return subject


def get_client_ip(request: Request) -> str | None:
    return request.client.host if request.client else None
