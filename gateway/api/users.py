"""JSON CRUD over local users. Requires a signed-in session."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from gateway.auth.deps import require_session
from gateway.auth.errors import DuplicateEmailError
from gateway.store import get_identity_store

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/users", tags=["users"], dependencies=[Depends(require_session)])


class UserCreateRequest(BaseModel):
    name: str
    email: Optional[str] = None
    avatar_url: str = ""


class UserUpdateRequest(BaseModel):
    name: Optional[str] = None
    email: Optional[str] = None
    avatar_url: Optional[str] = None


def _normalize_email(email: Optional[str]) -> Optional[str]:
    if email is None:
        return None
    e = email.strip().lower()
    if e and "@" not in e:
        raise HTTPException(status_code=422, detail="Invalid email")
    return e


@router.get("")
def list_users() -> List[Dict[str, Any]]:
    return [u.to_dict() for u in get_identity_store().list_users()]


@router.post("", status_code=201)
def create_user(req: UserCreateRequest) -> JSONResponse:
    name = req.name.strip()
    if not name:
        raise HTTPException(status_code=422, detail="Name is required")
    try:
        user = get_identity_store().create_user(
            name=name, email=_normalize_email(req.email) or None, avatar_url=req.avatar_url.strip()
        )
    except DuplicateEmailError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))
    logger.info("Created user_id=%s", user.id)
    return JSONResponse(status_code=201, content=user.to_dict())


@router.get("/{user_id}")
def get_user(user_id: int) -> Dict[str, Any]:
    user = get_identity_store().get_user(user_id)
    if user is None:
        raise HTTPException(status_code=404, detail="User not found")
    return user.to_dict()


@router.patch("/{user_id}")
def update_user(user_id: int, req: UserUpdateRequest) -> Dict[str, Any]:
    fields = req.model_dump(exclude_unset=True)
    if "name" in fields and fields["name"] is not None and not fields["name"].strip():
        raise HTTPException(status_code=422, detail="Name cannot be empty")
    try:
        user = get_identity_store().update_user(
            user_id,
            name=fields["name"].strip() if fields.get("name") is not None else None,
            email=_normalize_email(fields.get("email")),
            avatar_url=fields.get("avatar_url"),
        )
    except DuplicateEmailError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))
    if user is None:
        raise HTTPException(status_code=404, detail="User not found")
    return user.to_dict()


@router.delete("/{user_id}")
def delete_user(user_id: int) -> Dict[str, Any]:
    if not get_identity_store().delete_user(user_id):
        raise HTTPException(status_code=404, detail="User not found")
    logger.info("Deleted user_id=%s", user_id)
    return {"ok": True}
