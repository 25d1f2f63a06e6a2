# app/routers/apikeys.py
from __future__ import annotations

from datetime import datetime, UTC, timedelta

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status
from pydantic import BaseModel, ConfigDict, field_validator
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.db import get_db
from app.models.api_key import ApiKey
from app.models.user import Role, User
from app.security import require_role
from app.services import activity
from app.services.lifecycle import Actor
from app.utils.apikey import gen_key
from app.utils.errors import error_response

router = APIRouter(prefix="/apikeys", tags=["apikeys"])


# ------ Schemas ------

class CreateKeyIn(BaseModel):
    """Issue a key for an existing user; the key inherits the user's role."""
    name: str
    user_id: int
    days_valid: int | None = 90

    @field_validator("name")
    @classmethod
    def name_not_blank(cls, value: str) -> str:
        if not value or not value.strip():
            raise ValueError("name cannot be blank")
        return value.strip()


class ApiKeyCreateOut(BaseModel):
    """The raw key is returned once, at creation."""
    id: int
    name: str
    user_id: int
    role: Role
    key: str
    expires_at: datetime | None


class ApiKeyRead(BaseModel):
    id: int
    name: str
    prefix: str
    user_id: int
    is_active: bool
    created_at: datetime
    expires_at: datetime | None
    last_used_at: datetime | None

    model_config = ConfigDict(from_attributes=True)


# ------ Routes ------

@router.post(
    "",
    response_model=ApiKeyCreateOut,
    status_code=status.HTTP_201_CREATED,
)
def create_api_key(
    payload: CreateKeyIn,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_role(Role.ADMIN)),
) -> ApiKeyCreateOut:
    user = db.get(User, payload.user_id)
    if user is None or not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=error_response("USER_NOT_FOUND", "User not found or inactive."),
        )

    raw, prefix, key_hash = gen_key()
    now = datetime.now(UTC)
    expires_at = now + timedelta(days=payload.days_valid) if payload.days_valid else None

    row = ApiKey(
        name=payload.name,
        prefix=prefix,
        key_hash=key_hash,
        user_id=user.id,
        expires_at=expires_at,
        is_active=True,
    )
    try:
        with db.begin_nested():
            db.add(row)
            db.flush()
    except IntegrityError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=error_response("APIKEY_EXISTS", "Key name already exists."),
        ) from exc

    activity.log(db, actor.user_id, "API Key Created", None, {"api_key_id": row.id, "user_id": user.id})
    db.commit()
    db.refresh(row)

    return ApiKeyCreateOut(
        id=row.id,
        name=row.name,
        user_id=user.id,
        role=user.role,
        key=raw,
        expires_at=row.expires_at,
    )


@router.get(
    "",
    response_model=list[ApiKeyRead],
    dependencies=[Depends(require_role(Role.ADMIN))],
)
def list_apikeys(
    user_id: int | None = Query(default=None),
    active_only: bool = Query(default=True),
    db: Session = Depends(get_db),
) -> list[ApiKey]:
    stmt = select(ApiKey)
    if user_id is not None:
        stmt = stmt.where(ApiKey.user_id == user_id)
    if active_only:
        stmt = stmt.where(ApiKey.is_active.is_(True))
    return list(db.scalars(stmt.order_by(ApiKey.id)).all())


@router.get(
    "/{api_key_id}",
    response_model=ApiKeyRead,
    dependencies=[Depends(require_role(Role.ADMIN))],
)
def get_apikey(api_key_id: int, db: Session = Depends(get_db)) -> ApiKey:
    row = db.get(ApiKey, api_key_id)
    if not row:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=error_response("APIKEY_NOT_FOUND", "API key not found."),
        )
    return row


@router.delete(
    "/{api_key_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    response_class=Response,
)
def revoke_apikey(
    api_key_id: int,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_role(Role.ADMIN)),
) -> Response:
    row = db.get(ApiKey, api_key_id)
    if not row:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=error_response("APIKEY_NOT_FOUND", "API key not found."),
        )

    if row.is_active:
        row.is_active = False
        activity.log(db, actor.user_id, "API Key Revoked", None, {"api_key_id": api_key_id, "name": row.name})
        db.commit()
    return Response(status_code=status.HTTP_204_NO_CONTENT)
