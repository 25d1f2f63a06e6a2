"""User and MDA administration endpoints."""
import logging

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.db import get_db
from app.models.mda import Mda
from app.models.user import Role, User
from app.schemas.user import MdaCreate, MdaRead, UserCreate, UserRead
from app.security import require_actor, require_role
from app.services import activity
from app.services.lifecycle import Actor
from app.utils.errors import error_response

router = APIRouter(tags=["users"])
logger = logging.getLogger(__name__)


@router.post(
    "/users",
    response_model=UserRead,
    status_code=status.HTTP_201_CREATED,
)
def create_user(
    payload: UserCreate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_role(Role.ADMIN)),
) -> User:
    """Create a portal user with exactly one role."""

    if payload.role_scope_id is not None and db.get(Mda, payload.role_scope_id) is None:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=error_response("UNKNOWN_MDA", "role_scope_id does not match an MDA."),
        )

    user = User(**payload.model_dump())
    try:
        with db.begin_nested():
            db.add(user)
            db.flush()
    except IntegrityError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=error_response("USER_CREATE_FAILED", "Could not create user."),
        ) from exc

    activity.log(
        db,
        actor.user_id,
        "User Created",
        None,
        {"user_id": user.id, "username": user.username, "email": user.email, "role": user.role.value},
    )
    db.commit()
    db.refresh(user)
    logger.info("User created", extra={"user_id": user.id, "role": user.role.value})
    return user


@router.get(
    "/users/{user_id}",
    response_model=UserRead,
)
def get_user(
    user_id: int,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_role(Role.ADMIN)),
) -> User:
    user = db.get(User, user_id)
    if not user:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=error_response("USER_NOT_FOUND", "User not found."))
    return user


@router.post(
    "/mdas",
    response_model=MdaRead,
    status_code=status.HTTP_201_CREATED,
)
def create_mda(
    payload: MdaCreate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_role(Role.ADMIN)),
) -> Mda:
    mda = Mda(code=payload.code.strip().upper(), name=payload.name.strip())
    try:
        with db.begin_nested():
            db.add(mda)
            db.flush()
    except IntegrityError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=error_response("MDA_EXISTS", "MDA code already exists."),
        ) from exc
    activity.log(db, actor.user_id, "MDA Created", None, {"mda_id": mda.id, "code": mda.code})
    db.commit()
    db.refresh(mda)
    return mda


@router.get("/mdas", response_model=list[MdaRead])
def list_mdas(
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_actor),
):
    return list(db.scalars(select(Mda).order_by(Mda.code)).all())
