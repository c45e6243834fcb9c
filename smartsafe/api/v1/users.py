import logging

from fastapi import APIRouter, Depends, HTTPException, status

from smartsafe.core.auth import require_admin
from smartsafe.core.config import Settings
from smartsafe.core.deps import get_settings_dep, get_store
from smartsafe.core.security import hash_secret
from smartsafe.schemas.user import AdminInit, UserCreate, UserList, UserOut, UserUpdate
from smartsafe.services.store import SafeStore

logger = logging.getLogger(__name__)

router = APIRouter()
admin_router = APIRouter()


@admin_router.post("/init", response_model=UserOut, status_code=status.HTTP_201_CREATED)
async def init_admin(
    payload: AdminInit,
    store: SafeStore = Depends(get_store),
    settings: Settings = Depends(get_settings_dep),
):
    if await store.any_admin():
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Admin user already exists")
    if await store.get_user_by_email(payload.email):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Email already registered")
    password_hash = await hash_secret(payload.password, settings)
    admin = await store.create_user(payload.name, payload.email, password_hash, is_admin=True)
    logger.info("Initial admin %s created", admin.id)
    return UserOut.from_user(admin)


@router.get("", response_model=UserList, dependencies=[Depends(require_admin)])
async def list_users(store: SafeStore = Depends(get_store)):
    users = await store.list_users()
    return UserList(users=[UserOut.from_user(u) for u in users])


@router.post("", response_model=UserOut, status_code=status.HTTP_201_CREATED, dependencies=[Depends(require_admin)])
async def create_user(
    payload: UserCreate,
    store: SafeStore = Depends(get_store),
    settings: Settings = Depends(get_settings_dep),
):
    if await store.get_user_by_email(payload.email):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Email already registered")
    password_hash = await hash_secret(payload.password, settings)
    user = await store.create_user(payload.name, payload.email, password_hash, is_admin=payload.is_admin)
    return UserOut.from_user(user)


@router.patch("/{user_id}", response_model=UserOut, dependencies=[Depends(require_admin)])
async def update_user(
    user_id: str,
    payload: UserUpdate,
    store: SafeStore = Depends(get_store),
    settings: Settings = Depends(get_settings_dep),
):
    changes = payload.model_dump(exclude_unset=True)
    password = changes.pop("password", None)
    if password:
        changes["password_hash"] = await hash_secret(password, settings)
    if "email" in changes:
        existing = await store.get_user_by_email(changes["email"])
        if existing is not None and existing.id != user_id:
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Email already registered")
    user = await store.update_user(user_id, changes)
    if user is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
    return UserOut.from_user(user)


@router.delete("/{user_id}", dependencies=[Depends(require_admin)])
async def delete_user(user_id: str, store: SafeStore = Depends(get_store)):
    if not await store.delete_user(user_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
    return {"success": True}
