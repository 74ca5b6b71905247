# chatdesk/api/users.py
import time
from typing import Literal, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from chatdesk.api.responses import get_store, ok
from chatdesk.db import ChatStore, UserNotFound
from chatdesk.db.store import AVATAR_URL

router = APIRouter(prefix="/api", tags=["users"])


# --- Schemas
class UserOut(BaseModel):
    id: int
    name: str
    avatar: Optional[str]
    type: str
    created_at: Optional[str]
    class Config:
        from_attributes = True

class UserRef(BaseModel):
    user_id: int = Field(alias="userId")

class UserIdIn(BaseModel):
    id: int

class UserCreate(BaseModel):
    name: str = Field(min_length=1)
    avatar: Optional[str] = None
    type: Literal["user", "bot"] = "bot"

class UserUpdate(BaseModel):
    id: int
    name: str = Field(min_length=1)
    avatar: Optional[str] = None


@router.post("/users")
def list_users(store: ChatStore = Depends(get_store)):
    return ok([UserOut.model_validate(u).model_dump() for u in store.get_users()])

@router.post("/user/info")
def user_info(body: UserRef, store: ChatStore = Depends(get_store)):
    user = store.get_user(body.user_id)
    if user is None:
        raise UserNotFound(f"user {body.user_id} not found")
    return ok(UserOut.model_validate(user).model_dump())

@router.post("/user/add")
def add_user(body: UserCreate, store: ChatStore = Depends(get_store)):
    avatar = body.avatar or AVATAR_URL.format(seed=int(time.time() * 1000))
    return ok({"id": store.add_user(body.name, avatar, body.type)})

@router.post("/user/update")
def update_user(body: UserUpdate, store: ChatStore = Depends(get_store)):
    avatar = body.avatar
    if avatar is None:
        user = store.get_user(body.id)
        if user is None:
            raise UserNotFound(f"user {body.id} not found")
        avatar = user.avatar
    store.update_user(body.id, body.name, avatar)
    return ok()

@router.post("/user/delete")
def delete_user(body: UserIdIn, store: ChatStore = Depends(get_store)):
    return ok({"deleted": store.delete_user(body.id)})
