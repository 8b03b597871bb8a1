"""User listing and presence status routes."""
from typing import List

from fastapi import APIRouter, Depends, HTTPException
from starlette.concurrency import run_in_threadpool

from . import schemas
from .auth import get_current_user_id
from .realtime import ChannelServer, get_channel
from .store import UserDirectory, get_user_directory

router = APIRouter(prefix="/users", tags=["users"])


@router.get("", response_model=List[schemas.UserOut])
async def list_users(directory: UserDirectory = Depends(get_user_directory), _: str = Depends(get_current_user_id)):
    return await run_in_threadpool(directory.list_users)


@router.get("/status/{user_id}", response_model=schemas.UserStatusOut)
async def get_user_status(
    user_id: str,
    directory: UserDirectory = Depends(get_user_directory),
    channel: ChannelServer = Depends(get_channel),
):
    user = await run_in_threadpool(directory.find_by_id, user_id)
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    # The live registry decides online; storage only remembers when the user was last seen.
    is_online = channel.is_online(user_id)
    last_seen = None if is_online else await run_in_threadpool(directory.last_seen, user_id)
    return schemas.UserStatusOut(user_id=user.id, username=user.username, is_online=is_online, last_seen=last_seen)


@router.get("/{user_id}", response_model=schemas.UserOut)
async def get_user(
    user_id: str, directory: UserDirectory = Depends(get_user_directory), _: str = Depends(get_current_user_id)
):
    user = await run_in_threadpool(directory.find_by_id, user_id)
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    return user
