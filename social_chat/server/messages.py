"""Message-related API routes."""
from typing import Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, Request, UploadFile
from fastapi.responses import FileResponse
from starlette.concurrency import run_in_threadpool

from . import schemas
from ..shared.utils import is_valid_identifier
from .auth import get_current_user_id
from .logging_config import configure_logging
from .media import URL_PREFIX, discard_files, resolve_reference, save_upload
from .realtime import ChannelServer, get_channel
from .store import MessageStore, UserDirectory, UserNotFound, get_message_store, get_user_directory

router = APIRouter(prefix="/messages", tags=["messages"])
uploads_router = APIRouter(tags=["uploads"])
logger = configure_logging("messages")


def _check_participants(sender: str, receiver: str) -> None:
    if not is_valid_identifier(sender) or not is_valid_identifier(receiver):
        raise HTTPException(status_code=400, detail="Invalid sender or receiver id")


async def _publish(channel: ChannelServer, sender: str, receiver: str, **fields) -> schemas.MessageOut:
    try:
        return await channel.publish_message(sender, receiver, **fields)
    except UserNotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except Exception as exc:
        logger.exception(
            "MESSAGE_PERSIST_FAILED source=rest sender_id=%s receiver_id=%s client_temp_id=%s",
            sender,
            receiver,
            fields.get("client_temp_id"),
        )
        raise HTTPException(status_code=500, detail="Failed to save message") from exc


@router.post("", status_code=201, response_model=schemas.MessageOut)
async def send_message(
    payload: schemas.MessageCreate,
    current_user_id: str = Depends(get_current_user_id),
    channel: ChannelServer = Depends(get_channel),
):
    _check_participants(payload.sender, payload.receiver)
    if payload.sender != current_user_id:
        raise HTTPException(status_code=403, detail="Cannot send messages on behalf of another user")
    if not payload.text.strip():
        raise HTTPException(status_code=400, detail="Message must contain text or an attachment")
    return await _publish(
        channel,
        payload.sender,
        payload.receiver,
        text=payload.text,
        client_temp_id=payload.client_temp_id,
    )


@router.post("/upload", status_code=201, response_model=schemas.MessageOut)
async def send_message_with_attachments(
    request: Request,
    receiver: str = Form(...),
    text: str = Form(""),
    client_temp_id: Optional[str] = Form(None),
    image: Optional[UploadFile] = File(None),
    voice: Optional[UploadFile] = File(None),
    current_user_id: str = Depends(get_current_user_id),
    channel: ChannelServer = Depends(get_channel),
):
    _check_participants(current_user_id, receiver)
    if not text.strip() and image is None and voice is None:
        raise HTTPException(status_code=400, detail="Message must contain text or an attachment")
    if image is not None and not (image.content_type or "").startswith("image/"):
        raise HTTPException(status_code=400, detail="Attached image must have an image/* content type")

    settings = request.app.state.settings
    image_ref = voice_ref = None
    try:
        if image is not None:
            image_ref = await save_upload(image, "image", settings.upload_dir, settings.max_upload_bytes)
        if voice is not None:
            voice_ref = await save_upload(voice, "voice", settings.upload_dir, settings.max_upload_bytes)
        record = await _publish(
            channel,
            current_user_id,
            receiver,
            text=text,
            image=image_ref,
            voice=voice_ref,
            client_temp_id=client_temp_id,
        )
    except HTTPException:
        discard_files(settings.upload_dir, image_ref, voice_ref)
        raise
    # A repeated client_temp_id returns the first record; its files are the ones kept.
    kept = {record.image, record.voice}
    discard_files(settings.upload_dir, *(ref for ref in (image_ref, voice_ref) if ref not in kept))
    return record


@router.get("/{user_a}/{user_b}", response_model=schemas.ConversationOut)
async def get_conversation(
    user_a: str,
    user_b: str,
    current_user_id: str = Depends(get_current_user_id),
    store: MessageStore = Depends(get_message_store),
    directory: UserDirectory = Depends(get_user_directory),
):
    _check_participants(user_a, user_b)
    if current_user_id not in (user_a, user_b):
        raise HTTPException(status_code=403, detail="Not a participant of this conversation")
    messages = await run_in_threadpool(store.list_between, user_a, user_b)
    receiver = await run_in_threadpool(directory.find_by_id, user_b)
    return schemas.ConversationOut(receiver=receiver, messages=messages)


@router.delete("/{message_id}", response_model=schemas.MessageDeletedOut)
async def delete_message(
    message_id: str,
    current_user_id: str = Depends(get_current_user_id),
    store: MessageStore = Depends(get_message_store),
    channel: ChannelServer = Depends(get_channel),
):
    if not is_valid_identifier(message_id):
        raise HTTPException(status_code=400, detail="Invalid message id")
    message = await run_in_threadpool(store.find_by_id, message_id)
    if message is None:
        raise HTTPException(status_code=404, detail="Message not found")
    if message.sender != current_user_id:
        raise HTTPException(status_code=403, detail="Only the sender can delete a message")

    deleted = await channel.delete_message(message_id)
    if deleted is None:
        raise HTTPException(status_code=404, detail="Message not found")
    return schemas.MessageDeletedOut(id=deleted.id, client_temp_id=deleted.client_temp_id)


@uploads_router.get(URL_PREFIX + "{name}")
def get_upload(name: str, request: Request):
    path = resolve_reference(URL_PREFIX + name, request.app.state.settings.upload_dir)
    if path is None or not path.is_file():
        raise HTTPException(status_code=404, detail="Not found")
    return FileResponse(path)
