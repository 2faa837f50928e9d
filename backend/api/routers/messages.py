import logging
from fastapi import APIRouter, Depends, HTTPException

from api.deps import get_services, get_session_user, user_key
from api.schemas import MessageCreate
from core.exceptions import AuthorizationError
from core.models import Message, Role, SessionUser
from core.services import Services

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/messages", tags=["messages"])


@router.get("")
async def list_messages(
    services: Services = Depends(get_services),
    user: SessionUser = Depends(get_session_user),
):
    """Messages the caller sent or received"""
    messages = await services.data.get_messages(user_key(user))
    return {"messages": [m.to_dict() for m in messages]}


@router.post("", status_code=201)
async def send_message(
    message: MessageCreate,
    services: Services = Depends(get_services),
    user: SessionUser = Depends(get_session_user),
):
    try:
        created = await services.data.create_message(
            {**message.model_dump(), "senderId": user_key(user), "isRead": False}
        )
        return {"message_id": created.id, "message": created.to_dict()}

    except Exception as e:
        logger.error(f"Error sending message: {e}")
        raise HTTPException(status_code=500, detail=str(e))


async def _get_own_message(services: Services, user: SessionUser, message_id: str, action: str) -> Message:
    """The message if the caller sent or received it (admins may touch any)"""
    message = await services.data.get_message(message_id)
    if not message:
        raise HTTPException(status_code=404, detail="Message not found")
    if user.role != Role.ADMIN.value and user_key(user) not in (message.sender_id, message.receiver_id):
        raise AuthorizationError(f"Not allowed to {action} this message")
    return message


@router.post("/{message_id}/read")
async def mark_as_read(
    message_id: str,
    services: Services = Depends(get_services),
    user: SessionUser = Depends(get_session_user),
):
    await _get_own_message(services, user, message_id, "update")
    if not await services.data.mark_message_as_read(message_id):
        raise HTTPException(status_code=404, detail="Message not found")
    return {"message": "Message marked as read"}


@router.delete("/{message_id}")
async def delete_message(
    message_id: str,
    services: Services = Depends(get_services),
    user: SessionUser = Depends(get_session_user),
):
    await _get_own_message(services, user, message_id, "delete")
    await services.data.delete_message(message_id)
    return {"message": "Message deleted"}
