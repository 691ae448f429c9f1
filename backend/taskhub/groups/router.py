"""Group REST endpoints.

Endpoints:
    POST /groups                          Create a group
    GET  /groups                          Groups of the caller
    GET  /groups/{group_id}               One group (members only)
    POST /groups/{group_id}/leave         Leave a group
    GET  /groups/{group_id}/messages      Group history (marks seen)
    POST /groups/{group_id}/delete-messages  Delete group history for the caller
"""
from fastapi import APIRouter, Depends

from taskhub.auth import require_messaging_user
from taskhub.responses import success
from taskhub.services import get_services
from taskhub.users import UserRecord

from .schemas import CreateGroupRequest

router = APIRouter(prefix="/groups", tags=["groups"])


@router.post("", status_code=201)
async def create_group(
    body: CreateGroupRequest,
    user: UserRecord = Depends(require_messaging_user),
) -> dict:
    return success(await get_services().groups.create(user, body))


@router.get("")
async def list_groups(user: UserRecord = Depends(require_messaging_user)) -> dict:
    return success(get_services().groups.list_for_user(user.id))


@router.get("/{group_id}")
async def get_group(group_id: str, user: UserRecord = Depends(require_messaging_user)) -> dict:
    return success(get_services().groups.get_for_member(group_id, user.id))


@router.post("/{group_id}/leave")
async def leave_group(group_id: str, user: UserRecord = Depends(require_messaging_user)) -> dict:
    return success(get_services().groups.leave(user.id, group_id), message="Left group")


@router.get("/{group_id}/messages")
async def group_messages(group_id: str, user: UserRecord = Depends(require_messaging_user)) -> dict:
    return success(await get_services().messaging.get_group_messages(user.id, group_id))


@router.post("/{group_id}/delete-messages")
async def delete_group_messages(group_id: str, user: UserRecord = Depends(require_messaging_user)) -> dict:
    result = await get_services().messaging.soft_delete_group_messages(user.id, group_id)
    return success(result, message="Group messages deleted")
