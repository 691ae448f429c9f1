"""Group membership service.

Groups feed the realtime authorization boundary: the REST layer checks
membership here before returning any persisted group data.
"""
import logging
import time
import uuid
from typing import Callable, List, Sequence

from taskhub.errors import ForbiddenError, NotFoundError, ValidationError
from taskhub.realtime.events import Broadcaster, ServerEvent, user_room
from taskhub.users import UserDirectory, UserRecord

from .schemas import CreateGroupRequest, GroupMember, GroupRecord, GroupView, LeaveGroupResult
from .store import GroupStore

logger = logging.getLogger(__name__)

MIN_INVITED_MEMBERS = 2


class GroupService:
    def __init__(
        self,
        store: GroupStore,
        users: UserDirectory,
        broadcaster: Broadcaster,
        restricted_roles: Sequence[str] = ("admin",),
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._store = store
        self._users = users
        self._broadcaster = broadcaster
        self._restricted_roles = list(restricted_roles)
        self._clock = clock

    async def create(self, creator: UserRecord, request: CreateGroupRequest) -> GroupView:
        """Create a group; the creator becomes member and admin.

        Raises:
            ValidationError: Missing name, fewer than two other members, or
                unknown member ids.
            ForbiddenError: A member's role is excluded from messaging.
        """
        name = request.name.strip()
        if not name:
            raise ValidationError("Group name is required")

        invited: List[str] = []
        for member_id in request.members:
            if member_id and member_id != creator.id and member_id not in invited:
                invited.append(member_id)
        if len(invited) < MIN_INVITED_MEMBERS:
            raise ValidationError(f"A group needs at least {MIN_INVITED_MEMBERS} members")

        found = {u.id: u for u in self._users.get_many(invited)}
        missing = [m for m in invited if m not in found]
        if missing:
            raise ValidationError(f"Unknown members: {', '.join(missing)}")
        if any(found[m].role in self._restricted_roles for m in invited):
            raise ForbiddenError("Cannot add users with a restricted role to a group")

        now = self._clock()
        record = self._store.create(GroupRecord(
            id=str(uuid.uuid4()),
            name=name,
            description=request.description.strip(),
            avatar=request.avatar,
            created_by=creator.id,
            created_at=now,
            updated_at=now,
            member_ids=[creator.id, *invited],
            admin_ids=[creator.id],
        ))
        logger.info(f"[Groups] {creator.id} created group {record.id} with {len(record.member_ids)} members")

        view = self.to_view(record)
        payload = {"group": view.model_dump(), "creatorId": creator.id}
        for member_id in record.member_ids:
            try:
                await self._broadcaster.publish(user_room(member_id), ServerEvent.GROUP_CREATED, payload)
            except Exception as e:
                logger.warning(f"[Groups] Failed to notify {member_id} of group {record.id}: {e}")
        return view

    def list_for_user(self, user_id: str) -> List[GroupView]:
        return [self.to_view(g) for g in self._store.list_for_user(user_id)]

    def group_ids_for_user(self, user_id: str) -> List[str]:
        return self._store.group_ids_for_user(user_id)

    def require_member(self, group_id: str, user_id: str) -> GroupRecord:
        """Return the group if ``user_id`` belongs to it.

        Raises:
            NotFoundError: The group does not exist.
            ForbiddenError: The user is not a member.
        """
        group = self._store.get(group_id)
        if group is None:
            raise NotFoundError("Group not found")
        if user_id not in group.member_ids:
            raise ForbiddenError("You are not a member of this group")
        return group

    def get_for_member(self, group_id: str, user_id: str) -> GroupView:
        return self.to_view(self.require_member(group_id, user_id))

    def is_member(self, group_id: str, user_id: str) -> bool:
        return self._store.is_member(group_id, user_id)

    def touch(self, group_id: str) -> None:
        self._store.touch(group_id, self._clock())

    def leave(self, user_id: str, group_id: str) -> LeaveGroupResult:
        """Remove the caller from a group.

        An emptied group is deleted; a group left without admins promotes its
        longest-standing remaining member.
        """
        group = self._store.get(group_id)
        if group is None:
            raise NotFoundError("Group not found")
        if user_id not in group.member_ids:
            raise ValidationError("You are not a member of this group")

        self._store.remove_member(group_id, user_id)
        remaining = [m for m in group.member_ids if m != user_id]
        if not remaining:
            self._store.delete(group_id)
            return LeaveGroupResult(groupId=group_id, groupDeleted=True)

        promoted = None
        if not [a for a in group.admin_ids if a != user_id]:
            promoted = remaining[0]
            self._store.set_admin(group_id, promoted)
            logger.info(f"[Groups] Promoted {promoted} to admin of {group_id}")
        logger.info(f"[Groups] {user_id} left group {group_id}")
        return LeaveGroupResult(groupId=group_id, promotedAdmin=promoted)

    def to_view(self, group: GroupRecord) -> GroupView:
        users = {u.id: u for u in self._users.get_many(group.member_ids)}
        members = [
            GroupMember(
                id=uid,
                name=users[uid].name,
                email=users[uid].email,
                avatar=users[uid].avatar,
                isAdmin=uid in group.admin_ids,
            )
            for uid in group.member_ids
            if uid in users
        ]
        return GroupView(
            id=group.id,
            name=group.name,
            description=group.description,
            avatar=group.avatar,
            createdBy=group.created_by,
            createdAt=group.created_at,
            updatedAt=group.updated_at,
            members=members,
            admins=list(group.admin_ids),
        )
