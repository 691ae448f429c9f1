"""Pydantic models for chat groups."""
from typing import List, Optional

from pydantic import BaseModel, Field


class CreateGroupRequest(BaseModel):
    name: str = ""
    description: str = ""
    avatar: str = ""
    members: List[str] = Field(default_factory=list)


class GroupMember(BaseModel):
    id: str
    name: str
    email: str
    avatar: Optional[str] = None
    isAdmin: bool = False


class GroupRecord(BaseModel):
    id: str
    name: str
    description: str = ""
    avatar: str = ""
    created_by: str
    created_at: float
    updated_at: float
    member_ids: List[str] = Field(default_factory=list)
    admin_ids: List[str] = Field(default_factory=list)


class GroupView(BaseModel):
    id: str
    name: str
    description: str = ""
    avatar: str = ""
    createdBy: str
    createdAt: float
    updatedAt: float
    members: List[GroupMember] = Field(default_factory=list)
    admins: List[str] = Field(default_factory=list)


class LeaveGroupResult(BaseModel):
    groupId: str
    groupDeleted: bool = False
    promotedAdmin: Optional[str] = None
