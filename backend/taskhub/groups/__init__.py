from .schemas import CreateGroupRequest, GroupRecord, GroupView, LeaveGroupResult
from .service import GroupService
from .store import GroupStore

__all__ = [
    "CreateGroupRequest",
    "GroupRecord",
    "GroupService",
    "GroupStore",
    "GroupView",
    "LeaveGroupResult",
]
