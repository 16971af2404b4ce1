from .task import (
    Task,
    TaskDraft,
    TaskAction,
    TaskStatus,
    TaskPriority,
    DraftStatus,
    DraftStep,
    DeadlineChoice,
    TaskActionType,
    TextCapture,
    TextCaptureKind,
)
from .workspace import (
    Workspace,
    WorkspaceMember,
    WorkspaceInvite,
    WorkspaceStatus,
    MemberRole,
    MemberStatus,
    MemberProfile,
)
from .results import (
    ResultStatus,
    DraftResult,
    CreateFromDraftResult,
    FinalizeResult,
    TransitionResult,
    ReassignResult,
    TaskListResult,
    EnsureWorkspaceResult,
    AcceptInviteResult,
    MemberResult,
    OwnerResult,
    InviteResult,
    WorkspaceArchiveResult,
    TextRoute,
    TextRouteResult,
)

__all__ = [
    "Task",
    "TaskDraft",
    "TaskAction",
    "TaskStatus",
    "TaskPriority",
    "DraftStatus",
    "DraftStep",
    "DeadlineChoice",
    "TaskActionType",
    "TextCapture",
    "TextCaptureKind",
    "Workspace",
    "WorkspaceMember",
    "WorkspaceInvite",
    "WorkspaceStatus",
    "MemberRole",
    "MemberStatus",
    "MemberProfile",
    "ResultStatus",
    "DraftResult",
    "CreateFromDraftResult",
    "FinalizeResult",
    "TransitionResult",
    "ReassignResult",
    "TaskListResult",
    "EnsureWorkspaceResult",
    "AcceptInviteResult",
    "MemberResult",
    "OwnerResult",
    "InviteResult",
    "WorkspaceArchiveResult",
    "TextRoute",
    "TextRouteResult",
]
