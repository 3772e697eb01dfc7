"""Per-user conversation states."""

from dataclasses import dataclass, field
from enum import StrEnum
from typing import Literal
from uuid import UUID


class ConversationKind(StrEnum):
    """Discriminant for conversation states."""

    IDLE = "idle"
    AWAITING_SESSION_ID = "awaiting_session_id"
    AWAITING_ACCESS_KEY = "awaiting_access_key"
    IN_SESSION = "in_session"
    BATCH_COLLECTING = "batch_collecting"
    AWAITING_BATCH_DESCRIPTION = "awaiting_batch_description"


@dataclass(frozen=True)
class Idle:
    """No active session."""

    kind: Literal[ConversationKind.IDLE] = field(
        default=ConversationKind.IDLE, init=False
    )


@dataclass(frozen=True)
class AwaitingSessionId:
    """User asked to join and must reply with a session id."""

    kind: Literal[ConversationKind.AWAITING_SESSION_ID] = field(
        default=ConversationKind.AWAITING_SESSION_ID, init=False
    )


@dataclass(frozen=True)
class AwaitingAccessKey:
    """User picked a session and must reply with its access key."""

    session_db_id: UUID
    session_id: str
    description: str
    kind: Literal[ConversationKind.AWAITING_ACCESS_KEY] = field(
        default=ConversationKind.AWAITING_ACCESS_KEY, init=False
    )


@dataclass(frozen=True)
class InSession:
    """User is authenticated into a session and may upload."""

    session_db_id: UUID
    session_id: str
    kind: Literal[ConversationKind.IN_SESSION] = field(
        default=ConversationKind.IN_SESSION, init=False
    )


@dataclass(frozen=True)
class BatchCollecting:
    """User is collecting files for a batch run."""

    session_db_id: UUID
    session_id: str
    kind: Literal[ConversationKind.BATCH_COLLECTING] = field(
        default=ConversationKind.BATCH_COLLECTING, init=False
    )


@dataclass(frozen=True)
class AwaitingBatchDescription:
    """Batch collection ended; waiting for the shared description."""

    session_db_id: UUID
    session_id: str
    kind: Literal[ConversationKind.AWAITING_BATCH_DESCRIPTION] = field(
        default=ConversationKind.AWAITING_BATCH_DESCRIPTION, init=False
    )


ConversationState = (
    Idle
    | AwaitingSessionId
    | AwaitingAccessKey
    | InSession
    | BatchCollecting
    | AwaitingBatchDescription
)

SessionBound = InSession | BatchCollecting | AwaitingBatchDescription
