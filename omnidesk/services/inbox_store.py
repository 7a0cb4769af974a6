"""Inbox reconciliation store.

Holds the ephemeral inbox state (unread counts, typing users, AI suggestion
drafts) and merges three kinds of input:

- local optimistic actions (agent opens a conversation, dismisses a draft),
- server bulk syncs (a full conversation-list fetch), which always win,
- server delta events (realtime pushes), which are idempotent and safe to
  receive twice or out of order.

Every action goes through ``reduce`` and produces a new immutable
``InboxSnapshot``; the previous snapshot is never mutated, so a reader holding
it keeps a consistent view. The store is meant to be driven from a single
event loop and does no locking.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field, replace
from types import MappingProxyType
from typing import Any, Union


logger = logging.getLogger(__name__)


def _frozen(mapping: dict) -> Mapping:
    return MappingProxyType(mapping)


@dataclass(frozen=True)
class InboxSnapshot:
    selected_conversation_id: str | None = None
    unread_count: int = 0
    unread_by_conversation: Mapping[str, int] = field(default_factory=lambda: _frozen({}))
    typing_by_conversation: Mapping[str, frozenset[str]] = field(default_factory=lambda: _frozen({}))
    ai_suggestion_by_conversation: Mapping[str, str] = field(default_factory=lambda: _frozen({}))

    def unread_for(self, conversation_id: str) -> int:
        return self.unread_by_conversation.get(conversation_id, 0)

    def typing_users(self, conversation_id: str) -> frozenset[str]:
        return self.typing_by_conversation.get(conversation_id, frozenset())

    def ai_suggestion(self, conversation_id: str) -> str | None:
        return self.ai_suggestion_by_conversation.get(conversation_id)


# Server bulk sync


@dataclass(frozen=True)
class SyncUnreadFromConversations:
    counts: tuple[tuple[str, int], ...]


# Server delta events


@dataclass(frozen=True)
class ApplyUnreadUpdate:
    conversation_id: str
    count: int


@dataclass(frozen=True)
class SetTyping:
    conversation_id: str
    user_id: str
    is_typing: bool


@dataclass(frozen=True)
class SetAiSuggestion:
    conversation_id: str
    suggestion: str


# Local optimistic actions


@dataclass(frozen=True)
class MarkConversationRead:
    conversation_id: str


@dataclass(frozen=True)
class ClearTypingConversation:
    conversation_id: str


@dataclass(frozen=True)
class ClearAiSuggestion:
    conversation_id: str


@dataclass(frozen=True)
class SelectConversation:
    conversation_id: str | None


@dataclass(frozen=True)
class ResetInbox:
    pass


BulkSync = SyncUnreadFromConversations
DeltaEvent = Union[ApplyUnreadUpdate, SetTyping, SetAiSuggestion]
LocalAction = Union[MarkConversationRead, ClearTypingConversation, ClearAiSuggestion, SelectConversation, ResetInbox]
InboxAction = Union[BulkSync, DeltaEvent, LocalAction]


def _conversation_unread(item: Any) -> tuple[str, int]:
    if isinstance(item, Mapping):
        conversation_id = item.get("id")
        count = item.get("unreadCount", item.get("unread_count", 0))
    else:
        conversation_id = getattr(item, "id", None)
        count = getattr(item, "unread_count", 0)
    if not conversation_id:
        raise ValueError("Conversation entry is missing an id")
    return str(conversation_id), int(count or 0)


def _sync_unread(state: InboxSnapshot, action: SyncUnreadFromConversations) -> InboxSnapshot:
    unread: dict[str, int] = {}
    for conversation_id, count in action.counts:
        unread[conversation_id] = max(0, count)
    return replace(state, unread_by_conversation=_frozen(unread), unread_count=sum(unread.values()))


def _apply_unread(state: InboxSnapshot, action: ApplyUnreadUpdate) -> InboxSnapshot:
    count = max(0, action.count)
    previous = state.unread_by_conversation.get(action.conversation_id, 0)
    if previous == count and action.conversation_id in state.unread_by_conversation:
        return state
    unread = dict(state.unread_by_conversation)
    unread[action.conversation_id] = count
    return replace(
        state,
        unread_by_conversation=_frozen(unread),
        unread_count=max(0, state.unread_count - previous + count),
    )


def _mark_read(state: InboxSnapshot, action: MarkConversationRead) -> InboxSnapshot:
    previous = state.unread_by_conversation.get(action.conversation_id, 0)
    if previous <= 0:
        return state
    unread = dict(state.unread_by_conversation)
    unread[action.conversation_id] = 0
    return replace(
        state,
        unread_by_conversation=_frozen(unread),
        unread_count=max(0, state.unread_count - previous),
    )


def _set_typing(state: InboxSnapshot, action: SetTyping) -> InboxSnapshot:
    current = state.typing_by_conversation.get(action.conversation_id, frozenset())
    if action.is_typing:
        users = current | {action.user_id}
    else:
        users = current - {action.user_id}
    if users == current and (users or action.conversation_id not in state.typing_by_conversation):
        return state
    typing = dict(state.typing_by_conversation)
    if users:
        typing[action.conversation_id] = frozenset(users)
    else:
        typing.pop(action.conversation_id, None)
    return replace(state, typing_by_conversation=_frozen(typing))


def _clear_typing(state: InboxSnapshot, action: ClearTypingConversation) -> InboxSnapshot:
    if action.conversation_id not in state.typing_by_conversation:
        return state
    typing = dict(state.typing_by_conversation)
    del typing[action.conversation_id]
    return replace(state, typing_by_conversation=_frozen(typing))


def _set_suggestion(state: InboxSnapshot, action: SetAiSuggestion) -> InboxSnapshot:
    if not action.suggestion:
        return _clear_suggestion(state, ClearAiSuggestion(action.conversation_id))
    suggestions = dict(state.ai_suggestion_by_conversation)
    suggestions[action.conversation_id] = action.suggestion
    return replace(state, ai_suggestion_by_conversation=_frozen(suggestions))


def _clear_suggestion(state: InboxSnapshot, action: ClearAiSuggestion) -> InboxSnapshot:
    if action.conversation_id not in state.ai_suggestion_by_conversation:
        return state
    suggestions = dict(state.ai_suggestion_by_conversation)
    del suggestions[action.conversation_id]
    return replace(state, ai_suggestion_by_conversation=_frozen(suggestions))


def _select(state: InboxSnapshot, action: SelectConversation) -> InboxSnapshot:
    if state.selected_conversation_id == action.conversation_id:
        return state
    return replace(state, selected_conversation_id=action.conversation_id)


_REDUCERS: dict[type, Callable[[InboxSnapshot, Any], InboxSnapshot]] = {
    SyncUnreadFromConversations: _sync_unread,
    ApplyUnreadUpdate: _apply_unread,
    MarkConversationRead: _mark_read,
    SetTyping: _set_typing,
    ClearTypingConversation: _clear_typing,
    SetAiSuggestion: _set_suggestion,
    ClearAiSuggestion: _clear_suggestion,
    SelectConversation: _select,
    ResetInbox: lambda _state, _action: InboxSnapshot(),
}


def reduce(state: InboxSnapshot, action: InboxAction) -> InboxSnapshot:
    handler = _REDUCERS.get(type(action))
    if handler is None:
        raise TypeError(f"Unsupported inbox action: {type(action).__name__}")
    return handler(state, action)


SnapshotListener = Callable[[InboxSnapshot], None]


class InboxStore:
    def __init__(self, initial: InboxSnapshot | None = None) -> None:
        self._state = initial or InboxSnapshot()
        self._listeners: list[SnapshotListener] = []

    @property
    def state(self) -> InboxSnapshot:
        return self._state

    def dispatch(self, action: InboxAction) -> InboxSnapshot:
        next_state = reduce(self._state, action)
        if next_state is self._state:
            return next_state
        self._state = next_state
        for listener in list(self._listeners):
            try:
                listener(next_state)
            except Exception as exc:
                logger.warning("inbox_store_listener_error action=%s error=%s", type(action).__name__, exc)
        return next_state

    def subscribe(self, listener: SnapshotListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def sync_unread_from_conversations(self, conversations: Iterable[Any]) -> InboxSnapshot:
        counts = tuple(_conversation_unread(item) for item in conversations)
        return self.dispatch(SyncUnreadFromConversations(counts))

    def apply_unread_update(self, conversation_id: str, count: int) -> InboxSnapshot:
        return self.dispatch(ApplyUnreadUpdate(conversation_id, count))

    def mark_conversation_read(self, conversation_id: str) -> InboxSnapshot:
        return self.dispatch(MarkConversationRead(conversation_id))

    def set_typing(self, conversation_id: str, user_id: str, is_typing: bool) -> InboxSnapshot:
        return self.dispatch(SetTyping(conversation_id, user_id, is_typing))

    def clear_typing_conversation(self, conversation_id: str) -> InboxSnapshot:
        return self.dispatch(ClearTypingConversation(conversation_id))

    def set_ai_suggestion(self, conversation_id: str, suggestion: str) -> InboxSnapshot:
        return self.dispatch(SetAiSuggestion(conversation_id, suggestion))

    def clear_ai_suggestion(self, conversation_id: str) -> InboxSnapshot:
        return self.dispatch(ClearAiSuggestion(conversation_id))

    def set_selected_conversation(self, conversation_id: str | None) -> InboxSnapshot:
        return self.dispatch(SelectConversation(conversation_id))

    def reset(self) -> InboxSnapshot:
        return self.dispatch(ResetInbox())
