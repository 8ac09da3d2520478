"""会话列表的持久化。

键按当前用户加命名空间：``chat-sessions-{user_id}`` 与 ``current-session-{user_id}``，
未登录时使用 ``guest``。时间统一序列化为带 Z 后缀的 UTC ISO-8601 字符串。
"""

import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Union

from chat_core.domain.conversation import KeyValueStore, UserIdentity
from chat_core.domain.models import Conversation, Message
from chat_core.infrastructure.logging.logger import log_event
from chat_core.session.store import SessionSnapshot


def _iso(dt: datetime) -> str:
    return dt.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def _parse_dt(value: str) -> datetime:
    return datetime.fromisoformat(str(value).replace("Z", "+00:00"))


def message_to_dict(message: Message) -> Dict[str, Any]:
    return {
        "id": message.id,
        "role": message.role,
        "content": message.content,
        "timestamp": _iso(message.timestamp),
    }


def conversation_to_dict(conv: Conversation) -> Dict[str, Any]:
    return {
        "id": conv.id,
        "title": conv.title,
        "messages": [message_to_dict(m) for m in conv.messages],
        "created_at": _iso(conv.created_at),
        "updated_at": _iso(conv.updated_at),
    }


def conversation_from_dict(data: Dict[str, Any]) -> Conversation:
    messages = tuple(
        Message(
            id=m["id"],
            role=m["role"],
            content=m.get("content") or "",
            timestamp=_parse_dt(m["timestamp"]),
        )
        for m in data.get("messages") or []
    )
    return Conversation(
        id=data["id"],
        title=data.get("title") or "",
        messages=messages,
        created_at=_parse_dt(data["created_at"]),
        updated_at=_parse_dt(data["updated_at"]),
    )


class SessionPersistence:
    """按用户命名空间读写会话列表。

    ``user`` 可以是固定的 UserIdentity，也可以是返回当前用户的无参函数。命名空间在每次
    ``load`` 时重新解析，``save`` 始终写回最近一次 ``load`` 的命名空间，因此用户切换后
    在重新加载之前，旧快照不会写进新用户的键。
    """

    def __init__(
        self,
        store: KeyValueStore,
        user: Union[Optional[UserIdentity], Callable[[], Optional[UserIdentity]]] = None,
    ):
        self._store = store
        self._user = user
        self._namespace = self._resolve_namespace()

    def _resolve_namespace(self) -> str:
        user = self._user() if callable(self._user) else self._user
        return user.id if user else "guest"

    @property
    def namespace(self) -> str:
        return self._namespace

    @property
    def user_changed(self) -> bool:
        return self._resolve_namespace() != self._namespace

    @property
    def sessions_key(self) -> str:
        return f"chat-sessions-{self._namespace}"

    @property
    def current_session_key(self) -> str:
        return f"current-session-{self._namespace}"

    def load(self) -> SessionSnapshot:
        self._namespace = self._resolve_namespace()
        raw_items = self._store.get(self.sessions_key, []) or []
        conversations: List[Conversation] = []
        for item in raw_items:
            try:
                conversations.append(conversation_from_dict(item))
            except (KeyError, TypeError, ValueError) as e:
                log_event(
                    logging.WARNING,
                    "Skipped unreadable conversation",
                    {"namespace": self._namespace},
                    error=str(e),
                )
        selected = self._store.get(self.current_session_key)
        if selected not in {c.id for c in conversations}:
            selected = None
        return SessionSnapshot(conversations=tuple(conversations), selected_id=selected)

    def save(self, snapshot: SessionSnapshot) -> None:
        # 进行中的消息以当前内容落盘，重启后无法续流，按已完成处理
        self._store.set(self.sessions_key, [conversation_to_dict(c) for c in snapshot.conversations])
        self._store.set(self.current_session_key, snapshot.selected_id)
