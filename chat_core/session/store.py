"""会话存储。

SessionStore 是纯内存的状态容器，持有有序的会话列表和当前选中的会话 ID。
每个操作都生成一个新的 SessionSnapshot 替换旧快照，已经交给 UI 的快照永远不会被原地修改，
因此流式更新进行中也可以安全地读取。

所有操作都以 ID 为键：对不存在的会话或消息的操作直接忽略，
这样即使会话在流式输出过程中被删除，后续的增量也只是无操作。

会话列表顺序：新建的会话插入到最前面（最新创建的在前），之后的更新不会重新排序。
"""

from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Callable, Iterable, Optional, Tuple
from uuid import uuid4

from chat_core.domain.exceptions import ConflictError
from chat_core.domain.models import Conversation, Message


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id(prefix: str) -> str:
    return f"{prefix}-{uuid4().hex}"


@dataclass(frozen=True)
class SessionSnapshot:
    conversations: Tuple[Conversation, ...] = ()
    selected_id: Optional[str] = None

    def get(self, conversation_id: Optional[str]) -> Optional[Conversation]:
        if conversation_id is None:
            return None
        for conv in self.conversations:
            if conv.id == conversation_id:
                return conv
        return None

    @property
    def selected(self) -> Optional[Conversation]:
        return self.get(self.selected_id)


class SessionStore:
    def __init__(self, snapshot: Optional[SessionSnapshot] = None, clock: Callable[[], datetime] = _utcnow):
        self._snapshot = snapshot or SessionSnapshot()
        self._clock = clock

    @property
    def snapshot(self) -> SessionSnapshot:
        return self._snapshot

    @property
    def selected_id(self) -> Optional[str]:
        return self._snapshot.selected_id

    def list_conversations(self) -> Tuple[Conversation, ...]:
        return self._snapshot.conversations

    def get_conversation(self, conversation_id: str) -> Optional[Conversation]:
        return self._snapshot.get(conversation_id)

    def replace_snapshot(self, snapshot: SessionSnapshot) -> None:
        self._snapshot = snapshot

    def create_conversation(self, title: str = "", select: bool = True) -> str:
        now = self._clock()
        conv = Conversation(id=new_id("c"), title=title, messages=(), created_at=now, updated_at=now)
        self._snapshot = SessionSnapshot(
            conversations=(conv,) + self._snapshot.conversations,
            selected_id=conv.id if select else self._snapshot.selected_id,
        )
        return conv.id

    def select(self, conversation_id: Optional[str]) -> None:
        if conversation_id is not None and self._snapshot.get(conversation_id) is None:
            return
        self._snapshot = replace(self._snapshot, selected_id=conversation_id)

    def append_message(self, conversation_id: str, message: Message) -> None:
        self.append_messages(conversation_id, [message])

    def append_messages(self, conversation_id: str, messages: Iterable[Message], title: Optional[str] = None) -> None:
        """原子地追加多条消息（可选同时改标题），只产生一次快照更新。"""

        new_msgs = tuple(messages)

        def apply(conv: Conversation) -> Conversation:
            pending = [m for m in new_msgs if m.pending]
            if len(pending) > 1 or (pending and conv.pending_message is not None):
                raise ConflictError(
                    code="PENDING_MESSAGE_EXISTS",
                    message="会话中已有正在生成的消息",
                    http_status=409,
                    conversation_id=conv.id,
                )
            return replace(
                conv,
                title=conv.title if title is None else title,
                messages=conv.messages + new_msgs,
                updated_at=self._clock(),
            )

        self._update(conversation_id, apply)

    def update_message_content(self, conversation_id: str, message_id: str, append_text: str) -> None:
        """向待完成消息追加内容；消息不存在或已冻结时忽略。"""

        if not append_text:
            return

        def apply(conv: Conversation) -> Conversation:
            return self._replace_message(
                conv,
                message_id,
                lambda m: replace(m, content=m.content + append_text) if m.pending else None,
            )

        self._update(conversation_id, apply)

    def finalize_message(self, conversation_id: str, message_id: str) -> None:
        def apply(conv: Conversation) -> Conversation:
            return self._replace_message(
                conv,
                message_id,
                lambda m: replace(m, pending=False) if m.pending else None,
            )

        self._update(conversation_id, apply)

    def rename_conversation(self, conversation_id: str, title: str) -> None:
        self._update(conversation_id, lambda conv: replace(conv, title=title, updated_at=self._clock()))

    def delete_conversation(self, conversation_id: str) -> None:
        """删除会话；若删除的是当前选中会话，改选剩余的第一个，没有则为 None。"""

        current = self._snapshot
        if current.get(conversation_id) is None:
            return
        remaining = tuple(c for c in current.conversations if c.id != conversation_id)
        selected = current.selected_id
        if selected == conversation_id:
            selected = remaining[0].id if remaining else None
        self._snapshot = SessionSnapshot(conversations=remaining, selected_id=selected)

    def _update(self, conversation_id: str, fn: Callable[[Conversation], Conversation]) -> None:
        current = self._snapshot
        changed = False
        conversations = []
        for conv in current.conversations:
            if conv.id == conversation_id:
                new_conv = fn(conv)
                changed = new_conv is not conv
                conversations.append(new_conv)
            else:
                conversations.append(conv)
        if changed:
            self._snapshot = replace(current, conversations=tuple(conversations))

    def _replace_message(
        self,
        conv: Conversation,
        message_id: str,
        fn: Callable[[Message], Optional[Message]],
    ) -> Conversation:
        messages = list(conv.messages)
        for idx, msg in enumerate(messages):
            if msg.id == message_id:
                updated = fn(msg)
                if updated is None:
                    return conv
                messages[idx] = updated
                return replace(conv, messages=tuple(messages), updated_at=self._clock())
        return conv
