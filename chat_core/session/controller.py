"""会话协调层。

ChatController 是唯一会修改 SessionStore 快照与 ConversationCorrelator 的组件：

- 用户操作（新建、选择、重命名、删除会话）直接作用于存储并落盘；
- 发送消息时先做冲突检查，再把用户消息与空的助手占位消息作为一次原子更新追加；
- 返回的 TurnRun 在被迭代时按到达顺序把聚合器产出的 TurnEvent 应用到存储。

删除会话会同步清理远端会话映射和文件缓存；之后仍在读取的流产生的增量，
因为存储按 ID 更新，只会变成无操作。

会话列表按登录用户分命名空间存储；每个面向用户的操作前都会检查当前用户是否变化，
变化时通过 switch_user 重新加载该用户的列表。
"""

import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, List, Optional, Union

from chat_core.config.settings import settings as default_settings
from chat_core.domain.conversation import AuthProvider, KeyValueStore, UserIdentity
from chat_core.domain.exceptions import ValidationError
from chat_core.domain.models import FileAttachment, Message, TurnEvent
from chat_core.infrastructure.logging.logger import log_event
from chat_core.infrastructure.storage.kv_store import InMemoryKeyValueStore
from chat_core.providers.base import ChatProvider
from chat_core.session.correlator import ConversationCorrelator
from chat_core.session.persistence import SessionPersistence
from chat_core.session.store import SessionSnapshot, SessionStore, new_id
from chat_core.streaming.aggregator import ResponseAggregator, TurnHandle
from chat_core.utils.message_utils import generate_chat_title, generate_time_based_title


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TurnRun:
    """一轮对话的执行过程，迭代时产出已应用到存储的增量文本。"""

    def __init__(self, controller: "ChatController", handle: TurnHandle, conversation_id: str, message_id: str):
        self._controller = controller
        self._handle = handle
        self.conversation_id = conversation_id
        self.message_id = message_id
        self.outcome: Optional[str] = None

    def __iter__(self) -> Iterator[str]:
        try:
            with self._handle:
                for event in self._handle:
                    applied = self._controller._apply_event(event, self.message_id)
                    if event.kind != "delta":
                        self.outcome = event.kind
                    elif applied:
                        yield event.text
        except Exception:
            # 非业务异常照常抛出，但占位消息先写成完整的失败提示
            failed = TurnEvent(
                kind="failed",
                session_id=self.conversation_id,
                text=self._controller._failure_text(self.conversation_id, self.message_id),
            )
            self._controller._apply_event(failed, self.message_id)
            self.outcome = "failed"
            raise
        finally:
            # 提前停止迭代时也要冻结占位消息，避免留下永远 pending 的消息
            self._controller._finalize(self.conversation_id, self.message_id)

    def close(self) -> None:
        self._handle.close()
        self._controller._finalize(self.conversation_id, self.message_id)


class ChatController:
    def __init__(
        self,
        provider: ChatProvider,
        *,
        kv_store: Optional[KeyValueStore] = None,
        auth: Optional[AuthProvider] = None,
        correlator: Optional[ConversationCorrelator] = None,
        settings=None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self._settings = settings or default_settings
        self._provider = provider
        self._auth = auth
        self._clock = clock
        self._persistence = SessionPersistence(kv_store or InMemoryKeyValueStore(), lambda: self.current_user)
        self.store = SessionStore(self._persistence.load(), clock=clock)
        self.correlator = correlator or ConversationCorrelator()
        self._aggregator = ResponseAggregator(provider, self._settings)

    @property
    def current_user(self) -> Optional[UserIdentity]:
        return self._auth.current_user() if self._auth else None

    @property
    def user_id(self) -> str:
        user = self.current_user
        return user.id if user else self._settings.default_user

    @property
    def snapshot(self) -> SessionSnapshot:
        return self.store.snapshot

    @property
    def current_session_id(self) -> Optional[str]:
        return self.store.selected_id

    def is_busy(self, session_id: str) -> bool:
        return self._aggregator.is_active(session_id)

    # ---- 会话管理 ----

    def switch_user(self) -> None:
        """登录用户变化后重新加载该用户的会话列表，不恢复选中状态。"""

        snapshot = self._persistence.load()
        self.store.replace_snapshot(SessionSnapshot(conversations=snapshot.conversations, selected_id=None))
        log_event(
            logging.INFO,
            "Switched user",
            {"namespace": self._persistence.namespace},
            conversations=len(snapshot.conversations),
        )

    def new_session(self) -> str:
        self._sync_user()
        session_id = self.store.create_conversation(generate_time_based_title(self._clock(), self._clock()))
        self._save()
        log_event(logging.INFO, "Created conversation", {"session_id": session_id})
        return session_id

    def select_session(self, session_id: str) -> None:
        self._sync_user()
        self.store.select(session_id)
        self._save()

    def rename_session(self, session_id: str, title: str) -> None:
        self._sync_user()
        self.store.rename_conversation(session_id, title)
        self._save()

    def delete_session(self, session_id: str) -> None:
        self._sync_user()
        self.store.delete_conversation(session_id)
        self.correlator.clear(session_id)
        self._save()
        log_event(
            logging.INFO,
            "Deleted conversation",
            {"session_id": session_id},
            turn_active=self._aggregator.is_active(session_id),
            selected=self.store.selected_id,
        )

    # ---- 对话 ----

    def send_message(
        self,
        content: str,
        *,
        streaming: bool = True,
        attachment: Optional[Union[str, Path]] = None,
        inputs: Optional[Dict[str, Any]] = None,
    ) -> TurnRun:
        """发送一条用户消息，返回需要迭代驱动的 TurnRun。

        冲突（该会话已有进行中的轮次）会同步抛出 ConflictError，且不修改任何状态。
        """

        if not content or not content.strip():
            raise ValidationError(code="EMPTY_MESSAGE", message="消息内容不能为空")

        self._sync_user()
        session_id = self.store.selected_id
        conv = self.store.get_conversation(session_id) if session_id else None
        if conv is not None:
            self._aggregator.ensure_idle(conv.id)
            title = self._title_for(content) if not conv.messages else None
        else:
            session_id = self.store.create_conversation(self._title_for(content))
            title = None

        user = self.user_id
        remote_id = self.correlator.get(session_id)
        files = self._attachment_files(session_id, user, attachment) if remote_id is None else []

        handle = self._aggregator.start_turn(
            content,
            session_id,
            user=user,
            conversation_id=remote_id,
            files=files,
            inputs=inputs,
            streaming=streaming,
        )

        now = self._clock()
        user_msg = Message(id=new_id("m"), role="user", content=content, timestamp=now)
        placeholder = Message(id=new_id("m"), role="assistant", content="", timestamp=now, pending=True)
        self.store.append_messages(session_id, [user_msg, placeholder], title=title)
        self._save()
        log_event(
            logging.INFO,
            "Stored user message",
            {"session_id": session_id},
            message_id=user_msg.id,
            assistant_message_id=placeholder.id,
            has_remote_conversation=remote_id is not None,
            files=len(files),
        )
        return TurnRun(self, handle, session_id, placeholder.id)

    def run_turn(
        self,
        content: str,
        on_delta: Optional[Callable[[str], None]] = None,
        **kwargs: Any,
    ) -> Optional[Message]:
        """发送消息并同步跑完整轮对话，返回最终的助手消息（会话已删除时为 None）。"""

        run = self.send_message(content, **kwargs)
        for delta in run:
            if on_delta is not None:
                on_delta(delta)
        conv = self.store.get_conversation(run.conversation_id)
        if conv is None:
            return None
        for msg in conv.messages:
            if msg.id == run.message_id:
                return msg
        return None

    # ---- 内部 ----

    def _title_for(self, content: str) -> str:
        return generate_chat_title(content, max_length=self._settings.title_max_length) or generate_time_based_title(
            self._clock(), self._clock()
        )

    def _attachment_files(self, session_id: str, user: str, attachment) -> List[FileAttachment]:
        if attachment is None:
            return []
        file_id = self.correlator.get_file(session_id, user)
        if file_id is None:
            file_id = self._provider.upload_file(attachment, user)
            if file_id:
                self.correlator.set_file(session_id, user, file_id)
        return [FileAttachment(upload_file_id=file_id)] if file_id else []

    def _apply_event(self, event: TurnEvent, message_id: str) -> bool:
        """把一个 TurnEvent 应用到存储，会话已不存在时返回 False。"""

        session_id = event.session_id
        if self.store.get_conversation(session_id) is None:
            return False
        if event.kind == "delta":
            self.store.update_message_content(session_id, message_id, event.text)
        elif event.kind == "completed":
            if event.conversation_id:
                self.correlator.set(session_id, event.conversation_id)
            if not self._message_content(session_id, message_id):
                self.store.update_message_content(session_id, message_id, self._settings.empty_reply)
            self.store.finalize_message(session_id, message_id)
        elif event.kind == "failed":
            # 已显示的内容不收回，错误提示另起一段追加在后面
            partial = self._message_content(session_id, message_id)
            text = f"\n\n{event.text}" if partial else event.text
            self.store.update_message_content(session_id, message_id, text)
            self.store.finalize_message(session_id, message_id)
        self._save()
        return True

    def _message_content(self, session_id: str, message_id: str) -> str:
        conv = self.store.get_conversation(session_id)
        for msg in conv.messages if conv else ():
            if msg.id == message_id:
                return msg.content
        return ""

    def _failure_text(self, session_id: str, message_id: str) -> str:
        if self._message_content(session_id, message_id):
            return self._settings.stream_error_reply
        return self._settings.error_reply

    def _finalize(self, session_id: str, message_id: str) -> None:
        conv = self.store.get_conversation(session_id)
        if conv is None or conv.pending_message is None or conv.pending_message.id != message_id:
            return
        self.store.finalize_message(session_id, message_id)
        self._save()

    def _sync_user(self) -> None:
        if self._persistence.user_changed:
            self.switch_user()

    def _save(self) -> None:
        self._persistence.save(self.store.snapshot)
