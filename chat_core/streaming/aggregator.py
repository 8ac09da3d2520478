"""响应聚合器。

负责一轮对话内的远端调用与增量计算：

- 每轮只调用一次 provider，根据 streaming 参数选择流式或阻塞式接口；
- 流式模式下把每个 message 事件的 answer 喂给 ThinkTagFilter，只在增量非空时产出 delta；
- 记录远端 conversation_id，随 completed 事件交给协调层写入 Correlator；
- 网络错误、非 2xx 状态、无法解析的响应体和 event=error 等业务异常都在轮次边界被捕获，
  转成一个 failed 事件；已显示部分内容时使用中断提示。

聚合器本身不修改会话存储，它只计算 TurnEvent，由 ChatController 负责应用。
同一 session_id 同时只允许一个进行中的轮次，第二次 start_turn 直接抛 ConflictError。
"""

import logging
import time
from dataclasses import dataclass
from typing import Any, Dict, Iterator, List, Optional, Set
from uuid import uuid4

from chat_core.config.settings import settings as default_settings
from chat_core.domain.exceptions import BusinessError, ConflictError, RemoteError
from chat_core.domain.models import ChatRequest, FileAttachment, TurnEvent
from chat_core.infrastructure.logging.logger import log_event
from chat_core.providers.base import ChatProvider
from chat_core.streaming.think_filter import ThinkTagFilter, clean_think_tags


@dataclass
class StreamState:
    """单轮流式调用的累积状态，轮次结束即丢弃。"""

    session_id: str
    raw_accumulated: str = ""
    displayed_accumulated: str = ""
    remote_conversation_id: Optional[str] = None


class TurnHandle:
    """一轮对话的事件序列：惰性、有限、不可重启。

    迭代结束、出错或调用 close() 时释放该会话的占用。
    """

    def __init__(self, aggregator: "ResponseAggregator", state: StreamState, events: Iterator[TurnEvent]):
        self._aggregator = aggregator
        self.state = state
        self._events = events
        self._closed = False

    @property
    def session_id(self) -> str:
        return self.state.session_id

    @property
    def closed(self) -> bool:
        return self._closed

    def __iter__(self) -> Iterator[TurnEvent]:
        return self

    def __next__(self) -> TurnEvent:
        if self._closed:
            raise StopIteration
        try:
            return next(self._events)
        except BaseException:
            self.close()
            raise

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        close_events = getattr(self._events, "close", None)
        if close_events is not None:
            close_events()
        self._aggregator._release(self.state.session_id)

    def __enter__(self) -> "TurnHandle":
        return self

    def __exit__(self, *exc) -> bool:
        self.close()
        return False


class ResponseAggregator:
    def __init__(self, provider: ChatProvider, settings=None):
        self._provider = provider
        self._settings = settings or default_settings
        self._active: Set[str] = set()

    def is_active(self, session_id: str) -> bool:
        return session_id in self._active

    def ensure_idle(self, session_id: str) -> None:
        """会话已有进行中的轮次时抛 ConflictError。"""

        if session_id in self._active:
            raise ConflictError(
                code="TURN_IN_PROGRESS",
                message="该会话正在生成回复，请稍候再发送",
                http_status=409,
                session_id=session_id,
            )

    def start_turn(
        self,
        user_text: str,
        session_id: str,
        *,
        user: str,
        conversation_id: Optional[str] = None,
        files: Optional[List[FileAttachment]] = None,
        inputs: Optional[Dict[str, Any]] = None,
        streaming: bool = True,
    ) -> TurnHandle:
        """开始一轮对话，返回 TurnHandle。冲突检查是同步的，不会产生任何副作用。"""

        self.ensure_idle(session_id)
        req = ChatRequest(
            query=user_text,
            user=user,
            response_mode="streaming" if streaming else "blocking",
            conversation_id=conversation_id,
            inputs=dict(inputs or {}),
            files=list(files or []),
        )
        state = StreamState(session_id=session_id, remote_conversation_id=conversation_id)
        log_ctx = {
            "trace_id": f"tr-{uuid4().hex}",
            "session_id": session_id,
            "provider": getattr(self._provider, "name", "unknown"),
            "response_mode": req.response_mode,
        }
        self._active.add(session_id)
        if streaming:
            events = self._run_stream(req, state, log_ctx)
        else:
            events = self._run_blocking(req, state, log_ctx)
        return TurnHandle(self, state, events)

    def _release(self, session_id: str) -> None:
        self._active.discard(session_id)

    def _failure_text(self, displayed: str) -> str:
        # 已经显示过部分回复时提示“中断”，否则提示服务不可用
        return self._settings.stream_error_reply if displayed else self._settings.error_reply

    def _run_stream(self, req: ChatRequest, state: StreamState, log_ctx: Dict[str, Any]) -> Iterator[TurnEvent]:
        start_time = time.time()
        think_filter = ThinkTagFilter()
        event_count = 0
        log_event(logging.INFO, "Calling provider", log_ctx, has_conversation=bool(req.conversation_id))
        try:
            for event in self._provider.chat_stream(req):
                event_count += 1
                if event.conversation_id:
                    state.remote_conversation_id = event.conversation_id
                if event.kind == "message":
                    delta = think_filter.feed(event.answer)
                    state.raw_accumulated = think_filter.raw
                    if delta:
                        state.displayed_accumulated = think_filter.displayed
                        yield TurnEvent(kind="delta", session_id=state.session_id, text=delta)
                elif event.kind == "end":
                    continue
                elif event.kind == "error":
                    raise RemoteError(
                        code="REMOTE_STREAM_ERROR",
                        message=event.message or "Stream error",
                        http_status=502,
                    )
            delta = think_filter.finish()
            if delta:
                state.displayed_accumulated = think_filter.displayed
                yield TurnEvent(kind="delta", session_id=state.session_id, text=delta)
        except BusinessError as e:
            log_event(
                logging.ERROR,
                "Turn failed",
                log_ctx,
                code=e.code,
                error=e.message,
                displayed_chars=len(think_filter.displayed),
            )
            yield TurnEvent(
                kind="failed",
                session_id=state.session_id,
                text=self._failure_text(think_filter.displayed),
            )
            return
        log_event(
            logging.INFO,
            "Completed turn",
            log_ctx,
            elapsed_seconds=round(time.time() - start_time, 2),
            events=event_count,
            raw_chars=len(think_filter.raw),
            displayed_chars=len(think_filter.displayed),
        )
        yield TurnEvent(
            kind="completed",
            session_id=state.session_id,
            conversation_id=state.remote_conversation_id,
        )

    def _run_blocking(self, req: ChatRequest, state: StreamState, log_ctx: Dict[str, Any]) -> Iterator[TurnEvent]:
        start_time = time.time()
        log_event(logging.INFO, "Calling provider", log_ctx, has_conversation=bool(req.conversation_id))
        try:
            result = self._provider.chat(req)
        except BusinessError as e:
            log_event(logging.ERROR, "Turn failed", log_ctx, code=e.code, error=e.message)
            yield TurnEvent(kind="failed", session_id=state.session_id, text=self._failure_text(""))
            return
        if result.conversation_id:
            state.remote_conversation_id = result.conversation_id
        state.raw_accumulated = result.answer or ""
        content = clean_think_tags(result.answer or self._settings.empty_reply)
        state.displayed_accumulated = content
        log_event(
            logging.INFO,
            "Completed turn",
            log_ctx,
            elapsed_seconds=round(time.time() - start_time, 2),
            raw_chars=len(state.raw_accumulated),
            displayed_chars=len(content),
        )
        if content:
            yield TurnEvent(kind="delta", session_id=state.session_id, text=content)
        yield TurnEvent(
            kind="completed",
            session_id=state.session_id,
            conversation_id=state.remote_conversation_id,
        )
