"""SSE 流解码器。

把远端 /chat-messages 接口返回的字节流切成离散的 ServerEvent：

- 按行切分，最后一个不完整的行留在缓冲区，等下一次读取再拼接；
- 空行（keep-alive）直接丢弃；
- 只处理 ``data:`` 前缀的行，其余 SSE 字段（event:/id:/注释）忽略；
- ``data: [DONE]`` 视为无操作；
- JSON 解析失败的帧记录告警后跳过，流继续；
- 流结束时，缓冲区中剩余的内容按同样的规则解析一次。

切分位置不影响结果：同一段字节无论如何分块喂入，产出的事件序列相同。
"""

import codecs
import json
import logging
from typing import Any, Dict, Iterable, Iterator, List, Optional, Union

from chat_core.domain.exceptions import DecodeError
from chat_core.domain.models import ServerEvent
from chat_core.infrastructure.logging.logger import logger


DATA_PREFIX = "data:"
DONE_SENTINEL = "[DONE]"

# 远端事件名 -> 内部事件类型；未列出的事件（ping、workflow_started 等）忽略
EVENT_KINDS = {
    "message": "message",
    "agent_message": "message",
    "message_end": "end",
    "error": "error",
}


class StreamDecoder:
    """增量解码器，可多次 feed，最后调用一次 finish。"""

    def __init__(self, encoding: str = "utf-8"):
        self._decoder = codecs.getincrementaldecoder(encoding)(errors="replace")
        self._buffer = ""
        self._finished = False
        self.dropped = 0

    def feed(self, chunk: Union[bytes, str]) -> List[ServerEvent]:
        """喂入一段原始数据，返回其中已完整的事件。"""

        if self._finished:
            raise ValueError("decoder already finished")
        if isinstance(chunk, bytes):
            text = self._decoder.decode(chunk)
        else:
            text = chunk
        if not text:
            return []
        self._buffer += text
        lines = self._buffer.split("\n")
        self._buffer = lines.pop()
        events: List[ServerEvent] = []
        for line in lines:
            event = self._parse_line(line)
            if event is not None:
                events.append(event)
        return events

    def finish(self) -> List[ServerEvent]:
        """结束解码，解析缓冲区中残留的最后一行。"""

        if self._finished:
            return []
        self._finished = True
        self._buffer += self._decoder.decode(b"", final=True)
        residual, self._buffer = self._buffer, ""
        if not residual.strip():
            return []
        event = self._parse_line(residual)
        return [event] if event is not None else []

    def _parse_line(self, line: str) -> Optional[ServerEvent]:
        line = line.rstrip("\r")
        if not line.strip():
            return None
        if not line.startswith(DATA_PREFIX):
            return None
        data_str = line[len(DATA_PREFIX):]
        if data_str.startswith(" "):
            data_str = data_str[1:]
        if data_str.strip() == DONE_SENTINEL:
            return None
        try:
            payload = parse_frame(data_str)
        except DecodeError as e:
            self.dropped += 1
            logger.warning(
                "Dropped malformed stream frame",
                extra={"extra": {"error": e.message, "frame": data_str[:200]}},
            )
            return None
        return to_server_event(payload)


def parse_frame(data_str: str) -> Dict[str, Any]:
    """把单个 data 帧解析为 JSON 对象，失败抛 DecodeError。"""

    try:
        payload = json.loads(data_str)
    except json.JSONDecodeError as e:
        raise DecodeError(code="STREAM_DECODE_ERROR", message=str(e))
    if not isinstance(payload, dict):
        raise DecodeError(code="STREAM_DECODE_ERROR", message="frame is not a JSON object")
    return payload


def to_server_event(payload: Dict[str, Any]) -> Optional[ServerEvent]:
    kind = EVENT_KINDS.get(str(payload.get("event") or ""))
    if kind is None:
        if logger.isEnabledFor(logging.DEBUG):
            logger.debug("Ignored stream event", extra={"extra": {"event": payload.get("event")}})
        return None
    answer = payload.get("answer")
    return ServerEvent(
        kind=kind,
        answer=answer if isinstance(answer, str) else "",
        conversation_id=payload.get("conversation_id") or None,
        message=payload.get("message"),
        raw=payload,
    )


def decode_stream(chunks: Iterable[Union[bytes, str]]) -> Iterator[ServerEvent]:
    """惰性地把数据块序列转换为 ServerEvent 序列。"""

    decoder = StreamDecoder()
    for chunk in chunks:
        for event in decoder.feed(chunk):
            yield event
    for event in decoder.finish():
        yield event
