"""统一的对话与流式事件数据模型。

本模块定义了 chat_core 内部各组件之间共享的标准数据结构：

- Message / Conversation: 会话存储中的不可变记录。
- ServerEvent: 解码器从远端流中解析出的离散事件。
- ChatRequest / ChatResponse: 发给远端聊天接口的请求与阻塞式响应。
- TurnEvent: 聚合器交给会话协调层的增量/结束/失败事件。

Message 与 Conversation 均为 frozen dataclass，所有修改都通过
dataclasses.replace 产生新对象，保证 UI 读取到的快照不会被原地改写。
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Literal, Optional, Tuple


# 会话消息角色
Role = Literal["user", "assistant"]

# 解码器事件类型：message 为答案片段，end 为本轮结束，error 为远端报错
ServerEventKind = Literal["message", "end", "error"]

# 聚合器交给协调层的事件类型
TurnEventKind = Literal["delta", "completed", "failed"]

ResponseMode = Literal["blocking", "streaming"]


@dataclass(frozen=True)
class Message:
    """会话中的一条消息。

    - pending: 为 True 表示助手消息仍在流式生成中，content 只允许追加；
      流结束或失败后置为 False，之后内容冻结。
    """

    id: str
    role: Role
    content: str
    timestamp: datetime
    pending: bool = False


@dataclass(frozen=True)
class Conversation:
    id: str
    title: str
    messages: Tuple[Message, ...]
    created_at: datetime
    updated_at: datetime

    @property
    def pending_message(self) -> Optional[Message]:
        for msg in reversed(self.messages):
            if msg.pending:
                return msg
        return None


@dataclass(frozen=True)
class ServerEvent:
    """远端流中的一个事件。

    - answer: message 事件携带的答案片段（可能为空字符串）。
    - conversation_id: 远端会话 ID，message / message_end 事件都可能携带。
    - message: error 事件携带的错误描述。
    - raw: 原始 JSON，便于调试。
    """

    kind: ServerEventKind
    answer: str = ""
    conversation_id: Optional[str] = None
    message: Optional[str] = None
    raw: Optional[Dict[str, Any]] = field(default=None, compare=False)


@dataclass
class FileAttachment:
    """随请求发送的已上传文件引用。"""

    upload_file_id: str
    type: str = "document"
    transfer_method: str = "local_file"


@dataclass
class ChatRequest:
    """一次远端聊天调用的完整请求。

    Provider 适配层负责把本结构转换成具体 API 的 JSON 请求体。
    """

    query: str
    user: str
    response_mode: ResponseMode = "streaming"
    conversation_id: Optional[str] = None
    inputs: Dict[str, Any] = field(default_factory=dict)
    files: List[FileAttachment] = field(default_factory=list)


@dataclass
class ChatResponse:
    """阻塞式调用的结果。"""

    answer: str
    conversation_id: Optional[str] = None
    message_id: Optional[str] = None
    raw: Optional[dict] = None


@dataclass(frozen=True)
class TurnEvent:
    """一轮对话中交给协调层应用的事件。

    kind:
        - "delta": 新增的可显示文本，需要追加到待完成的助手消息。
        - "completed": 本轮正常结束，conversation_id 为远端会话 ID（可能为空）。
        - "failed": 本轮失败，text 为需要展示给用户的完整错误回复。
    """

    kind: TurnEventKind
    session_id: str
    text: str = ""
    conversation_id: Optional[str] = None
