"""Provider 抽象接口。

上层聚合器不直接依赖具体 HTTP 实现，而是依赖此协议：

- DifyClient 调用真实的 /chat-messages 与 /files/upload 接口。
- MockClient 在未配置 API 密钥时返回模拟回复。

这样可以在不改聚合器代码的前提下替换远端实现，测试中也可以直接注入假对象。
"""

from pathlib import Path
from typing import Iterator, Optional, Protocol, Union

from chat_core.domain.models import ChatRequest, ChatResponse, ServerEvent


class ChatProvider(Protocol):
    """远端聊天服务协议。

    实现者需要提供：
    - name: Provider 名称，用于日志。
    - chat(req): 阻塞式调用，返回完整答案。
    - chat_stream(req): 流式调用，惰性产出 ServerEvent。
    - upload_file(path, user): 上传文件，成功返回 upload_file_id，失败返回 None。
    """

    name: str

    def chat(self, req: ChatRequest) -> ChatResponse:
        ...

    def chat_stream(self, req: ChatRequest) -> Iterator[ServerEvent]:
        ...

    def upload_file(self, path: Union[str, Path], user: str) -> Optional[str]:
        ...
