"""未配置 API 密钥时使用的模拟 Provider。

随机挑选一条预置回复，附上配置提示；流式模式下逐词输出，模拟真实的打字效果。
"""

import random
import time
from pathlib import Path
from typing import Iterator, Optional, Union

from chat_core.domain.models import ChatRequest, ChatResponse, ServerEvent

MOCK_REPLIES = [
    "这是一个很有趣的问题！让我来为您详细解答...",
    "根据您的描述，我认为可以从以下几个方面来看...",
    "这个问题涉及到多个方面，让我逐一为您分析...",
    "非常感谢您的提问，这确实是一个值得深入思考的话题...",
    "基于当前的信息，我建议您可以考虑以下方案...",
]

MOCK_HINT = "\n\n（模拟回复 - 请在 .env 文件中配置 DIFY_API_KEY 以获得真实AI回复）"


class MockClient:
    name = "mock"

    def __init__(self, settings, rng: Optional[random.Random] = None):
        self._settings = settings
        self._rng = rng or random.Random()

    def _reply(self) -> str:
        return self._rng.choice(MOCK_REPLIES) + MOCK_HINT

    def chat(self, req: ChatRequest) -> ChatResponse:
        return ChatResponse(answer=self._reply(), conversation_id=None)

    def chat_stream(self, req: ChatRequest) -> Iterator[ServerEvent]:
        delay = getattr(self._settings, "mock_stream_delay", 0.0)
        words = self._reply().split(" ")
        for i, word in enumerate(words):
            if delay:
                time.sleep(delay)
            text = word + (" " if i < len(words) - 1 else "")
            yield ServerEvent(kind="message", answer=text)
        yield ServerEvent(kind="end")

    def upload_file(self, path: Union[str, Path], user: str) -> Optional[str]:
        return f"mock-file-id-{int(time.time() * 1000)}"
