"""远端聊天服务集成层。

该包下的模块负责：
- 定义 Provider 抽象接口 (base)。
- 提供 Dify 的具体实现 (dify_client)。
- 在未配置密钥时提供模拟实现 (mock_client)。
"""

from chat_core.config.settings import settings
from chat_core.infrastructure.logging.logger import logger
from chat_core.providers.base import ChatProvider
from chat_core.providers.dify_client import DifyClient
from chat_core.providers.mock_client import MockClient


def create_provider(config=None) -> ChatProvider:
    """根据配置创建 Provider：有 API 密钥用 Dify，否则退回模拟回复。"""

    cfg = config or settings
    if getattr(cfg, "dify_api_key", None):
        return DifyClient(cfg)
    logger.warning("DIFY_API_KEY not set, using mock replies")
    return MockClient(cfg)


__all__ = ["ChatProvider", "DifyClient", "MockClient", "create_provider"]
