"""Chat Core 顶层包。

该包提供对话客户端的核心实现：把用户消息转发给远端 Dify 应用，
解码流式响应、过滤 <think> 推理块，并把增量应用到会话状态中，
供上层 UI 外壳渲染。
"""

from typing import Optional

from chat_core.config.settings import settings
from chat_core.domain.conversation import AuthProvider, KeyValueStore
from chat_core.infrastructure.storage.kv_store import JsonFileKeyValueStore
from chat_core.providers import create_provider
from chat_core.session.controller import ChatController, TurnRun


def create_controller(
    auth: Optional[AuthProvider] = None,
    kv_store: Optional[KeyValueStore] = None,
    config=None,
) -> ChatController:
    """按配置组装一个 ChatController，默认使用 storage_root 下的 JSON 文件存储。"""

    cfg = config or settings
    return ChatController(
        create_provider(cfg),
        kv_store=kv_store or JsonFileKeyValueStore(cfg.storage_root),
        auth=auth,
        settings=cfg,
    )


__all__ = ["ChatController", "TurnRun", "create_controller"]
