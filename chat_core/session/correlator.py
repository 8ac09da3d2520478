"""本地会话 ID 与远端会话 ID 的映射。

同时缓存每个 (session_id, user) 已上传的文件 ID，同一会话后续轮次直接复用。
删除会话时必须同步调用 clear，避免新会话复用旧的远端上下文或文件。
"""

from typing import Dict, Optional, Tuple


class ConversationCorrelator:
    def __init__(self):
        self._conversations: Dict[str, str] = {}
        self._files: Dict[Tuple[str, str], str] = {}

    def get(self, session_id: str) -> Optional[str]:
        return self._conversations.get(session_id)

    def set(self, session_id: str, remote_conversation_id: str) -> None:
        self._conversations[session_id] = remote_conversation_id

    def clear(self, session_id: str) -> None:
        self._conversations.pop(session_id, None)
        for key in [k for k in self._files if k[0] == session_id]:
            del self._files[key]

    def get_file(self, session_id: str, user: str) -> Optional[str]:
        return self._files.get((session_id, user))

    def set_file(self, session_id: str, user: str, upload_file_id: str) -> None:
        self._files[(session_id, user)] = upload_file_id

    def __contains__(self, session_id: str) -> bool:
        return session_id in self._conversations

    def __len__(self) -> int:
        return len(self._conversations)
