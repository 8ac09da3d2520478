"""Dify Provider 适配器。

本模块负责：

1. 接收统一的 ChatRequest，转换为 Dify /chat-messages 的请求体。
2. 调用 HTTP 接口并把网络/API 异常包装为 TransportError 子类。
3. 阻塞式响应解析为 ChatResponse；流式响应交给 StreamDecoder 切成 ServerEvent。
4. 通过 /files/upload 上传附件，返回 upload_file_id。
"""

import logging
import mimetypes
from pathlib import Path
from typing import Any, Dict, Iterator, Optional, Union

import httpx

from chat_core.domain.exceptions import ApiError, NetworkError, RateLimitError, ValidationError
from chat_core.domain.models import ChatRequest, ChatResponse, ServerEvent
from chat_core.infrastructure.logging.logger import log_event
from chat_core.streaming.decoder import decode_stream


class DifyClient:
    """Dify 应用 API 客户端。"""

    name = "dify"

    def __init__(self, settings):
        # Settings 里包含 base_url、api_key、超时等配置
        self._settings = settings

    @property
    def base_url(self) -> str:
        return (getattr(self._settings, "dify_base_url", None) or "https://api.dify.ai/v1").rstrip("/")

    def chat(self, req: ChatRequest) -> ChatResponse:
        """执行一次阻塞式对话调用。"""

        self._require_api_key()
        payload = self._build_payload(req, "blocking")
        try:
            with httpx.Client(timeout=self._settings.http_timeout, trust_env=False) as client:
                resp = client.post(
                    f"{self.base_url}/chat-messages",
                    json=payload,
                    headers=self._headers(),
                )
        except httpx.RequestError as e:
            # 网络错误：DNS 失败、连接超时等
            raise NetworkError(code="NETWORK_ERROR", message=str(e))
        self._raise_for_status(resp.status_code, resp.text)
        return self._parse_response(self._json_body(resp))

    def chat_stream(self, req: ChatRequest) -> Iterator[ServerEvent]:
        """执行一次流式对话调用，逐个 yield ServerEvent。"""

        self._require_api_key()
        payload = self._build_payload(req, "streaming")
        try:
            with httpx.Client(timeout=self._settings.http_timeout, trust_env=False) as client:
                with client.stream(
                    "POST",
                    f"{self.base_url}/chat-messages",
                    json=payload,
                    headers=self._headers(),
                ) as resp:
                    if resp.status_code >= 400:
                        resp.read()
                        self._raise_for_status(resp.status_code, resp.text)
                    for event in decode_stream(resp.iter_bytes()):
                        yield event
        except httpx.RequestError as e:
            raise NetworkError(code="NETWORK_ERROR", message=str(e))

    def upload_file(self, path: Union[str, Path], user: str) -> Optional[str]:
        """上传本地文件，成功返回 upload_file_id，任何失败都返回 None。"""

        file_path = Path(path)
        log_ctx = {"provider": self.name, "file": file_path.name}
        try:
            self._require_api_key()
            content = file_path.read_bytes()
        except (OSError, ValidationError) as e:
            log_event(logging.ERROR, "File upload failed", log_ctx, error=str(e))
            return None
        mime_type = mimetypes.guess_type(file_path.name)[0] or "application/pdf"
        try:
            with httpx.Client(timeout=self._settings.http_timeout, trust_env=False) as client:
                resp = client.post(
                    f"{self.base_url}/files/upload",
                    files={"file": (file_path.name, content, mime_type)},
                    data={"user": user},
                    headers={"Authorization": f"Bearer {self._settings.dify_api_key}"},
                )
        except httpx.RequestError as e:
            log_event(logging.ERROR, "File upload failed", log_ctx, error=str(e))
            return None
        if resp.status_code >= 400:
            log_event(logging.ERROR, "File upload failed", log_ctx, status=resp.status_code, error=resp.text[:200])
            return None
        try:
            file_id = self._json_body(resp).get("id")
        except ApiError as e:
            log_event(logging.ERROR, "File upload failed", log_ctx, code=e.code, error=e.message)
            return None
        log_event(logging.INFO, "File uploaded", log_ctx, upload_file_id=file_id)
        return file_id or None

    def _require_api_key(self) -> None:
        if not getattr(self._settings, "dify_api_key", None):
            # 配置缺失走 ValidationError，方便上层统一处理
            raise ValidationError(code="MISSING_API_KEY", message="DIFY_API_KEY not set")

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self._settings.dify_api_key}",
            "Content-Type": "application/json",
        }

    @staticmethod
    def _raise_for_status(status_code: int, text: str) -> None:
        if status_code == 429:
            # 限流不做自动重试，由用户重新发送
            raise RateLimitError(code="RATE_LIMIT", message="Dify rate limit", http_status=429)
        if status_code >= 400:
            raise ApiError(code="API_ERROR", message=text, http_status=status_code)

    @staticmethod
    def _json_body(resp) -> Dict[str, Any]:
        """解析 2xx 响应体，网关页面等非 JSON 对象的内容按 ApiError 处理。"""

        try:
            data = resp.json()
        except ValueError:
            raise ApiError(
                code="BAD_RESPONSE",
                message=f"Invalid JSON response: {resp.text[:200]}",
                http_status=resp.status_code,
            )
        if not isinstance(data, dict):
            raise ApiError(
                code="BAD_RESPONSE",
                message="Response body is not a JSON object",
                http_status=resp.status_code,
            )
        return data

    @staticmethod
    def _build_payload(req: ChatRequest, response_mode: str) -> Dict[str, Any]:
        """将 ChatRequest 转成 Dify 所需的请求 JSON。"""

        payload: Dict[str, Any] = {
            "query": req.query,
            "response_mode": response_mode,
            "user": req.user,
            "inputs": dict(req.inputs),
        }
        if req.conversation_id:
            payload["conversation_id"] = req.conversation_id
        if req.files:
            payload["files"] = [
                {
                    "type": f.type,
                    "transfer_method": f.transfer_method,
                    "upload_file_id": f.upload_file_id,
                }
                for f in req.files
            ]
        return payload

    @staticmethod
    def _parse_response(data: Dict[str, Any]) -> ChatResponse:
        return ChatResponse(
            answer=data.get("answer") or "",
            conversation_id=data.get("conversation_id") or None,
            message_id=data.get("message_id") or data.get("id"),
            raw=data,
        )
