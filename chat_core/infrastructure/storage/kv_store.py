import json
import os
import re
from pathlib import Path
from typing import Any, Dict
from uuid import uuid4

from chat_core.config.settings import settings
from chat_core.domain.exceptions import BusinessError

_UNSAFE_KEY_CHARS = re.compile(r"[^A-Za-z0-9_.-]")


class InMemoryKeyValueStore:
    def __init__(self):
        self._data: Dict[str, Any] = {}

    def get(self, key: str, default: Any = None) -> Any:
        if key not in self._data:
            return default
        # 与文件存储保持一致：读出的是副本而不是内部对象
        return json.loads(self._data[key])

    def set(self, key: str, value: Any) -> None:
        self._data[key] = json.dumps(value, ensure_ascii=False)

    def __contains__(self, key: str) -> bool:
        return key in self._data


class JsonFileKeyValueStore:
    """每个键一个 JSON 文件，写入时先写临时文件再 os.replace。"""

    def __init__(self, root: str | Path | None = None):
        self._root = Path(root or settings.storage_root).resolve() / "kv"
        self._root.mkdir(parents=True, exist_ok=True)

    def get(self, key: str, default: Any = None) -> Any:
        path = self._path(key)
        if not path.exists():
            return default
        try:
            return json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            raise BusinessError(code="STORE_READ_ERROR", message=str(e), key=key)

    def set(self, key: str, value: Any) -> None:
        path = self._path(key)
        tmp_path = self._root / f"{path.stem}.{uuid4().hex}.json.tmp"
        try:
            tmp_path.write_text(json.dumps(value, ensure_ascii=False), encoding="utf-8")
            os.replace(tmp_path, path)
        except (OSError, TypeError, ValueError) as e:
            raise BusinessError(code="STORE_WRITE_ERROR", message=str(e), key=key)

    def _path(self, key: str) -> Path:
        return self._root / f"{_UNSAFE_KEY_CHARS.sub('_', key)}.json"
