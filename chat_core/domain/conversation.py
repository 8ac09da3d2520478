from dataclasses import dataclass
from typing import Any, Optional, Protocol


@dataclass(frozen=True)
class UserIdentity:
    id: str
    display_name: str


class AuthProvider(Protocol):
    """认证协作方，只用于给存储键加命名空间和给远端传 user 标识。"""

    def current_user(self) -> Optional[UserIdentity]:
        ...


class KeyValueStore(Protocol):
    """持久化协作方：带命名空间的键值读写。"""

    def get(self, key: str, default: Any = None) -> Any:
        ...

    def set(self, key: str, value: Any) -> None:
        ...
