"""<think> 标签过滤器。

模型可能在答案中输出 ``<think>…</think>`` 推理块，这部分永远不能展示给用户。
流式场景下标签可能被拆在任意两个数据块之间，因此过滤器不逐块处理，
而是每次都基于"到目前为止收到的全部原始文本"重新计算可显示内容：

1. 找到最后一个开标签和最后一个闭标签；
2. 若开标签在最后一个闭标签之后（推理块尚未闭合），只处理开标签之前的部分；
3. 去掉其中所有完整的 ``<think>…</think>`` 片段；
4. 与已显示内容按长度比较，只输出新增的后缀，已显示的字符不会被收回。

流结束时再对全部原始文本做一次 clean_think_tags，兜底处理始终未闭合的标签。
"""

import re
from enum import Enum

OPEN_TAG = "<think>"
CLOSE_TAG = "</think>"

_SPAN_RE = re.compile(r"<think>[\s\S]*?</think>", re.IGNORECASE | re.MULTILINE)
_OPEN_TO_END_RE = re.compile(r"<think>[\s\S]*", re.IGNORECASE)
_START_TO_CLOSE_RE = re.compile(r"[\s\S]*</think>", re.IGNORECASE)


class FilterState(str, Enum):
    PASSTHROUGH = "passthrough"
    SUPPRESSING = "suppressing"


def clean_think_tags(content: str, strip: bool = True) -> str:
    """去除 <think></think> 标签及其内容。

    先删除所有完整的标签对；若仍残留开/闭标签，按兜底规则处理：
    从第一个残留开标签到结尾全部删除，再从开头到最后一个闭标签全部删除。

    注意两种残留的处理并不对称（孤立闭标签会吞掉它前面的全部内容），
    这里保持与既有客户端一致的行为。
    """

    cleaned = _SPAN_RE.sub("", content)
    lowered = cleaned.lower()
    if OPEN_TAG in lowered or CLOSE_TAG in lowered:
        cleaned = _OPEN_TO_END_RE.sub("", cleaned, count=1)
        cleaned = _START_TO_CLOSE_RE.sub("", cleaned, count=1)
    return cleaned.strip() if strip else cleaned


def _partial_marker_suffix(text: str) -> int:
    """返回 text 末尾可能是标签前缀的长度，例如 "<th"、"</thi"。"""

    lowered = text[-len(CLOSE_TAG):].lower()
    best = 0
    for marker in (OPEN_TAG, CLOSE_TAG):
        for size in range(len(marker) - 1, 0, -1):
            if size <= best:
                break
            if lowered.endswith(marker[:size]):
                best = size
                break
    return best


class ThinkTagFilter:
    """增量 <think> 过滤器，一轮对话一个实例。"""

    def __init__(self):
        self._raw = ""
        self._displayed = ""
        self._finished = False

    @property
    def raw(self) -> str:
        return self._raw

    @property
    def displayed(self) -> str:
        return self._displayed

    @property
    def state(self) -> FilterState:
        lowered = self._raw.lower()
        if lowered.rfind(OPEN_TAG) > lowered.rfind(CLOSE_TAG):
            return FilterState.SUPPRESSING
        return FilterState.PASSTHROUGH

    def feed(self, text: str) -> str:
        """追加一段原始文本，返回本次新增的可显示内容（可能为空串）。"""

        if self._finished:
            raise ValueError("filter already finished")
        if not text:
            return ""
        self._raw += text
        return self._advance(self._visible_prefix())

    def finish(self) -> str:
        """流结束时调用，返回兜底清理后剩余的可显示内容。"""

        if self._finished:
            return ""
        self._finished = True
        return self._advance(clean_think_tags(self._raw, strip=False).lstrip())

    def _visible_prefix(self) -> str:
        lowered = self._raw.lower()
        open_idx = lowered.rfind(OPEN_TAG)
        close_idx = lowered.rfind(CLOSE_TAG)
        if open_idx > close_idx:
            eligible = self._raw[:open_idx]
        else:
            eligible = self._raw
            held = _partial_marker_suffix(eligible)
            if held:
                eligible = eligible[:-held]
        # 推理块后通常跟着空行，开头的空白等正文出现后再一起输出
        return clean_think_tags(eligible, strip=False).lstrip()

    def _advance(self, cleaned: str) -> str:
        if len(cleaned) <= len(self._displayed):
            return ""
        delta = cleaned[len(self._displayed):]
        self._displayed += delta
        return delta
