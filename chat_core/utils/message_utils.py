"""消息内容相关的小工具：标题生成、markdown 检测、展示前处理。"""

import math
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from chat_core.streaming.think_filter import clean_think_tags

_MARKDOWN_PATTERNS = [
    re.compile(r"#{1,6}\s"),  # 标题
    re.compile(r"\*\*.*?\*\*"),  # 粗体
    re.compile(r"\*.*?\*"),  # 斜体
    re.compile(r"`.*?`"),  # 行内代码
    re.compile(r"```[\s\S]*?```"),  # 代码块
    re.compile(r"\[.*?\]\(.*?\)"),  # 链接
    re.compile(r"^\s*[-*+]\s", re.MULTILINE),  # 无序列表
    re.compile(r"^\s*\d+\.\s", re.MULTILINE),  # 有序列表
    re.compile(r"^\s*>\s", re.MULTILINE),  # 引用
    re.compile(r"^\s*\|.*\|", re.MULTILINE),  # 表格
    re.compile(r"!\[.*?\]\(.*?\)"),  # 图片
]

# 按顺序匹配，命中第一个即停止
_TOPIC_EMOJI = [
    (re.compile(r"健康|医|病|症状|疼|痛|药"), "🏥 "),
    (re.compile(r"饮食|吃|喝|营养"), "🍎 "),
    (re.compile(r"运动|锻炼|健身"), "💪 "),
    (re.compile(r"睡|眠|休息"), "😴 "),
    (re.compile(r"心理|情绪|压力|焦虑"), "🧠 "),
]

_QUESTION_RE = re.compile(r"[^。？！]*？")
_FIRST_SENTENCE_RE = re.compile(r"^[^。！？]+")


@dataclass(frozen=True)
class ProcessedContent:
    cleaned_content: str
    has_markdown: bool


def has_markdown_content(content: str) -> bool:
    """检查内容中是否包含常见的 markdown 标记。"""
    return any(p.search(content) for p in _MARKDOWN_PATTERNS)


def process_message_content(content: str) -> ProcessedContent:
    """清理思考标签并判断是否需要 markdown 渲染。"""
    cleaned = clean_think_tags(content)
    return ProcessedContent(cleaned_content=cleaned, has_markdown=has_markdown_content(cleaned))


def _truncate(text: str, max_length: int) -> str:
    if len(text) > max_length:
        return text[: max_length - 3] + "..."
    return text


def generate_chat_title(content: str, max_length: int = 30, include_emoji: bool = True) -> str:
    """根据用户的第一条消息生成会话标题。

    优先取第一个问句（以全角问号结尾）；否则取第一句话，并按话题加上表情前缀。
    """

    clean_content = re.sub(r"\s+", " ", content.strip())

    question = _QUESTION_RE.search(clean_content)
    if question:
        return _truncate(question.group(0), max_length)

    first = _FIRST_SENTENCE_RE.match(clean_content)
    first_sentence = first.group(0) if first else clean_content

    emoji = ""
    if include_emoji:
        for pattern, candidate in _TOPIC_EMOJI:
            if pattern.search(clean_content):
                emoji = candidate
                break

    return emoji + _truncate(first_sentence, max_length)


def generate_time_based_title(date: Optional[datetime] = None, now: Optional[datetime] = None) -> str:
    """根据会话创建时间生成友好的默认标题。"""

    now = now or datetime.now(timezone.utc)
    date = date or now
    diff_minutes = math.floor((now - date).total_seconds() / 60)

    if diff_minutes < 1:
        return "刚刚的对话"
    if diff_minutes < 60:
        return f"{diff_minutes}分钟前的对话"
    if diff_minutes < 24 * 60:
        return f"{diff_minutes // 60}小时前的对话"
    local = date.astimezone()
    return f"{local.month}月{local.day}日 {local:%H:%M} 的对话"
