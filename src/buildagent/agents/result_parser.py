"""模型输出解析器

从自由文本回复中提取 JSON 对象。模型常把 JSON 包在 Markdown 代码块里，
或在数组/对象末尾多写逗号，解析前先做清理。
"""

import json
import re
from typing import Any

from loguru import logger

_FENCE_RE = re.compile(r"```[a-zA-Z0-9_-]*\s*")
_TRAILING_COMMA_RE = re.compile(r",(\s*[}\]])")


def strip_code_fences(text: str) -> str:
    """移除 Markdown 代码块标记"""
    return _FENCE_RE.sub("", text).strip()


def remove_trailing_commas(text: str) -> str:
    """移除 } 或 ] 之前多余的逗号"""
    return _TRAILING_COMMA_RE.sub(r"\1", text)


def extract_json_object(text: str) -> dict[str, Any] | None:
    """从文本中提取第一个 JSON 对象

    依次尝试：整体解析、截取首个 { 到末个 } 之间的内容。

    Args:
        text: 模型原始输出

    Returns:
        解析出的字典，失败返回 None
    """
    if not text or not text.strip():
        return None

    cleaned = remove_trailing_commas(strip_code_fences(text))
    candidates = [cleaned]

    start = cleaned.find("{")
    end = cleaned.rfind("}")
    if start != -1 and end > start:
        candidates.append(cleaned[start : end + 1])

    for candidate in candidates:
        try:
            parsed = json.loads(candidate)
        except (json.JSONDecodeError, TypeError):
            continue
        if isinstance(parsed, dict):
            return parsed

    logger.debug(f"[result_parser] no JSON object in: {text[:200]!r}")
    return None


def parse_terminal_payload(text: str) -> str | None:
    """解析旧式 JSON 终止信号

    文本为 ``{"action": "final_response", "message": ...}`` 时返回消息内容，
    否则返回 None。
    """
    payload = extract_json_object(text)
    if payload is None or payload.get("action") != "final_response":
        return None

    message = payload.get("message")
    parameters = payload.get("parameters")
    if message is None and isinstance(parameters, dict):
        message = parameters.get("message")
    return str(message) if message is not None else text
