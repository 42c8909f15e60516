"""共享工具函数（消除跨模块重复）。"""
from __future__ import annotations

import json
import uuid
from datetime import datetime, timezone
from typing import Any


def now_rfc3339() -> str:
    """返回当前 UTC 时间的 RFC3339 字符串（以 Z 结尾）。"""
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def new_id() -> str:
    """生成新的随机 id（invocation/event/function call 共用）。"""
    return str(uuid.uuid4())


def canonical_json(obj: Any) -> str:
    """
    稳定的 JSON 序列化（key 排序、紧凑分隔符）。

    说明：
    - replay 校验用它做“严格相等”判断，避免 dict 插入顺序造成假阳性 mismatch。
    """
    return json.dumps(obj, sort_keys=True, ensure_ascii=False, separators=(",", ":"), default=str)
