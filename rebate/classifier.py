import math
import numbers
from datetime import date, datetime, timedelta
from typing import Optional

import pandas as pd

from .constants import CHAIN_KEYWORDS, GIFT_PRICE, GIFT_TOLERANCE, YES

# Excel 1900 日期系统的修正基准日（序列号 25569 = 1970-01-01）
_EXCEL_EPOCH = date(1899, 12, 30)


def _is_missing(v) -> bool:
    if v is None:
        return True
    try:
        return bool(pd.isna(v))
    except (TypeError, ValueError):
        return False


def safe_str(v) -> str:
    """
    单元格 → 去空白字符串：
      - None / NaN → ""
      - 整数值的浮点（pandas 读编码列时常见 1001.0）→ "1001"
    """
    if _is_missing(v):
        return ""
    if isinstance(v, float) and v.is_integer():
        return str(int(v))
    return str(v).strip()


def to_float(v) -> Optional[float]:
    if v is None:
        return None
    try:
        if isinstance(v, str):
            v = v.strip()
            if not v:
                return None
        f = float(v)
        if math.isnan(f):
            return None
        return f
    except (TypeError, ValueError):
        return None


def to_date(v) -> Optional[date]:
    """
    日期单元格统一转成 date（丢弃时分秒）：
      - datetime / pd.Timestamp / date
      - Excel 序列号（数字）
      - 字符串（2025/11/4、2025-11-04 等，交给 pandas 解析）
    无法识别 → None
    """
    if _is_missing(v) or isinstance(v, bool):
        return None
    if isinstance(v, datetime):
        return v.date()
    if isinstance(v, date):
        return v
    if isinstance(v, numbers.Real):
        return _EXCEL_EPOCH + timedelta(days=float(v))
    s = str(v).strip()
    if not s:
        return None
    ts = pd.to_datetime(s, errors="coerce")
    if pd.isna(ts):
        return None
    return ts.date()


def is_yes(v) -> bool:
    return safe_str(v).lower() == YES


def is_chain_customer(cust_type) -> bool:
    """客户性质包含“连锁”或“批发” → 按连锁/批发起购量判断。"""
    s = safe_str(cust_type)
    return any(k in s for k in CHAIN_KEYWORDS)


def is_gift_price(settlement: float) -> bool:
    return abs(settlement - GIFT_PRICE) < GIFT_TOLERANCE
