from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import date
from typing import Any, Dict, List, Optional, Sequence

from .classifier import is_yes, safe_str, to_date, to_float
from .constants import (
    RULE_CHAIN_MIN,
    RULE_CODE,
    RULE_END_DATE,
    RULE_FLOOR_PRICE_TOKENS,
    RULE_GIFT_ALLOW,
    RULE_HEADER_ROW,
    RULE_IS_BOMB,
    RULE_MIN_QTY,
    RULE_NET_PRICE_TOKEN,
    RULE_RANGE,
    RULE_REBATE,
    RULE_SINGLE_MIN,
    RULE_START_DATE,
)

logger = logging.getLogger(__name__)


class RuleBookError(ValueError):
    """挂网底价表结构错误（缺关键列 / 行数过少 / 找不到 Sheet）。"""


@dataclass(frozen=True)
class QuantityRange:
    min: float = 0.0
    max: float = math.inf

    def contains(self, qty: float) -> bool:
        # 左闭右开：qty == max 属于下一档
        return self.min <= qty < self.max


@dataclass(frozen=True)
class Rule:
    product_code: str
    quantity_range: QuantityRange
    floor_price: float
    net_price: Optional[float] = None
    rebate_per_unit: float = 0.0
    min_quantity: Optional[float] = None
    chain_min_quantity: Optional[float] = None
    single_min_quantity: Optional[float] = None
    is_bomb_product: bool = False
    gift_rebate_allowed: bool = False
    effective_from: Optional[date] = None
    effective_to: Optional[date] = None

    @property
    def has_date_window(self) -> bool:
        """只有开始、结束日期都填写时才算“限定日期”的政策。"""
        return self.effective_from is not None and self.effective_to is not None

    @property
    def is_undated(self) -> bool:
        return self.effective_from is None and self.effective_to is None

    def covers_date(self, order_date: Optional[date]) -> bool:
        """
        未限定日期 → 始终命中；
        只填一端 → 始终不命中；
        开始、结束都填 → 订单日期落在 [开始, 结束] 内才命中（无订单日期不命中）。
        """
        if self.is_undated:
            return True
        if not self.has_date_window or order_date is None:
            return False
        return self.effective_from <= order_date <= self.effective_to


def parse_range_text(text) -> QuantityRange:
    """
    区间规则文本：
      "a-b" → [a, b)
      "a+"  → [a, +∞)
      其他（含空白、无法解析的数字）→ [0, +∞)
    """
    s = safe_str(text)
    if not s:
        return QuantityRange()

    if "-" in s:
        lo, _, hi = s.partition("-")
        lo_f, hi_f = to_float(lo), to_float(hi)
        if lo_f is not None and hi_f is not None:
            return QuantityRange(lo_f, hi_f)
        return QuantityRange()

    if "+" in s:
        lo_f = to_float(s.split("+", 1)[0])
        if lo_f is not None:
            return QuantityRange(lo_f, math.inf)

    return QuantityRange()


def _header_text(cell) -> str:
    return safe_str(cell)


def _index_exact(header: Sequence[str], name: str) -> int:
    try:
        return header.index(name)
    except ValueError:
        return -1


def _index_where(header: Sequence[str], pred) -> int:
    for i, h in enumerate(header):
        if h and pred(h):
            return i
    return -1


def resolve_rule_columns(header_row: Sequence[Any]) -> Dict[str, int]:
    """表头文本 → 列位置；找不到的列为 -1。"""
    header = [_header_text(c) for c in header_row]
    return {
        "code": _index_exact(header, RULE_CODE),
        "range": _index_exact(header, RULE_RANGE),
        "price": _index_where(header, lambda h: all(t in h for t in RULE_FLOOR_PRICE_TOKENS)),
        "net_price": _index_where(header, lambda h: RULE_NET_PRICE_TOKEN in h and "底价" not in h),
        "rebate": _index_exact(header, RULE_REBATE),
        "min_qty": _index_exact(header, RULE_MIN_QTY),
        "chain_min": _index_exact(header, RULE_CHAIN_MIN),
        "single_min": _index_exact(header, RULE_SINGLE_MIN),
        "is_bomb": _index_exact(header, RULE_IS_BOMB),
        "gift_allow": _index_exact(header, RULE_GIFT_ALLOW),
        "start": _index_exact(header, RULE_START_DATE),
        "end": _index_exact(header, RULE_END_DATE),
    }


def _cell(row: Sequence[Any], i: int):
    if i < 0 or i >= len(row):
        return None
    return row[i]


class RuleBook:
    """
    商品编码 → 有序 Rule 列表（保持表内顺序）。
    每个编码的第一条规则为“参考规则”，用于底价 / 挂网价 / 赠品 / 爆品判断。
    """

    def __init__(self, rules: Optional[Dict[str, List[Rule]]] = None, skipped_rows: int = 0):
        self._rules: Dict[str, List[Rule]] = {}
        for code, items in (rules or {}).items():
            self._rules[code] = list(items)
        self.skipped_rows = skipped_rows

    @classmethod
    def from_rules(cls, rules: Sequence[Rule]) -> "RuleBook":
        book = cls()
        for r in rules:
            book._rules.setdefault(r.product_code, []).append(r)
        return book

    @classmethod
    def build(cls, rows: Sequence[Sequence[Any]], header_row_index: int = RULE_HEADER_ROW) -> "RuleBook":
        if len(rows) <= header_row_index:
            raise RuleBookError("规则表格式不正确，行数过少")

        idx = resolve_rule_columns(rows[header_row_index])
        if idx["code"] == -1 or idx["price"] == -1:
            raise RuleBookError("规则表缺少关键列（商品编码或挂网底价）")

        book = cls()
        skipped = 0
        for row_no in range(header_row_index + 1, len(rows)):
            row = rows[row_no]
            code = safe_str(_cell(row, idx["code"]))
            price = to_float(_cell(row, idx["price"]))
            if not code or price is None:
                if any(not _is_blank(c) for c in row):
                    skipped += 1
                    logger.debug("skip rule row %d: code=%r floor=%r", row_no, code, _cell(row, idx["price"]))
                continue

            rule = Rule(
                product_code=code,
                quantity_range=parse_range_text(_cell(row, idx["range"])),
                floor_price=price,
                net_price=to_float(_cell(row, idx["net_price"])),
                rebate_per_unit=to_float(_cell(row, idx["rebate"])) or 0.0,
                min_quantity=to_float(_cell(row, idx["min_qty"])),
                chain_min_quantity=to_float(_cell(row, idx["chain_min"])),
                single_min_quantity=to_float(_cell(row, idx["single_min"])),
                is_bomb_product=is_yes(_cell(row, idx["is_bomb"])),
                gift_rebate_allowed=is_yes(_cell(row, idx["gift_allow"])),
                effective_from=to_date(_cell(row, idx["start"])),
                effective_to=to_date(_cell(row, idx["end"])),
            )
            book._rules.setdefault(code, []).append(rule)

        book.skipped_rows = skipped
        logger.info(
            "rulebook built: %d products, %d rules, %d rows skipped",
            len(book), book.rule_count, skipped,
        )
        return book

    def lookup(self, product_code: str) -> List[Rule]:
        return self._rules.get(product_code, [])

    def reference_rule(self, product_code: str) -> Optional[Rule]:
        rules = self._rules.get(product_code)
        return rules[0] if rules else None

    @property
    def rule_count(self) -> int:
        return sum(len(v) for v in self._rules.values())

    def product_codes(self) -> List[str]:
        return list(self._rules.keys())

    def __len__(self) -> int:
        return len(self._rules)

    def __contains__(self, product_code: object) -> bool:
        return product_code in self._rules


def _is_blank(v) -> bool:
    return safe_str(v) == ""
