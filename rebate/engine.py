from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from .classifier import is_chain_customer, is_gift_price, safe_str, to_date, to_float
from .constants import (
    BOMB_TOP_N,
    COUPON,
    CUST_TYPE,
    DEFAULT_CHAIN_MIN,
    DEFAULT_SINGLE_MIN,
    DISCOUNT,
    EXPORT_COLUMNS,
    NO,
    ORDER_DATE,
    ORDER_NO,
    PAY_AMT,
    PRICE_TOLERANCE,
    PROD_CODE,
    QTY,
    REBATE_DEDUCT,
    RECHARGE,
    SALE_PRICE,
    YES,
)
from .rulebook import Rule, RuleBook

logger = logging.getLogger(__name__)

OrderRecord = Mapping[str, Any]


# =========================
# 不返利原因
# =========================

REASON_NO_POLICY = "无匹配政策"
REASON_GIFT_NOT_ALLOWED = "赠品不参与返利"
REASON_NO_DATE_POLICY = "无日期匹配的政策"
REASON_ZERO_REBATE = "返利金额为0"


def _num_text(v: float) -> str:
    """数字原样展示：整数不带 .0（300 而非 300.0）。"""
    f = float(v)
    if f.is_integer():
        return str(int(f))
    return repr(f)


def price_key(price: float) -> str:
    # + 0.0 把 -0.0 归一成 0.0，避免出现 "-0.00" 分组
    return f"{price + 0.0:.2f}"


def build_group_key(order_no: str, code: str, settlement: float) -> str:
    return f"{order_no}__{code}__{price_key(settlement)}"


def settlement_price(pay: float, recharge: float, qty: float) -> float:
    return (pay + recharge) / qty if qty != 0 else 0.0


def _amount(row: OrderRecord, col: str) -> float:
    return to_float(row.get(col)) or 0.0


# =========================
# 数据结构
# =========================

@dataclass(frozen=True)
class MergedLine:
    """
    同一【销售单号 + 商品编码 + 结算单价(2 位)】合并后的订单行。
    export_values 为首行的导出列原值（数量/支付金额/充值抵扣 为合并后合计）。
    """
    group_key: str
    order_number: str
    product_code: str
    customer_class: str
    order_date: Optional[date]
    sale_price: float
    quantity: float
    paid_amount: float
    recharge_deduction: float
    rebate_deduction: float
    rebate_deduction_present: bool
    total_discount: float
    coupon_discount: float
    row_count: int = 1
    export_values: Dict[str, Any] = field(default_factory=dict)

    @property
    def settlement_price(self) -> float:
        return settlement_price(self.paid_amount, self.recharge_deduction, self.quantity)

    @property
    def abs_quantity(self) -> float:
        return abs(self.quantity)

    @property
    def price_to_compare(self) -> float:
        """销售单价优先，缺失或 ≤0 时退回结算单价。"""
        if self.sale_price > 0:
            return self.sale_price
        return self.settlement_price

    @property
    def rebate_deduction_export(self):
        # 订单表没有“返利抵扣”列 → 导出空串；有列但值为 0 → 导出 0
        if not self.rebate_deduction_present:
            return ""
        return self.rebate_deduction


@dataclass(frozen=True)
class RebateResult:
    settlement_price: float
    matched_floor_price: Optional[float]
    matched_net_price: Optional[float]
    unit_rebate: float
    is_eligible: bool
    total_rebate: float
    denial_reason: str = ""

    @property
    def eligible_label(self) -> str:
        return YES if self.is_eligible else NO


# =========================
# ① 合并订单行
# =========================

def merge_order_rows(records: Iterable[OrderRecord]) -> Dict[str, MergedLine]:
    """
    合并相同【订单号 + 商品编码 + 结算单价】的行。

    - 分组 key 只用首行的瞬时结算单价（合并后不重新分组）
    - 合计：数量、支付金额、充值抵扣、返利抵扣、全部优惠、优惠券优惠
    - 销售单号或商品编码为空的行直接跳过
    """
    acc: Dict[str, Dict[str, Any]] = {}

    for row in records:
        order_no = safe_str(row.get(ORDER_NO))
        code = safe_str(row.get(PROD_CODE))
        if not order_no or not code:
            continue

        qty = _amount(row, QTY)
        pay = _amount(row, PAY_AMT)
        recharge = _amount(row, RECHARGE)
        rebate_deduct = _amount(row, REBATE_DEDUCT)
        discount = _amount(row, DISCOUNT)
        coupon = _amount(row, COUPON)

        key = build_group_key(order_no, code, settlement_price(pay, recharge, qty))

        m = acc.get(key)
        if m is None:
            acc[key] = {
                "first_row": row,
                "order_number": order_no,
                "product_code": code,
                "rebate_deduction_present": REBATE_DEDUCT in row,
                "export_values": {c: row.get(c, "") for c in EXPORT_COLUMNS},
                "quantity": qty,
                "paid_amount": pay,
                "recharge_deduction": recharge,
                "rebate_deduction": rebate_deduct,
                "total_discount": discount,
                "coupon_discount": coupon,
                "row_count": 1,
            }
            continue

        m["quantity"] += qty
        m["paid_amount"] += pay
        m["recharge_deduction"] += recharge
        m["rebate_deduction"] += rebate_deduct
        m["total_discount"] += discount
        m["coupon_discount"] += coupon
        m["row_count"] += 1

        ev = m["export_values"]
        ev[QTY] = m["quantity"]
        ev[PAY_AMT] = m["paid_amount"]
        ev[RECHARGE] = m["recharge_deduction"]

    merged: Dict[str, MergedLine] = {}
    for key, m in acc.items():
        first = m["first_row"]
        merged[key] = MergedLine(
            group_key=key,
            order_number=m["order_number"],
            product_code=m["product_code"],
            customer_class=safe_str(first.get(CUST_TYPE)),
            order_date=to_date(first.get(ORDER_DATE)),
            sale_price=_amount(first, SALE_PRICE),
            quantity=m["quantity"],
            paid_amount=m["paid_amount"],
            recharge_deduction=m["recharge_deduction"],
            rebate_deduction=m["rebate_deduction"],
            rebate_deduction_present=m["rebate_deduction_present"],
            total_discount=m["total_discount"],
            coupon_discount=m["coupon_discount"],
            row_count=m["row_count"],
            export_values=m["export_values"],
        )
    return merged


# =========================
# ② 统计：分组数量 & 爆品
# =========================

def _abs_qty_and_settlement(row: OrderRecord) -> Tuple[float, float]:
    qty = abs(_amount(row, QTY))
    return qty, settlement_price(_amount(row, PAY_AMT), _amount(row, RECHARGE), qty)


def compute_group_quantities(records: Iterable[OrderRecord]) -> Dict[str, float]:
    """
    每个【销售单号 + 商品编码 + 结算单价】的有效总数量（绝对值求和）。
    赠品价（0.01）行不计入。
    """
    stats: Dict[str, float] = {}
    for row in records:
        order_no = safe_str(row.get(ORDER_NO))
        code = safe_str(row.get(PROD_CODE))
        if not order_no or not code:
            continue

        qty, settlement = _abs_qty_and_settlement(row)
        if is_gift_price(settlement):
            continue

        key = build_group_key(order_no, code, settlement)
        stats[key] = stats.get(key, 0.0) + qty
    return stats


def compute_bomb_quantities(
    records: Iterable[OrderRecord],
    rulebook: RuleBook,
    top_n: int = BOMB_TOP_N,
) -> Dict[str, float]:
    """
    每个订单的爆品得分：该订单内各爆品（参考规则标记“是否爆品”）数量合计，
    取最大的前 top_n 个求和；不足 top_n 个时全部相加。
    """
    per_order: Dict[str, Dict[str, float]] = {}
    for row in records:
        order_no = safe_str(row.get(ORDER_NO))
        code = safe_str(row.get(PROD_CODE))
        if not order_no or not code:
            continue

        qty, settlement = _abs_qty_and_settlement(row)
        if is_gift_price(settlement):
            continue

        ref = rulebook.reference_rule(code)
        if ref is None or not ref.is_bomb_product:
            continue

        prod_map = per_order.setdefault(order_no, {})
        prod_map[code] = prod_map.get(code, 0.0) + qty

    scores: Dict[str, float] = {}
    for order_no, prod_map in per_order.items():
        qtys = sorted(prod_map.values(), reverse=True)
        scores[order_no] = sum(qtys[:top_n])
    return scores


# =========================
# ③ 单行返利判断
# =========================

def _result(
    line: MergedLine,
    eligible: bool,
    reason: str,
    rule: Optional[Rule],
    is_gift: bool = False,
) -> RebateResult:
    unit = rule.rebate_per_unit if rule is not None else 0.0

    total = 0.0
    if eligible:
        if is_gift:
            # 赠品：不扣优惠和返利抵扣，也不兜底为 0
            total = unit * line.quantity
        else:
            total = unit * line.quantity - line.total_discount - line.rebate_deduction
            if total < 0:
                total = 0.0

    return RebateResult(
        settlement_price=line.settlement_price,
        matched_floor_price=rule.floor_price if rule is not None else None,
        matched_net_price=rule.net_price if rule is not None else None,
        unit_rebate=unit,
        is_eligible=eligible,
        total_rebate=total,
        denial_reason=reason,
    )


def select_date_rules(rules: List[Rule], order_date: Optional[date]) -> List[Rule]:
    """
    日期过滤：
      - 限定日期的规则：订单日期落在 [开始, 结束] 内才保留
      - 开始、结束都未填的规则：始终保留
      - 只填一端的规则：丢弃
    只要有限定日期的规则命中，就只用它们，并按开始日期倒序（最新的活动优先）。
    """
    matched = [r for r in rules if r.covers_date(order_date)]
    dated = [r for r in matched if r.has_date_window]
    if dated:
        return sorted(dated, key=lambda r: r.effective_from, reverse=True)
    return matched


def select_tier(rules: List[Rule], qty: float) -> Rule:
    """命中 [min, max) 的第一条；都不命中时退回第一条（仅用于展示，后续区间复核会拒绝）。"""
    for r in rules:
        if r.quantity_range.contains(qty):
            return r
    return rules[0]


def required_min_quantity(
    rule: Rule,
    customer_class: str,
    bomb_score: float,
) -> Tuple[float, str]:
    """
    起购量门槛 → (门槛, 提示语前缀)；门槛 0 表示豁免。
    0 / 未填写都视为“未设置”，继续向下兜底。
    """
    if is_chain_customer(customer_class):
        limit = rule.chain_min_quantity or rule.min_quantity or DEFAULT_CHAIN_MIN
        return limit, f"连锁/批发起购量需≥{_num_text(limit)}"

    single = rule.single_min_quantity or rule.min_quantity
    if single:
        return single, f"单体起购量需≥{_num_text(single)}"

    if bomb_score >= DEFAULT_SINGLE_MIN:
        return 0, ""
    return (
        DEFAULT_SINGLE_MIN,
        f"单体需≥{DEFAULT_SINGLE_MIN}或爆品前三合≥{DEFAULT_SINGLE_MIN}(当前{_num_text(bomb_score)})",
    )


def evaluate_line(
    line: MergedLine,
    rulebook: RuleBook,
    group_quantity: float,
    bomb_score: float = 0.0,
) -> RebateResult:
    """
    单行返利判断，按顺序命中第一个终止状态：
      无政策 → 赠品 → 挂网价 → 底价 → 起购数为 0 直通 → 日期 → 区间 → 返利额 → 起购量 → 返利
    价格校验永远先于数量/日期校验。
    """
    rules = rulebook.lookup(line.product_code)
    if not rules:
        return _result(line, False, REASON_NO_POLICY, None)

    ref = rules[0]
    settlement = line.settlement_price

    if is_gift_price(settlement):
        if not ref.gift_rebate_allowed:
            return _result(line, False, REASON_GIFT_NOT_ALLOWED, ref)
        return _result(line, True, "", ref, is_gift=True)

    compare = line.price_to_compare
    if ref.net_price is not None and compare < ref.net_price - PRICE_TOLERANCE:
        reason = f"销售单价{compare:.2f}必须大于等于挂网价{_num_text(ref.net_price)}（当前更低）"
        return _result(line, False, reason, ref)

    if settlement < ref.floor_price - PRICE_TOLERANCE:
        reason = f"结算单价{settlement:.2f}必须大于等于底价{_num_text(ref.floor_price)}（当前更低）"
        return _result(line, False, reason, ref)

    if ref.min_quantity == 0:
        return _result(line, True, "", ref)

    candidates = select_date_rules(rules, line.order_date)
    if not candidates:
        return _result(line, False, REASON_NO_DATE_POLICY, ref)

    active = select_tier(candidates, group_quantity)

    if not active.quantity_range.contains(group_quantity):
        reason = f"总数量 {_num_text(group_quantity)} 不在任何返利区间内"
        return _result(line, False, reason, active)

    if active.rebate_per_unit <= 0:
        return _result(line, False, REASON_ZERO_REBATE, active)

    limit, msg = required_min_quantity(active, line.customer_class, bomb_score)
    if limit > 0 and group_quantity < limit:
        return _result(line, False, f"{msg}，当前总数{_num_text(group_quantity)}", active)

    return _result(line, True, "", active)


# =========================
# ④ 整体流程
# =========================

def compute_rebates(
    records: Iterable[OrderRecord],
    rulebook: RuleBook,
) -> List[Tuple[MergedLine, RebateResult]]:
    """
    原始订单记录 → [(合并行, 返利结果)]，顺序与合并行首次出现的顺序一致。
    三次独立遍历原始记录（合并 / 分组数量 / 爆品），每次调用都重新计算。
    """
    rows = list(records)
    merged = merge_order_rows(rows)
    group_stats = compute_group_quantities(rows)
    bomb_stats = compute_bomb_quantities(rows, rulebook)

    outcomes: List[Tuple[MergedLine, RebateResult]] = []
    for key, line in merged.items():
        result = evaluate_line(
            line,
            rulebook,
            group_stats.get(key, 0.0),
            bomb_stats.get(line.order_number, 0.0),
        )
        outcomes.append((line, result))

    eligible = sum(1 for _, r in outcomes if r.is_eligible)
    logger.info(
        "rebate run: %d raw rows, %d merged lines, %d eligible",
        len(rows), len(outcomes), eligible,
    )
    return outcomes
