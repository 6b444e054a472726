"""
Pytest 共享 fixtures：规则 / 订单行 / 合并行 构造器
"""
from datetime import date

import pytest

from rebate.constants import (
    COUPON,
    CUST_TYPE,
    DISCOUNT,
    ORDER_DATE,
    ORDER_NO,
    PAY_AMT,
    PROD_CODE,
    QTY,
    REBATE_DEDUCT,
    RECHARGE,
    SALE_PRICE,
)
from rebate.engine import MergedLine
from rebate.rulebook import QuantityRange, Rule, RuleBook

RULE_HEADER = [
    "商品编码", "通用名", "区间规则", "挂网价", "挂网底价", "返利", "起购数量",
    "连锁起购量", "单体起购量", "是否爆品", "赠品是否参与返利", "生效开始日期", "生效结束日期",
]

RULE_PREAMBLE = [
    ["返利匹配规则"],
    ["说明：区间左闭右开"],
    ["说明：起购数为 0 时价格达标即返利"],
    ["更新日期"],
]

_ABSENT = object()


def build_rule_row(
    code="P1",
    name="测试品",
    range_text="",
    net=None,
    floor=10,
    rebate=2,
    min_qty=None,
    chain_min=None,
    single_min=None,
    bomb="否",
    gift="否",
    start=None,
    end=None,
):
    return [code, name, range_text, net, floor, rebate, min_qty, chain_min, single_min, bomb, gift, start, end]


def build_rule_table(*data_rows, header=None):
    return [list(r) for r in RULE_PREAMBLE] + [list(header or RULE_HEADER)] + [list(r) for r in data_rows]


def build_order_row(
    order="SO1",
    code="P1",
    qty=5,
    pay=60,
    recharge=0,
    sale_price=None,
    cust="单体药店",
    discount=0,
    coupon=0,
    order_date="2025-06-15",
    rebate_deduct=_ABSENT,
):
    row = {
        ORDER_DATE: order_date,
        ORDER_NO: order,
        CUST_TYPE: cust,
        PROD_CODE: code,
        QTY: qty,
        SALE_PRICE: sale_price,
        PAY_AMT: pay,
        RECHARGE: recharge,
        DISCOUNT: discount,
        COUPON: coupon,
    }
    if rebate_deduct is not _ABSENT:
        row[REBATE_DEDUCT] = rebate_deduct
    return row


@pytest.fixture
def make_rule():
    def _make(code="P1", lo=0, hi=float("inf"), **kw):
        kw.setdefault("floor_price", 10.0)
        kw.setdefault("rebate_per_unit", 2.0)
        return Rule(product_code=code, quantity_range=QuantityRange(lo, hi), **kw)

    return _make


@pytest.fixture
def make_book():
    def _make(*rules):
        return RuleBook.from_rules(rules)

    return _make


@pytest.fixture
def order_row():
    return build_order_row


@pytest.fixture
def make_line():
    """直接构造 MergedLine（绕过合并），便于精确控制各金额。"""

    def _make(
        code="P1",
        qty=5.0,
        pay=60.0,
        recharge=0.0,
        sale_price=0.0,
        cust="单体药店",
        discount=0.0,
        coupon=0.0,
        rebate_deduct=0.0,
        order_date=date(2025, 6, 15),
        order="SO1",
    ):
        return MergedLine(
            group_key=f"{order}__{code}__x",
            order_number=order,
            product_code=code,
            customer_class=cust,
            order_date=order_date,
            sale_price=sale_price,
            quantity=qty,
            paid_amount=pay,
            recharge_deduction=recharge,
            rebate_deduction=rebate_deduct,
            rebate_deduction_present=True,
            total_discount=discount,
            coupon_discount=coupon,
        )

    return _make


@pytest.fixture
def rule_row():
    return build_rule_row


@pytest.fixture
def rule_table():
    return build_rule_table


# =========================
# Excel / CSV 文件构造（集成测试用）
# =========================

def write_rule_xlsx(path, rows, sheet_name="返利匹配规则"):
    import pandas as pd

    with pd.ExcelWriter(path, engine="openpyxl") as writer:
        pd.DataFrame(rows).to_excel(writer, sheet_name=sheet_name, header=False, index=False)
    return path


def write_order_xlsx(path, records):
    import pandas as pd

    pd.DataFrame(list(records)).to_excel(path, sheet_name="订单", index=False)
    return path


@pytest.fixture
def rules_file(tmp_path):
    """P1：两档区间；B1：爆品；均为单体门槛 1。"""
    rows = build_rule_table(
        build_rule_row(code="P1", range_text="0-100", floor=10, rebate=1, min_qty=1),
        build_rule_row(code="P1", range_text="100+", floor=9, rebate=2, min_qty=1),
        build_rule_row(code="B1", floor=5, rebate=0.5, bomb="是"),
    )
    return write_rule_xlsx(tmp_path / "rules.xlsx", rows)


@pytest.fixture
def orders_file(tmp_path):
    records = [
        build_order_row(order="SO1", code="P1", qty=3, pay=36),
        build_order_row(order="SO1", code="P1", qty=7, pay=84),
        build_order_row(order="SO1", code="P1", qty=1, pay=0.01),
        build_order_row(order="SO2", code="P1", qty=5, pay=40),
        build_order_row(order="SO3", code="X9", qty=1, pay=10),
    ]
    return write_order_xlsx(tmp_path / "orders.xlsx", records)


@pytest.fixture
def rule_xlsx():
    return write_rule_xlsx
