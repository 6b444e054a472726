"""
订单行合并 / 分组数量 / 爆品统计测试
"""
import pytest

from rebate.constants import PAY_AMT, QTY, RECHARGE
from rebate.engine import (
    build_group_key,
    compute_bomb_quantities,
    compute_group_quantities,
    merge_order_rows,
    price_key,
)


@pytest.mark.unit
class TestGroupKey:

    def test_price_key(self):
        assert price_key(12) == "12.00"
        assert price_key(9.996) == "10.00"
        assert price_key(-0.0) == "0.00"

    def test_group_key(self):
        assert build_group_key("SO1", "P1", 12.0) == "SO1__P1__12.00"


@pytest.mark.unit
class TestMerge:

    def test_same_order_product_price_merged(self, order_row):
        rows = [
            order_row(qty=3, pay=36, discount=1, coupon=0.5),
            order_row(qty=7, pay=84, discount=2, coupon=0.5),
        ]
        merged = merge_order_rows(rows)

        assert list(merged) == ["SO1__P1__12.00"]
        line = merged["SO1__P1__12.00"]
        assert line.quantity == 10
        assert line.paid_amount == 120
        assert line.total_discount == 3
        assert line.coupon_discount == 1
        assert line.row_count == 2
        assert line.settlement_price == pytest.approx(12.0)
        assert line.export_values[QTY] == 10
        assert line.export_values[PAY_AMT] == 120
        assert line.export_values[RECHARGE] == 0

    def test_group_quantity_matches_merge(self, order_row):
        rows = [order_row(qty=3, pay=36), order_row(qty=7, pay=84)]
        assert compute_group_quantities(rows) == {"SO1__P1__12.00": 10}

    def test_different_price_or_order_not_merged(self, order_row):
        rows = [
            order_row(qty=1, pay=12),
            order_row(qty=1, pay=11),
            order_row(order="SO2", qty=1, pay=12),
            order_row(code="P2", qty=1, pay=12),
        ]
        merged = merge_order_rows(rows)
        assert set(merged) == {
            "SO1__P1__12.00",
            "SO1__P1__11.00",
            "SO2__P1__12.00",
            "SO1__P2__12.00",
        }

    def test_key_uses_first_row_price(self, order_row):
        rows = [
            order_row(qty=1, pay=10.004),
            order_row(qty=1, pay=9.996),
        ]
        merged = merge_order_rows(rows)
        assert list(merged) == ["SO1__P1__10.00"]
        assert merged["SO1__P1__10.00"].settlement_price == pytest.approx(10.0)

    def test_recharge_counts_towards_settlement(self, order_row):
        merged = merge_order_rows([order_row(qty=4, pay=30, recharge=10)])
        assert list(merged) == ["SO1__P1__10.00"]

    def test_blank_order_or_code_skipped(self, order_row):
        rows = [
            order_row(order=""),
            order_row(code=None),
            order_row(order=float("nan")),
            order_row(),
        ]
        assert len(merge_order_rows(rows)) == 1
        assert sum(compute_group_quantities(rows).values()) == 5

    def test_zero_quantity_settles_at_zero(self, order_row):
        merged = merge_order_rows([order_row(qty=0, pay=10)])
        assert list(merged) == ["SO1__P1__0.00"]
        assert merged["SO1__P1__0.00"].settlement_price == 0

    def test_negative_zero_price_keyed_as_zero(self, order_row):
        merged = merge_order_rows([order_row(qty=-3, pay=0)])
        assert list(merged) == ["SO1__P1__0.00"]

    def test_first_row_fields_captured(self, order_row):
        rows = [
            order_row(qty=2, pay=24, sale_price=13, cust="连锁药店", order_date="2025-06-01"),
            order_row(qty=2, pay=24, sale_price=99, cust="单体", order_date="2025-07-01"),
        ]
        line = merge_order_rows(rows)["SO1__P1__12.00"]
        assert line.sale_price == 13
        assert line.customer_class == "连锁药店"
        assert str(line.order_date) == "2025-06-01"
        assert line.export_values["客户性质"] == "连锁药店"
        # 订单表里没有的导出列 → 空串
        assert line.export_values["签收时间"] == ""


@pytest.mark.unit
class TestRebateDeductionColumn:
    """返利抵扣：没有该列 与 值为 0 需要区分"""

    def test_absent_column_exports_blank(self, order_row):
        line = merge_order_rows([order_row()])["SO1__P1__12.00"]
        assert line.rebate_deduction_present is False
        assert line.rebate_deduction == 0
        assert line.rebate_deduction_export == ""

    def test_present_zero_exports_zero(self, order_row):
        line = merge_order_rows([order_row(rebate_deduct=None)])["SO1__P1__12.00"]
        assert line.rebate_deduction_present is True
        assert line.rebate_deduction_export == 0

    def test_present_values_summed(self, order_row):
        rows = [order_row(rebate_deduct=1.5), order_row(rebate_deduct=""), order_row(rebate_deduct=2)]
        line = merge_order_rows(rows)["SO1__P1__12.00"]
        assert line.rebate_deduction == pytest.approx(3.5)
        assert line.rebate_deduction_export == pytest.approx(3.5)


@pytest.mark.unit
class TestMergeIdempotence:

    def test_order_independent(self, order_row):
        rows = [
            order_row(qty=3, pay=36, recharge=0),
            order_row(qty=2, pay=20, recharge=4),
            order_row(qty=5, pay=60, recharge=0),
        ]
        a = merge_order_rows(rows)["SO1__P1__12.00"]
        b = merge_order_rows(list(reversed(rows)))["SO1__P1__12.00"]
        assert (a.quantity, a.paid_amount, a.recharge_deduction) == (b.quantity, b.paid_amount, b.recharge_deduction)

    def test_merged_line_as_raw_row_is_stable(self, order_row):
        rows = [order_row(qty=3, pay=36), order_row(qty=7, pay=84)]
        once = merge_order_rows(rows)["SO1__P1__12.00"]

        again_rows = [order_row(qty=once.quantity, pay=once.paid_amount, recharge=once.recharge_deduction)]
        twice = merge_order_rows(again_rows)["SO1__P1__12.00"]

        assert twice.quantity == once.quantity
        assert twice.paid_amount == once.paid_amount
        assert compute_group_quantities(again_rows) == compute_group_quantities(rows)


@pytest.mark.unit
class TestGroupQuantities:

    def test_gift_rows_excluded(self, order_row):
        rows = [order_row(qty=5, pay=60), order_row(qty=2, pay=0.02)]
        stats = compute_group_quantities(rows)
        assert stats == {"SO1__P1__12.00": 5}

    def test_return_rows_keyed_by_absolute_quantity(self, order_row):
        # 退货行：统计时用 |数量| 算结算单价，得到负价 key
        stats = compute_group_quantities([order_row(qty=-2, pay=-24)])
        assert stats == {"SO1__P1__-12.00": 2}


@pytest.mark.unit
class TestBombQuantities:

    def test_top_three_sum(self, order_row, make_rule, make_book):
        book = make_book(
            make_rule("B1", is_bomb_product=True),
            make_rule("B2", is_bomb_product=True),
            make_rule("B3", is_bomb_product=True),
            make_rule("B4", is_bomb_product=True),
            make_rule("N1"),
        )
        rows = [
            order_row(code="B1", qty=30, pay=300),
            order_row(code="B1", qty=20, pay=200),
            order_row(code="B2", qty=40, pay=400),
            order_row(code="B3", qty=30, pay=300),
            order_row(code="B4", qty=20, pay=200),
            order_row(code="N1", qty=100, pay=1000),
            order_row(code="B4", qty=500, pay=5),
            order_row(order="SO2", code="B1", qty=10, pay=100),
            order_row(order="SO2", code="B2", qty=-5, pay=-50),
        ]
        scores = compute_bomb_quantities(rows, book)
        # SO1：B1=50, B2=40, B3=30, B4=20 → 50+40+30 ；B4 的 0.01 赠品行不计
        assert scores == {"SO1": 120, "SO2": 15}

    def test_only_reference_rule_flag_counts(self, order_row, make_rule, make_book):
        book = make_book(
            make_rule("B1", lo=0, hi=100),
            make_rule("B1", lo=100, is_bomb_product=True),
        )
        assert compute_bomb_quantities([order_row(code="B1", qty=10, pay=100)], book) == {}

    def test_unknown_product_ignored(self, order_row, make_book):
        assert compute_bomb_quantities([order_row(code="X")], make_book()) == {}
