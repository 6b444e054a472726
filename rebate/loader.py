from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Sequence, Union

import pandas as pd

from .classifier import safe_str
from .constants import (
    COUPON,
    CUST_TYPE,
    DISCOUNT,
    ORDER_DATE,
    ORDER_NO,
    PAY_AMT,
    PROD_CODE,
    QTY,
    RECHARGE,
    RULE_HEADER_ROW,
    RULE_SHEET_NAME,
    SALE_PRICE,
)
from .rulebook import RuleBook, RuleBookError

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]

# 逻辑计算必需的订单列（返利抵扣为可选列，不在此列）
REQUIRED_ORDER_COLUMNS = [
    ORDER_DATE, ORDER_NO, CUST_TYPE, PROD_CODE, QTY, SALE_PRICE,
    PAY_AMT, RECHARGE, DISCOUNT, COUPON,
]

SUPPORTED_SUFFIXES = (".xlsx", ".xls", ".csv")


class OrderTableError(ValueError):
    """订单表为空或无法读取。"""


@dataclass
class OrderTable:
    columns: List[str]
    records: List[Dict[str, Any]] = field(default_factory=list)
    source_path: Path = None

    @property
    def missing_columns(self) -> List[str]:
        return [c for c in REQUIRED_ORDER_COLUMNS if c not in self.columns]

    def __len__(self) -> int:
        return len(self.records)


def _read_excel_any(path: Path, **kwargs) -> pd.DataFrame:
    # .xls/.xlsx：统一用 pandas 读
    suffix = path.suffix.lower()
    if suffix == ".xls":
        return pd.read_excel(path, engine="xlrd", **kwargs)
    return pd.read_excel(path, **kwargs)


def _frame_to_rows(df: pd.DataFrame) -> List[List[Any]]:
    """DataFrame → 行列表，NaN 统一换成 None。"""
    df = df.astype(object).where(pd.notna(df), None)
    return df.values.tolist()


def _check_suffix(path: Path) -> str:
    suffix = path.suffix.lower()
    if suffix not in SUPPORTED_SUFFIXES:
        raise ValueError("only .xlsx/.xls/.csv supported")
    return suffix


# =========================
# 挂网底价表
# =========================

def find_rule_sheet(sheet_names: Sequence[str], wanted: str = RULE_SHEET_NAME) -> str:
    for name in sheet_names:
        if str(name).strip() == wanted:
            return name
    raise RuleBookError(f"未找到名称为【{wanted}】的 Sheet")


def load_rule_rows(path: PathLike, sheet_name: str = RULE_SHEET_NAME) -> List[List[Any]]:
    """
    读取挂网底价表为“原始行”（不解析表头）。
      - .xlsx/.xls：按名称（去空白）找 Sheet
      - .csv：整张表即规则表
    """
    path = Path(path)
    suffix = _check_suffix(path)
    if not path.exists():
        raise FileNotFoundError(f"rule file not found: {path}")

    if suffix == ".csv":
        df = pd.read_csv(path, header=None, dtype=object, skip_blank_lines=False)
        return _frame_to_rows(df)

    engine = "xlrd" if suffix == ".xls" else None
    with pd.ExcelFile(path, engine=engine) as xls:
        name = find_rule_sheet(xls.sheet_names, sheet_name)
        df = xls.parse(sheet_name=name, header=None)
    return _frame_to_rows(df)


def load_rulebook(
    path: PathLike,
    sheet_name: str = RULE_SHEET_NAME,
    header_row_index: int = RULE_HEADER_ROW,
) -> RuleBook:
    rows = load_rule_rows(path, sheet_name=sheet_name)
    return RuleBook.build(rows, header_row_index=header_row_index)


# =========================
# 订单表
# =========================

def records_from_rows(rows: Sequence[Sequence[Any]]) -> OrderTable:
    """
    第 0 行为表头的二维行 → OrderTable。
    空表头单元格不会成为列；短行按 None 补齐。
    """
    if not rows or len(rows) < 2:
        raise OrderTableError("订单表数据为空")

    header = [safe_str(h) for h in rows[0]]
    records: List[Dict[str, Any]] = []
    for row in rows[1:]:
        rec: Dict[str, Any] = {}
        for i, name in enumerate(header):
            if not name or name in rec:
                continue
            rec[name] = row[i] if i < len(row) else None
        records.append(rec)

    columns = []
    for name in header:
        if name and name not in columns:
            columns.append(name)
    return OrderTable(columns=columns, records=records)


def load_order_table(path: PathLike) -> OrderTable:
    """读取订单表（第一个 Sheet，第 0 行为表头）。"""
    path = Path(path)
    suffix = _check_suffix(path)
    if not path.exists():
        raise FileNotFoundError(f"order file not found: {path}")

    if suffix == ".csv":
        df = pd.read_csv(path, header=None, dtype=object)
    else:
        df = _read_excel_any(path, sheet_name=0, header=None)

    table = records_from_rows(_frame_to_rows(df))
    table.source_path = path

    missing = table.missing_columns
    if missing:
        logger.warning("order table %s missing columns: %s", path.name, ", ".join(missing))
    return table
