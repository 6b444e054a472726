# rebate/formatter.py
from __future__ import annotations

import os
import re
import time
from collections import Counter
from datetime import datetime
from pathlib import Path
from typing import Any, List, Optional, Sequence, Tuple

import pandas as pd
import tabulate as _tab
from tabulate import tabulate

from .constants import EXPORT_COLUMNS, OUTPUT_HEADERS, RESULT_SHEET_NAME
from .engine import MergedLine, RebateResult

_tab.WIDE_CHARS_MODE = True
_tab.PRESERVE_WHITESPACE = True

_NO_ANSI = os.getenv("REBATE_NO_ANSI", "").strip().lower() in {"1", "true", "yes", "y", "on"}

_ZERO_WIDTH = re.compile(r"[\u200B-\u200F\uFEFF]")

# 汇总里最多展示的不返利原因条数
TOP_REASONS = 10

Outcome = Tuple[MergedLine, RebateResult]


def _bold(s: str) -> str:
    if _NO_ANSI:
        return s
    return f"\033[1m{s}\033[0m"


def _sanitize_cell_text(x) -> str:
    """清洗不可见字符 + 避免 '|' 伪装成表格边框"""
    s = "" if x is None else str(x)
    s = s.replace("\r", "")
    s = s.replace("\t", "    ")
    s = _ZERO_WIDTH.sub("", s)
    s = s.replace("|", "¦")
    return s


def _optional(v: Optional[float]) -> Any:
    return "" if v is None else v


def result_columns(line: MergedLine, result: RebateResult) -> List[Any]:
    """OUTPUT_HEADERS 对应的 10 个结果单元格。"""
    return [
        f"{result.settlement_price:.2f}",
        line.coupon_discount,
        line.total_discount,
        line.rebate_deduction_export,
        _optional(result.matched_net_price),
        _optional(result.matched_floor_price),
        f"{result.unit_rebate:.2f}",
        result.eligible_label,
        f"{result.total_rebate:.2f}",
        result.denial_reason,
    ]


def build_result_rows(outcomes: Sequence[Outcome]) -> List[List[Any]]:
    """导出行：首行为表头，其后每个合并行一行（导出列原值 + 结果列）。"""
    rows: List[List[Any]] = [[*EXPORT_COLUMNS, *OUTPUT_HEADERS]]
    for line, result in outcomes:
        passthrough = [line.export_values.get(c, "") for c in EXPORT_COLUMNS]
        rows.append(passthrough + result_columns(line, result))
    return rows


def build_result_frame(outcomes: Sequence[Outcome]) -> pd.DataFrame:
    rows = build_result_rows(outcomes)
    return pd.DataFrame(rows[1:], columns=rows[0])


def default_result_filename(now: Optional[datetime] = None) -> str:
    now = now or datetime.now()
    return f"返利计算结果_{now.strftime('%Y%m%d')}_{int(time.time() * 1000)}.xlsx"


def write_result_xlsx(df: pd.DataFrame, out_path: Path) -> Path:
    out_path = Path(out_path)
    out_path.parent.mkdir(parents=True, exist_ok=True)
    with pd.ExcelWriter(out_path, engine="openpyxl") as writer:
        df.to_excel(writer, sheet_name=RESULT_SHEET_NAME, index=False)
    return out_path


# =========================
# 控制台汇总
# =========================

def summarize(outcomes: Sequence[Outcome]) -> dict:
    eligible = [r for _, r in outcomes if r.is_eligible]
    reasons = Counter(r.denial_reason for _, r in outcomes if not r.is_eligible)
    return {
        "count_lines": len(outcomes),
        "count_eligible": len(eligible),
        "count_ineligible": len(outcomes) - len(eligible),
        "total_rebate": round(sum(r.total_rebate for r in eligible), 2),
        "top_reasons": reasons.most_common(TOP_REASONS),
    }


def render_summary(summary: dict) -> str:
    """
    两张表：
      - 总览：行数 / 返利行数 / 不返利行数 / 返利总额
      - 不返利原因 Top N
    """
    overview = [
        [_bold("合并后行数"), summary["count_lines"]],
        [_bold("返利行数"), summary["count_eligible"]],
        [_bold("不返利行数"), summary["count_ineligible"]],
        [_bold("返利总额"), f"{summary['total_rebate']:.2f}"],
    ]
    out = [tabulate(overview, headers=["Name", "Value"], tablefmt="grid", disable_numparse=True)]

    reasons = summary.get("top_reasons") or []
    if reasons:
        rows = [[_sanitize_cell_text(reason), n] for reason, n in reasons]
        out.append(tabulate(rows, headers=["不返利原因", "行数"], tablefmt="grid"))

    return "\n\n".join(out)


def build_status_line(summary: dict, skipped_rule_rows: int = 0) -> str:
    if summary["count_lines"] == 0:
        return "计算状态：订单表中没有可计算的行（销售单号/商品编码为空）"
    line = (
        f"计算状态：计算完成（{summary['count_lines']} 行，"
        f"返利 {summary['count_eligible']} 行）"
    )
    if skipped_rule_rows:
        line += f" | 挂网底价表跳过 {skipped_rule_rows} 行无效规则"
    return line
