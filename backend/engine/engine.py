# backend/engine/engine.py
from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from rebate.engine import (
    MergedLine,
    RebateResult,
    compute_bomb_quantities,
    compute_group_quantities,
    compute_rebates,
    evaluate_line,
    merge_order_rows,
)
from rebate.formatter import build_result_frame, summarize, write_result_xlsx
from rebate.loader import load_order_table, load_rulebook
from rebate.rulebook import RuleBook

logger = logging.getLogger(__name__)

OUT_RESULT = "返利计算结果.xlsx"


@dataclass(frozen=True)
class EngineConfig:
    runtime_dir: Path

    @property
    def outputs_dir(self) -> Path:
        return self.runtime_dir / "outputs"

    @property
    def uploads_dir(self) -> Path:
        return self.runtime_dir / "uploads"

    @property
    def logs_dir(self) -> Path:
        return self.runtime_dir / "logs"


class RebateEngine:
    """
    薄 class：持有当前 RuleBook（上传一次，多次计算），
    每次 run 都从原始订单行重新合并/统计，不做增量。
    """

    def __init__(self, cfg: EngineConfig, rulebook: Optional[RuleBook] = None):
        self.cfg = cfg
        self.rulebook: Optional[RuleBook] = rulebook
        self._rules_source: Optional[str] = None
        self._loaded_at: Optional[float] = None

    @property
    def loaded(self) -> bool:
        return self.rulebook is not None

    def load_rules(self, path: Path, source_name: Optional[str] = None) -> Dict[str, Any]:
        """解析挂网底价表；失败时抛 RuleBookError，旧规则保持不变。"""
        book = load_rulebook(path)
        self.rulebook = book
        self._rules_source = source_name or Path(path).name
        self._loaded_at = time.time()
        return self.meta()

    def meta(self) -> Dict[str, Any]:
        if self.rulebook is None:
            return {"loaded": False}
        return {
            "loaded": True,
            "loaded_at_epoch": self._loaded_at,
            "rules_file": self._rules_source,
            "count_products": len(self.rulebook),
            "count_rules": self.rulebook.rule_count,
            "count_skipped_rows": self.rulebook.skipped_rows,
        }

    def _require_rules(self) -> RuleBook:
        if self.rulebook is None:
            raise RuntimeError("rulebook not loaded")
        return self.rulebook

    # ---- 分步接口（与 rebate.engine 一一对应）----

    def merge(self, records: List[Dict[str, Any]]) -> Dict[str, MergedLine]:
        return merge_order_rows(records)

    def aggregate_group_quantities(self, records: List[Dict[str, Any]]) -> Dict[str, float]:
        return compute_group_quantities(records)

    def aggregate_bomb_quantities(self, records: List[Dict[str, Any]]) -> Dict[str, float]:
        return compute_bomb_quantities(records, self._require_rules())

    def evaluate(self, line: MergedLine, group_quantity: float, bomb_score: float = 0.0) -> RebateResult:
        return evaluate_line(line, self._require_rules(), group_quantity, bomb_score)

    def compute(self, records: List[Dict[str, Any]]) -> List[Tuple[MergedLine, RebateResult]]:
        return compute_rebates(records, self._require_rules())

    # ---- 批量：订单文件 → 导出 xlsx ----

    def run_batch(self, input_path: Path, out_dir: Path) -> Dict[str, Any]:
        """
        input_path: 上传的订单表（xlsx/xls/csv）
        out_dir: /runtime/outputs/{job_id}
        """
        book = self._require_rules()
        table = load_order_table(input_path)
        outcomes = compute_rebates(table.records, book)

        out_dir.mkdir(parents=True, exist_ok=True)
        out_file = write_result_xlsx(build_result_frame(outcomes), out_dir / OUT_RESULT)

        summary = summarize(outcomes)
        logger.info("batch %s → %s (%d lines)", input_path.name, out_file, summary["count_lines"])
        return {
            "count_raw_rows": len(table),
            "count_lines": summary["count_lines"],
            "count_eligible": summary["count_eligible"],
            "count_ineligible": summary["count_ineligible"],
            "total_rebate": summary["total_rebate"],
            "top_reasons": [{"reason": r, "count": n} for r, n in summary["top_reasons"]],
            "missing_columns": table.missing_columns,
        }
