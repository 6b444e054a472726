from __future__ import annotations

import sys
from pathlib import Path
from typing import List, Optional

from config import APP_TITLE, AUTHOR_INFO, get_file_in_base, get_log_dir


def _strip_path(raw: str) -> str:
    """去掉拖拽文件到终端时带上的引号/空白。"""
    return raw.strip().strip('"').strip("'").strip()


def _ask_path(prompt: str) -> Optional[Path]:
    while True:
        raw = _strip_path(input(prompt))
        if raw.lower() in {"q", "quit", "exit"}:
            return None
        if not raw:
            print("输入为空，请重试。")
            continue
        p = Path(raw)
        if not p.exists():
            print(f"❌ 文件不存在：{p}")
            continue
        return p


def run_once(rule_path: Path, order_path: Path, out_path: Optional[Path] = None) -> Optional[Path]:
    """
    一次完整计算：
      [1/4] 解析挂网底价表
      [2/4] 读取订单表
      [3/4] 合并 + 统计 + 逐行判断
      [4/4] 导出结果
    返回导出文件路径；规则表/订单表有结构问题时打印原因并返回 None。
    """
    from rebate.engine import compute_rebates
    from rebate.formatter import (
        build_result_frame,
        build_status_line,
        default_result_filename,
        render_summary,
        summarize,
        write_result_xlsx,
    )
    from rebate.loader import OrderTableError, load_order_table, load_rulebook
    from rebate.logging_setup import get_logger
    from rebate.rulebook import RuleBookError

    logger = get_logger("rebate.cli")

    try:
        print(f"[1/4] 正在解析挂网底价表：{rule_path.name}", flush=True)
        rulebook = load_rulebook(rule_path)
        print(f"      包含 {len(rulebook)} 个商品、{rulebook.rule_count} 条规则。", flush=True)

        print(f"[2/4] 正在读取订单表：{order_path.name}", flush=True)
        table = load_order_table(order_path)
        if table.missing_columns:
            print(f"[Warn] 订单表缺少列：{', '.join(table.missing_columns)}（按空值处理）")
    except (RuleBookError, OrderTableError, ValueError, FileNotFoundError) as e:
        logger.warning("load failed: %s", e)
        print(f"❌ 载入数据失败：{e}")
        return None

    print(f"[3/4] 正在计算返利（{len(table)} 行原始数据）...", flush=True)
    outcomes = compute_rebates(table.records, rulebook)
    summary = summarize(outcomes)

    print(build_status_line(summary, rulebook.skipped_rows))
    print()
    print(render_summary(summary))
    print()

    if not outcomes:
        print("❌ 没有任何可导出的行，处理结束。")
        return None

    if out_path is None:
        out_path = Path(get_file_in_base(default_result_filename()))
    print(f"[4/4] 正在导出：{out_path}", flush=True)
    write_result_xlsx(build_result_frame(outcomes), out_path)
    print(f"\n✅ 导出完成：{out_path}\n")
    logger.info("exported %d lines to %s", len(outcomes), out_path)
    return out_path


# =========================
# 交互主循环
# =========================

def main(argv: Optional[List[str]] = None) -> None:
    argv = list(sys.argv[1:] if argv is None else argv)

    print("=" * 80)
    print(APP_TITLE)
    print(AUTHOR_INFO)
    print("=" * 80)

    print("正在加载依赖库，请稍候...\n", flush=True)

    # 这里 import 重型库
    from rebate.logging_setup import init_logging

    init_logging(get_log_dir())

    # 命令行直接给了两个文件：算一次就退出
    if len(argv) >= 2:
        out = Path(argv[2]) if len(argv) >= 3 else None
        result = run_once(Path(_strip_path(argv[0])), Path(_strip_path(argv[1])), out)
        sys.exit(0 if result is not None else 1)

    # 只给了规则表：第一轮沿用它，只问订单表
    preset_rule = Path(_strip_path(argv[0])) if argv else None

    while True:
        if preset_rule is not None and preset_rule.exists():
            rule_path = preset_rule
        else:
            rule_path = _ask_path("\n第一步：请输入【挂网底价表】路径（输入 q 退出）：")
        preset_rule = None
        if rule_path is None:
            print("程序已退出。")
            break

        order_path = _ask_path("第二步：请输入【订单表】路径（输入 q 退出）：")
        if order_path is None:
            print("程序已退出。")
            break

        run_once(rule_path, order_path)


if __name__ == "__main__":
    main()
