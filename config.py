import os
import sys

# =========================
# 基本信息
# =========================

APP_TITLE = "返利计算自动化CLI软件（区间挂网底价）"
AUTHOR_INFO = (
    "导入【挂网底价表】（Sheet：返利匹配规则）和【订单表】即可计算返利\n"
    "底价、挂网价先于数量/日期校验；起购数为 0 的商品价格达标即返利\n"
    "结果如有疑问，请先核对挂网底价表中的区间、日期和起购量设置"
)


# =========================
# 路径工具
# =========================

def _get_exe_dir() -> str:
    """
    返回“可写目录”（外部可见）：
    - 打包后：exe 所在目录（os.path.dirname(sys.executable)）
    - 源码运行：config.py 所在目录（方便开发调试）
    用于：导出的 返利计算结果_*.xlsx、日志目录
    """
    if getattr(sys, "frozen", False) and hasattr(sys, "executable"):
        return os.path.dirname(sys.executable)
    return os.path.dirname(os.path.abspath(__file__))


def get_file_in_base(filename: str) -> str:
    """exe（或源码）同目录下的外部文件。"""
    return os.path.join(_get_exe_dir(), filename)


def get_runtime_dir() -> str:
    """
    服务端运行目录（uploads / outputs / logs）：
    - 环境变量 REBATE_RUNTIME_DIR 优先
    - 否则为 <base>/runtime
    """
    env = os.getenv("REBATE_RUNTIME_DIR", "").strip()
    if env:
        return os.path.abspath(env)
    return os.path.join(_get_exe_dir(), "runtime")


def get_log_dir() -> str:
    return os.path.join(get_runtime_dir(), "logs")
