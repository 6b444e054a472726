import logging
import os
from logging.handlers import TimedRotatingFileHandler
from pathlib import Path
from typing import Optional, Union

_FORMAT = "[%(asctime)s] %(levelname)s %(name)s - %(message)s"

LOGGER_NAMES = ("rebate", "backend")


def _custom_namer(default_name: str) -> str:
    """自定义日志文件命名，格式为 name_YYYYMMDD.log。"""
    base_filename, date_suffix = default_name.rsplit(".", 1)
    log_dirname, log_basename = os.path.split(base_filename)
    log_prefix, log_ext = os.path.splitext(log_basename)
    return os.path.join(log_dirname, f"{log_prefix}_{date_suffix}{log_ext}")


def _level_from_env() -> int:
    level_name = os.getenv("REBATE_LOG_LEVEL", "INFO")
    return getattr(logging, level_name.upper(), logging.INFO)


def _daily_file_handler(log_dir: Path, name: str, level: int) -> TimedRotatingFileHandler:
    """按自然日切分的文件处理器（<log_dir>/<name>_YYYYMMDD.log）。"""
    log_dir.mkdir(parents=True, exist_ok=True)
    filename = str(log_dir / f"{name}.log")

    handler = TimedRotatingFileHandler(filename, when="midnight", backupCount=14, encoding="utf-8")
    handler.suffix = "%Y%m%d"
    handler.namer = _custom_namer
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(_FORMAT))
    return handler


def init_logging(log_dir: Union[str, Path], name: str = "rebate") -> None:
    """
    初始化 rebate / backend 两棵 logger：
      - 文件：<log_dir>/<name>_YYYYMMDD.log
      - 级别：环境变量 REBATE_LOG_LEVEL（默认 INFO）
    两棵 logger 共用同一个文件 handler（同一文件只能由一个 handler 负责切分）。
    重复调用会先关闭并清掉旧 handler。
    """
    level = _level_from_env()
    handler = _daily_file_handler(Path(log_dir), name, level)

    for logger_name in LOGGER_NAMES:
        lg = logging.getLogger(logger_name)
        lg.setLevel(level)
        for old in list(lg.handlers):
            lg.removeHandler(old)
            old.close()
        lg.addHandler(handler)

    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)


def get_logger(name: str, log_dir: Optional[Union[str, Path]] = None) -> logging.Logger:
    """为功能模块创建独立 logger；给了 log_dir 时按日切分写文件。"""
    level = _level_from_env()
    logger = logging.getLogger(name)
    logger.setLevel(level)
    if log_dir is not None and not logger.handlers:
        logger.addHandler(_daily_file_handler(Path(log_dir), name, level))
    return logger
