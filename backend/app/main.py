# backend/app/main.py
from __future__ import annotations

import json
import shutil
import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

from fastapi import FastAPI, File, HTTPException, UploadFile
from fastapi.responses import FileResponse
from pydantic import BaseModel

from backend.engine.engine import OUT_RESULT, EngineConfig, RebateEngine
from config import get_runtime_dir
from rebate.loader import SUPPORTED_SUFFIXES, OrderTableError
from rebate.logging_setup import get_logger, init_logging
from rebate.rulebook import RuleBookError

RUNTIME_DIR = Path(get_runtime_dir())

STATE_NAME = "state.json"

logger = get_logger("backend.app")


def _cfg() -> EngineConfig:
    # 按当前 RUNTIME_DIR 生成
    return EngineConfig(runtime_dir=RUNTIME_DIR)


def _uploads_dir() -> Path:
    return _cfg().uploads_dir


def _outputs_dir() -> Path:
    return _cfg().outputs_dir


def _logs_dir() -> Path:
    return _cfg().logs_dir


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _ensure_dirs() -> None:
    for d in (_uploads_dir(), _outputs_dir(), _logs_dir()):
        d.mkdir(parents=True, exist_ok=True)


def _job_dirs(job_id: str) -> Tuple[Path, Path]:
    up = _uploads_dir() / job_id
    out = _outputs_dir() / job_id
    up.mkdir(parents=True, exist_ok=True)
    out.mkdir(parents=True, exist_ok=True)
    return up, out


def _state_path(job_id: str) -> Path:
    return (_outputs_dir() / job_id) / STATE_NAME


def _write_state(job_id: str, state: Dict[str, Any]) -> None:
    p = _state_path(job_id)
    p.parent.mkdir(parents=True, exist_ok=True)
    tmp = p.with_suffix(".tmp")
    tmp.write_text(json.dumps(state, ensure_ascii=False, indent=2), encoding="utf-8")
    tmp.replace(p)


def _read_state(job_id: str) -> Dict[str, Any]:
    p = _state_path(job_id)
    if not p.exists():
        raise HTTPException(status_code=404, detail="job_id not found")
    return json.loads(p.read_text(encoding="utf-8"))


def _save_upload(file: UploadFile, dest_dir: Path, stem: str) -> Path:
    if not file.filename:
        raise HTTPException(status_code=400, detail="file name missing")
    suffix = Path(file.filename).suffix.lower()
    if suffix not in SUPPORTED_SUFFIXES:
        raise HTTPException(status_code=400, detail="only .xlsx/.xls/.csv supported")

    dest_dir.mkdir(parents=True, exist_ok=True)
    path = dest_dir / f"{stem}{suffix}"
    with path.open("wb") as f:
        shutil.copyfileobj(file.file, f)
    return path


class RulesMeta(BaseModel):
    loaded: bool
    loaded_at_epoch: Optional[float] = None
    rules_file: Optional[str] = None
    count_products: int = 0
    count_rules: int = 0
    count_skipped_rows: int = 0


class JobCreated(BaseModel):
    job_id: str
    status: str
    report: Optional[Dict[str, Any]] = None


_engine: Optional[RebateEngine] = None


@asynccontextmanager
async def _lifespan(_app: FastAPI):
    _ensure_dirs()
    init_logging(_logs_dir(), name="backend")
    global _engine
    _engine = RebateEngine(_cfg())
    yield
    _engine = None


app = FastAPI(title="Rebate Calculator (Deploy Server)", version="0.1.0", lifespan=_lifespan)


def _get_engine() -> RebateEngine:
    if _engine is None:
        raise HTTPException(status_code=503, detail="engine not started")
    return _engine


@app.get("/api/meta", response_model=RulesMeta)
def meta() -> Dict[str, Any]:
    return _get_engine().meta()


@app.post("/api/rules", response_model=RulesMeta)
def upload_rules(file: UploadFile = File(...)) -> Dict[str, Any]:
    """上传挂网底价表（Sheet：返利匹配规则），替换当前规则。"""
    engine = _get_engine()
    path = _save_upload(file, _uploads_dir() / "rules", uuid.uuid4().hex[:16])
    try:
        return engine.load_rules(path, source_name=file.filename)
    except (RuleBookError, ValueError) as e:
        logger.warning("rules upload rejected: %s", e)
        raise HTTPException(status_code=400, detail=str(e))


@app.post("/api/rebate", response_model=JobCreated)
def rebate(file: UploadFile = File(...)) -> Dict[str, Any]:
    """
    上传订单表并计算返利，生成导出 xlsx。
    必须先通过 /api/rules 上传挂网底价表。
    """
    engine = _get_engine()
    if not engine.loaded:
        raise HTTPException(status_code=409, detail="请先上传挂网底价表！")

    job_id = uuid.uuid4().hex[:16]
    up_dir, out_dir = _job_dirs(job_id)
    input_path = _save_upload(file, up_dir, "input")

    state = {
        "job_id": job_id,
        "status": "queued",
        "created_at": _utc_now_iso(),
        "started_at": None,
        "finished_at": None,
        "input_name": file.filename,
        "input_path": str(input_path),
        "rules": engine.meta(),
        "output_files": [],
        "report": None,
        "error": None,
    }
    _write_state(job_id, state)

    try:
        state["status"] = "running"
        state["started_at"] = _utc_now_iso()
        _write_state(job_id, state)

        report = engine.run_batch(input_path=input_path, out_dir=out_dir)

        out_file = out_dir / OUT_RESULT
        if not out_file.exists():
            raise RuntimeError(f"output file missing: {out_file}")

        state["status"] = "done"
        state["finished_at"] = _utc_now_iso()
        state["output_files"] = [str(out_file)]
        state["report"] = report
        _write_state(job_id, state)

        return {"job_id": job_id, "status": "done", "report": report}
    except OrderTableError as e:
        state["status"] = "failed"
        state["finished_at"] = _utc_now_iso()
        state["error"] = str(e)
        _write_state(job_id, state)
        raise HTTPException(status_code=400, detail=state["error"])
    except Exception as e:
        logger.exception("job %s failed", job_id)
        state["status"] = "failed"
        state["finished_at"] = _utc_now_iso()
        state["error"] = f"{type(e).__name__}: {e}"
        _write_state(job_id, state)
        raise HTTPException(status_code=500, detail=state["error"])


@app.get("/api/jobs/{job_id}")
def job_status(job_id: str) -> Dict[str, Any]:
    return _read_state(job_id)


@app.get("/api/jobs/{job_id}/download")
def download(job_id: str) -> FileResponse:
    st = _read_state(job_id)
    if st.get("status") != "done":
        raise HTTPException(status_code=409, detail=f"job not done, status={st.get('status')}")

    out_file = _outputs_dir() / job_id / OUT_RESULT
    if not out_file.exists():
        raise HTTPException(status_code=404, detail="output file not found")

    return FileResponse(
        path=str(out_file),
        filename=OUT_RESULT,
        media_type="application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    )
