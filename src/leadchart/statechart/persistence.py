"""持久化模块

提供快照持久化功能：
- 单个快照编解码（version + sha256 checksum + pydantic 校验）
- 多 lead 快照文件：原子写入（temp + rename）
- 损坏文件跳过告警

快照布局: {"active_path": [...], "context": {...}, "history": {...}}
"""

import hashlib
import json
import os
import tempfile
import time
from collections.abc import Mapping
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from ..config import METRICS_ENABLED, PERSIST_FILE, PERSIST_VERSION
from ..telemetry import get_logger, metrics
from .definition import Chart
from .errors import CorruptSnapshot
from .interpreter import Interpreter
from .types import Snapshot

logger = get_logger(__name__)


class SnapshotModel(BaseModel):
    """持久化快照"""

    model_config = ConfigDict(extra="forbid")

    active_path: list[str] = Field(min_length=1)
    context: dict[str, Any] = Field(default_factory=dict)
    history: dict[str, str] = Field(default_factory=dict)


class SnapshotEnvelope(BaseModel):
    """带版本的快照信封"""

    model_config = ConfigDict(extra="forbid")

    version: int
    snapshot: SnapshotModel
    checksum: str = Field(min_length=64, max_length=64)


class LeadsFileModel(BaseModel):
    """多 lead 快照文件（checksum 已剥离）"""

    version: int = 1
    saved_at: float | None = None
    leads: dict[str, dict[str, Any]] = Field(default_factory=dict)


def _count_error(labels: dict[str, str]) -> None:
    if METRICS_ENABLED:
        metrics.inc("persist.error", labels)


def _calculate_checksum(data: Mapping[str, Any]) -> str:
    """计算规范化 JSON 的 SHA256 checksum"""
    canonical = json.dumps(data, ensure_ascii=False, sort_keys=True, separators=(",", ":"))
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def validate_snapshot(data: Any) -> dict[str, Any]:
    """校验快照布局

    Raises:
        CorruptSnapshot: 布局不符
    """
    try:
        return SnapshotModel.model_validate(data).model_dump()
    except ValidationError as e:
        raise CorruptSnapshot(f"invalid snapshot layout ({e.error_count()} errors)") from e


# === 单个快照编解码 ===


def encode_snapshot(snapshot: Snapshot | Mapping[str, Any], version: int = PERSIST_VERSION) -> str:
    """编码快照为 JSON 文本

    Args:
        snapshot: Snapshot 或持久化布局字典
        version: 版本号

    Returns:
        {"version", "snapshot", "checksum"} JSON 文本
    """
    body = snapshot.to_dict() if isinstance(snapshot, Snapshot) else dict(snapshot)
    data: dict[str, Any] = {"version": version, "snapshot": validate_snapshot(body)}
    data["checksum"] = _calculate_checksum(data)
    return json.dumps(data, ensure_ascii=False, sort_keys=True)


def decode_snapshot(text: str | bytes, version: int = PERSIST_VERSION) -> dict[str, Any]:
    """解码快照

    校验 JSON、checksum、version 和布局。

    Returns:
        持久化布局字典

    Raises:
        CorruptSnapshot: 任一校验失败
    """
    try:
        data = json.loads(text)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise CorruptSnapshot(f"invalid JSON: {e}") from e
    if not isinstance(data, dict):
        raise CorruptSnapshot("snapshot envelope must be an object")

    try:
        envelope = SnapshotEnvelope.model_validate(data)
    except ValidationError as e:
        raise CorruptSnapshot(f"invalid snapshot envelope ({e.error_count()} errors)") from e

    body = {key: value for key, value in data.items() if key != "checksum"}
    if _calculate_checksum(body) != envelope.checksum:
        raise CorruptSnapshot("checksum mismatch")

    if envelope.version != version:
        raise CorruptSnapshot(f"version mismatch: got {envelope.version}, expected {version}")
    return envelope.snapshot.model_dump()


def restore_interpreter(
    chart: Chart,
    text: str | bytes,
    *,
    name: str | None = None,
    version: int = PERSIST_VERSION,
) -> Interpreter:
    """从编码文本恢复解释器

    Raises:
        CorruptSnapshot: 文本损坏或与 chart 不符
    """
    return Interpreter.restore(chart, decode_snapshot(text, version), name=name)


# === 多 lead 快照文件 ===


def _ensure_dir(path: Path) -> None:
    path.mkdir(parents=True, exist_ok=True)


def save_all(
    snapshots: Mapping[str, Mapping[str, Any]],
    path: Path | None = None,
    version: int = PERSIST_VERSION,
) -> bool:
    """保存所有 lead 快照

    使用 temp + rename 原子写入，包含 checksum 校验。

    Args:
        snapshots: {lead_id: 持久化布局}
        path: 保存路径，默认使用配置
        version: 版本号

    Returns:
        是否成功
    """
    path = path or PERSIST_FILE

    try:
        data: dict[str, Any] = {
            "version": version,
            "saved_at": time.time(),
            "leads": {lead_id: dict(s) for lead_id, s in snapshots.items()},
        }
        data["checksum"] = _calculate_checksum(data)
        json_bytes = json.dumps(data, ensure_ascii=False, indent=2).encode("utf-8")

        _ensure_dir(path.parent)

        fd, temp_path = tempfile.mkstemp(prefix="leadchart_", suffix=".tmp", dir=path.parent)
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(json_bytes)
            os.replace(temp_path, path)
        except Exception:
            if os.path.exists(temp_path):
                os.unlink(temp_path)
            raise

        logger.info(f"[Persist] Saved {len(snapshots)} leads")
        return True

    except Exception as e:
        logger.error(f"[Persist] Save failed: {e}")
        _count_error({"op": "save"})
        return False


def load_all(
    path: Path | None = None,
    version: int = PERSIST_VERSION,
) -> dict[str, dict] | None:
    """加载快照文件

    只校验文件级 version/checksum/结构；单个 lead 的快照由调用者校验。

    Returns:
        {lead_id: 原始快照字典}，失败返回 None
    """
    path = path or PERSIST_FILE

    if not path.exists():
        logger.debug(f"[Persist] File not found: {path}")
        return None

    try:
        with open(path, "rb") as f:
            data = json.loads(f.read().decode("utf-8"))

        if not isinstance(data, dict):
            logger.warning("[Persist] Snapshot file is not an object")
            _count_error({"op": "load", "reason": "schema"})
            return None

        file_version = data.get("version", 1)
        if file_version != version:
            logger.warning(f"[Persist] Version mismatch: file={file_version}, expected={version}")
            _count_error({"op": "load", "reason": "version"})
            return None

        stored_checksum = data.pop("checksum", None)
        if stored_checksum and _calculate_checksum(data) != stored_checksum:
            logger.warning("[Persist] Checksum mismatch")
            _count_error({"op": "load", "reason": "checksum"})
            return None

        try:
            leads = LeadsFileModel.model_validate(data).leads
        except ValidationError as e:
            logger.warning(f"[Persist] Invalid snapshot file ({e.error_count()} errors)")
            _count_error({"op": "load", "reason": "schema"})
            return None

        logger.info(f"[Persist] Loaded {len(leads)} leads")
        return leads

    except json.JSONDecodeError as e:
        logger.warning(f"[Persist] Invalid JSON: {e}")
        _count_error({"op": "load", "reason": "json"})
        return None

    except Exception as e:
        logger.error(f"[Persist] Load failed: {e}")
        _count_error({"op": "load", "reason": "unknown"})
        return None


def delete(path: Path | None = None) -> bool:
    """删除快照文件"""
    path = path or PERSIST_FILE

    try:
        if path.exists():
            os.unlink(path)
            logger.info(f"[Persist] Deleted: {path}")
        return True
    except Exception as e:
        logger.error(f"[Persist] Delete failed: {e}")
        return False
