import os
import csv
import time
import datetime
from typing import Any, Dict, List, Optional, Tuple

# -------------------------------
# Small utils
# -------------------------------

def _ensure_dir(path: str):
    d = os.path.dirname(path)
    os.makedirs(d if d else ".", exist_ok=True)

def _timestamp_utc() -> str:
    return datetime.datetime.now(datetime.timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")

def _now_ms() -> int:
    return int(time.time() * 1000)

def _split_base_ext(path: str) -> Tuple[str, str]:
    base, ext = os.path.splitext(path)
    if not ext:
        ext = ".csv"
    return base, ext

_BASE_HEADER = ["ts_utc", "ts_ms", "kind"]

# -------------------------------
# CSV telemetry logger
# -------------------------------

class TelemetryCsvLogger:
    """
    Per-tick telemetry rows (target, per-axis PID terms, command, send result).

    The header grows when a row brings new columns: the file is rewritten with
    the wider header and old rows padded. With max_bytes > 0 the file is
    rotated to <base>_<utc stamp><ext> once it reaches that size.
    """

    def __init__(self, path: str, *, enabled: bool = True, max_bytes: int = 10 * 1024 * 1024,
                 every_n: int = 1):
        self.path = path
        self.enabled = bool(enabled)
        self.max_bytes = max(0, int(max_bytes))
        self.every_n = max(1, int(every_n))

        self._base = ""
        self._ext = ""
        self._f = None
        self._writer = None
        self._header: List[str] = []
        self._bytes = 0
        self._count = 0

        if self.enabled:
            _ensure_dir(self.path)
            self._base, self._ext = _split_base_ext(self.path)
            self._open()

    def log(self, kind: str, payload: Dict[str, Any]):
        if not self.enabled or self._f is None:
            return
        self._count += 1
        if (self._count - 1) % self.every_n:
            return
        if not isinstance(payload, dict):
            payload = {"value": payload}
        row: Dict[str, Any] = {"ts_utc": _timestamp_utc(), "ts_ms": _now_ms(), "kind": kind}
        for k, v in payload.items():
            row[k] = v
        self._maybe_expand_header(row)
        self._writer.writerow([row.get(col, "") for col in self._header])
        self._f.flush()
        self._bytes += sum(len(str(x)) for x in row.values()) + len(self._header)
        if self.max_bytes > 0 and self._bytes >= self.max_bytes:
            self._rotate()

    # internals
    def _open(self):
        exists = os.path.exists(self.path) and os.path.getsize(self.path) > 0
        self._f = open(self.path, "a", newline="", encoding="utf-8")
        self._writer = csv.writer(self._f)
        if not exists:
            self._header = list(_BASE_HEADER)
            self._writer.writerow(self._header)
            self._f.flush()
            self._bytes = 0
        else:
            with open(self.path, "r", encoding="utf-8", newline="") as r:
                first = next(csv.reader(r), [])
            self._header = [h.strip() for h in first] if first else list(_BASE_HEADER)
            self._bytes = os.path.getsize(self.path)

    def _maybe_expand_header(self, row: Dict[str, Any]):
        new_cols = [k for k in row.keys() if k not in self._header]
        if not new_cols:
            return
        self._header.extend(sorted(new_cols))
        self._f.close()
        with open(self.path, "r", encoding="utf-8", newline="") as rf:
            rows = list(csv.reader(rf))
        self._f = open(self.path, "w", newline="", encoding="utf-8")
        self._writer = csv.writer(self._f)
        self._writer.writerow(self._header)
        if rows:
            old_header = rows[0]
            for cells in rows[1:]:
                row_map = {old_header[i]: (cells[i] if i < len(cells) else "") for i in range(len(old_header))}
                self._writer.writerow([row_map.get(col, "") for col in self._header])
        self._f.flush()

    def _rotate(self):
        ts = datetime.datetime.now(datetime.timezone.utc).strftime("%Y%m%d_%H%M%SZ")
        rotated = f"{self._base}_{ts}{self._ext}"
        try:
            self._f.close()
            os.replace(self.path, rotated)
        finally:
            self._open()
            self._bytes = 0

    def close(self):
        if not self.enabled or self._f is None:
            return
        try:
            self._f.close()
        finally:
            self._f = None


def open_telemetry(cfg: Optional[Dict[str, Any]]) -> Optional[TelemetryCsvLogger]:
    cfg = cfg or {}
    if not bool(cfg.get("enabled", False)):
        return None
    return TelemetryCsvLogger(
        str(cfg.get("path", "logs/servo_telemetry.csv")),
        max_bytes=int(cfg.get("max_bytes", 10 * 1024 * 1024)),
        every_n=int(cfg.get("every_n", 1)),
    )
