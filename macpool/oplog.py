"""
macpool.oplog
-------------
Completed-operation records: which address was used, on which product,
whether it worked. Records are written as JSON files next to the tool and
can be POSTed to a collector. Both sinks are best effort; a lost log never
fails a provisioning run.
"""

from __future__ import annotations
from dataclasses import dataclass, asdict, field
from typing import Any, Dict, List, Optional
import json, os, re, time

import requests

from .logger import get_logger
from .models import SystemInfo
from .utils import now_ts, strip_separators

log = get_logger("MacPool.OpLog")

_UNSAFE = re.compile(r"[^A-Za-z0-9._-]+")


@dataclass
class OperationRecord:
    product_name: str
    mac_address: str
    action_performed: str
    success: bool
    timestamp: str = field(default_factory=now_ts)
    system_info: SystemInfo = field(default_factory=dict)
    host_info: Dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), indent=2, sort_keys=True)

    def filename(self, when: Optional[float] = None) -> str:
        stamp = time.strftime("%y%m%d_%H%M%S", time.localtime(when))
        product = _UNSAFE.sub("_", self.product_name).strip("_") or "Unknown"
        return f"{product}_MAC-{strip_separators(self.mac_address)}_{stamp}.json"


def write_record(record: OperationRecord, log_dir: str) -> Optional[str]:
    """Write ``record`` under ``log_dir``; falls back to its parent directory."""
    directory = log_dir
    try:
        os.makedirs(directory, exist_ok=True)
    except OSError as exc:
        directory = os.path.dirname(os.path.abspath(log_dir))
        log.warning(f"Could not create log directory {log_dir}: {exc}. Using {directory}")

    path = os.path.join(directory, record.filename())
    try:
        with open(path, "w", encoding="utf-8") as f:
            f.write(record.to_json())
    except OSError as exc:
        log.warning(f"Could not write log file {path}: {exc}")
        return None
    log.info(f"Log saved to: {path}")
    return path


def ship_record(record: OperationRecord, url: str, timeout: float = 5) -> bool:
    """POST the record as JSON to a collector endpoint."""
    headers = {"Content-Type": "application/json", "X-Log-Filename": record.filename()}
    try:
        res = requests.post(url, json=record.to_dict(), headers=headers, timeout=timeout)
    except requests.RequestException as exc:
        log.warning(f"Could not send log to server {url}: {exc}")
        return False
    if not res.ok:
        log.warning(f"Could not send log to server {url}: {res.status_code} {res.reason}")
        return False
    log.info(f"Log sent to server: {url}")
    return True


class OperationLog:
    def __init__(self, log_dir: Optional[str] = None, url: Optional[str] = None):
        self.log_dir = log_dir
        self.url = url
        self.records: List[OperationRecord] = []

    def emit(self, record: OperationRecord) -> OperationRecord:
        self.records.append(record)
        if self.log_dir:
            write_record(record, self.log_dir)
        if self.url:
            ship_record(record, self.url)
        return record
