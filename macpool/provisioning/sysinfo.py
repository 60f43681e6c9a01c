from __future__ import annotations
from typing import Dict
import platform, socket

from macpool.logger import get_logger
from macpool.provisioning.ports import CommandRunner, SystemInfo, SystemInfoProvider

log = get_logger("MacPool.SystemInfo")

UNKNOWN = "Unknown"


def parse_dmidecode(output: str) -> SystemInfo:
    """
    Group ``dmidecode`` output by handle.

    Each "Handle ..." line opens a section; "Key: Value" lines below it
    become that section's entries. Sections with no entries are dropped.
    """
    info: SystemInfo = {}
    section = ""
    data: Dict[str, str] = {}
    for line in output.splitlines():
        line = line.strip()
        if not line:
            continue
        if line.startswith("Handle"):
            if section and data:
                info[section] = data
            section, data = line, {}
            continue
        key, sep, value = line.partition(":")
        if sep and section:
            data[key.strip()] = value.strip()
    if section and data:
        info[section] = data
    return info


class DmidecodeSystemInfo(SystemInfoProvider):
    def __init__(self, runner: CommandRunner):
        self.runner = runner

    def product_name(self) -> str:
        result = self.runner.run(["dmidecode", "-t", "system"])
        if result.ok:
            for line in result.stdout.splitlines():
                key, sep, value = line.partition(":")
                if sep and key.strip() == "Product Name" and value.strip():
                    return value.strip()
        log.warning(f"Could not determine product name: {result.output or 'no Product Name field'}")
        return UNKNOWN

    def system_info(self) -> SystemInfo:
        result = self.runner.run(["dmidecode"])
        if not result.ok:
            log.warning(f"Could not get dmidecode output for log: {result.output}")
            return {"error": "Error getting dmidecode output"}
        return parse_dmidecode(result.stdout)

    def host_info(self) -> Dict[str, str]:
        info = {
            "hostname": socket.gethostname() or "unknown",
            "kernel": platform.release() or "unknown",
            "arch": platform.machine() or "unknown",
            "uptime": "unknown",
        }
        result = self.runner.run(["uptime"])
        if result.ok:
            info["uptime"] = result.stdout.strip()
        return info
