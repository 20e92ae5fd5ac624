# reporter.py
# Formats the scan header and the final summary as text or JSON

from __future__ import annotations
import json
from datetime import datetime, timezone
from typing import List

from config import TOOL_NAME, VERSION, ScanConfig, ScanRange
from scanner import ScanReport

RULE = "-" * 26


def format_header(target: str, scan_range: ScanRange, config: ScanConfig) -> str:
    lines: List[str] = []
    lines.append("--- Starting Port Scan ---")
    lines.append(
        f"Target: {target} ({scan_range.address}) | Range: {scan_range.start_port} to {scan_range.end_port} | "
        f"Timeout: {config.timeout_seconds} sec | Threads: {config.worker_count}"
    )
    lines.append("Press 'q' or ESC to stop scanning.")
    lines.append(RULE)
    return "\n".join(lines)


class Reporter:
    def __init__(self, report: ScanReport):
        self.report = report
        self.generated_at = datetime.now(timezone.utc)

    def to_text(self) -> str:
        r = self.report
        lines: List[str] = []
        lines.append(RULE)
        lines.append("Summary of Open Ports:")
        if r.open_ports:
            lines.append(" ".join(map(str, r.open_ports)))
        else:
            lines.append("No open ports found.")
        lines.append(RULE)
        if r.aborted:
            lines.append("--- Scan Aborted by User ---")
        else:
            lines.append("--- Scan Complete ---")
        lines.append(f"{r.probed} ports probed on {r.address} in {r.elapsed:.2f}s")
        return "\n".join(lines)

    def to_json(self) -> str:
        r = self.report
        doc = {
            "meta": {
                "generated_utc": self.generated_at.isoformat(),
                "tool": f"{TOOL_NAME} {VERSION}",
            },
            "target": {"host": r.target, "address": r.address},
            "range": {"start": r.start_port, "end": r.end_port},
            "status": r.status,
            "open_ports": r.open_ports,
            "probed": r.probed,
            "elapsed_seconds": round(r.elapsed, 3),
        }
        return json.dumps(doc, indent=2)
