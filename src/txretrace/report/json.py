"""
JSON report generator for txretrace.

Generates structured JSON output for programmatic consumption.

Design Principles:
    - Complete data: Include everything needed to reproduce the trace
    - Consistent schema: Same structure for every report
    - Binary fields (cells, hashes) are hex strings, nanoton amounts are
      integers
"""

import json
from datetime import UTC, datetime
from typing import Any

from txretrace import __version__
from txretrace.errors import TxRetraceError
from txretrace.schema import ComputePhaseSummary, TraceReport


def generate_json_report(report: TraceReport, indent: int = 2) -> str:
    """
    Generate a JSON document for a TraceReport.

    Args:
        report: Report to serialize
        indent: JSON indentation level (default: 2)

    Returns:
        JSON string
    """
    return json.dumps(build_report_dict(report), indent=indent, default=_json_serializer)


def build_report_dict(report: TraceReport) -> dict[str, Any]:
    """Build a JSON-ready dictionary for a TraceReport."""
    emulated = report.emulated_tx
    compute = emulated.compute_info

    return {
        "report_version": "1.0",
        "generated_at": datetime.now(UTC).isoformat(),
        "generator": f"txretrace {__version__}",
        "state_update_hash_ok": report.state_update_hash_ok,
        "code_cell": _hex(report.code_cell),
        "original_code_cell": _hex(report.original_code_cell),
        "in_msg": {
            "sender": report.in_msg.sender,
            "contract": report.in_msg.contract,
            "amount": report.in_msg.amount,
            "opcode": f"0x{report.in_msg.opcode:08x}" if report.in_msg.opcode is not None else None,
        },
        "money": report.money.model_dump(),
        "emulated_tx": {
            "raw": emulated.raw,
            "utime": emulated.utime,
            "lt": emulated.lt,
            "compute_info": compute.model_dump() if isinstance(compute, ComputePhaseSummary) else compute,
            "executor_logs": emulated.executor_logs,
            "actions": [action.model_dump() for action in emulated.actions],
            "c5": _hex(emulated.c5),
            "vm_logs": emulated.vm_logs,
        },
        "emulator_version": report.emulator_version.model_dump(),
        "library_hashes": report.library_hashes,
        "retries": report.retries,
    }


def build_error_dict(error: TxRetraceError) -> dict[str, Any]:
    """Build a JSON-ready dictionary for a fatal error."""
    return {
        "report_version": "1.0",
        "generated_at": datetime.now(UTC).isoformat(),
        "error": error.to_dict(),
    }


def _hex(value: bytes | None) -> str | None:
    return value.hex() if value is not None else None


def _json_serializer(obj: Any) -> Any:
    """Custom JSON serializer for non-standard types."""
    if isinstance(obj, bytes):
        return obj.hex()
    if isinstance(obj, datetime):
        return obj.isoformat()
    if hasattr(obj, "model_dump"):
        return obj.model_dump()
    raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")
