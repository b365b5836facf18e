"""
Reporting module for txretrace.

This module turns emulation results into TraceReports and renders them.

Components:
    - TraceAssembler: Decodes money flow, compute phase and actions
    - Console: Rich terminal output with the verification verdict first
    - JSON: Structured output with hex-encoded binary fields

Example:
    from txretrace.report import generate_console_report, generate_json_report

    generate_console_report(report)
    print(generate_json_report(report))
"""

from txretrace.report.assembler import AssembledTrace, TraceAssembler, calculate_sent_total
from txretrace.report.console import generate_console_report
from txretrace.report.json import build_error_dict, build_report_dict, generate_json_report

__all__ = [
    "AssembledTrace",
    "TraceAssembler",
    "build_error_dict",
    "build_report_dict",
    "calculate_sent_total",
    "generate_console_report",
    "generate_json_report",
]
