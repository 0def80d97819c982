"""Runtime support helpers."""

from .diagnostics import DiagnosticCheck, DiagnosticsReport, run_diagnostics

__all__ = ["DiagnosticCheck", "DiagnosticsReport", "run_diagnostics"]
