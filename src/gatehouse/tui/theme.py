"""Gatehouse Dark theme: slate and blue palette for the TUI."""

from __future__ import annotations

from textual.theme import Theme

GATEHOUSE_DARK = Theme(
    name="gatehouse-dark",
    primary="#2563eb",
    secondary="#6366f1",
    accent="#38bdf8",
    warning="#f59e0b",
    error="#dc2626",
    success="#22c55e",
    foreground="#e2e8f0",
    background="#0f172a",
    surface="#1e293b",
    panel="#334155",
    dark=True,
)

# Semantic color constants for Rich markup in widgets.
SUCCESS = "#22c55e"
DEMO_AMBER = "#fbbf24"
DIM = "#94a3b8"
