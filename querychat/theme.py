"""Color constants shared by the console output and the prompt (GitHub dark palette)."""

ACCENT = "#7FA6D9"
BORDER = "#30363D"
DIM = "#6E7681"
MUTED = "#8B949E"

SUCCESS = "#57DB9C"
WARN = "#E3B341"
ERROR = "#F85149"

PROMPT = "#B7C6D8"

__all__ = ["ACCENT", "BORDER", "DIM", "MUTED", "SUCCESS", "WARN", "ERROR", "PROMPT"]
