"""Conversation export to Markdown files."""

from datetime import datetime
from pathlib import Path
from typing import Optional

from .config import CONFIG_DIR
from .logger import get_logger

EXPORTS_DIR = CONFIG_DIR / "exports"

_log = get_logger(__name__)


def _ensure_exports_dir(exports_dir: Path):
    """Ensure exports directory exists."""
    exports_dir.mkdir(parents=True, exist_ok=True)


def export_conversation_markdown(
    transcript: str,
    model_name: str,
    token_tally: int = 0,
    output_path: Optional[str] = None,
    exports_dir: Optional[Path] = None,
) -> Optional[str]:
    """Write a rendered transcript to disk.

    Args:
        transcript: Markdown produced by ``render_conversation``
        model_name: Active model shown in the header
        token_tally: Conversation token tally at export time
        output_path: Optional output path (default: exports/conversation-<timestamp>.md)
        exports_dir: Override for the default exports directory

    Returns:
        Output filepath if successful, None otherwise
    """
    if not output_path:
        target_dir = exports_dir or EXPORTS_DIR
        _ensure_exports_dir(target_dir)
        timestamp = datetime.now().strftime("%Y%m%d-%H%M%S")
        output_path = str(target_dir / f"conversation-{timestamp}.md")
    else:
        output_path = str(Path(output_path).expanduser())

    lines = [
        f"# Conversation with {model_name}",
        "",
        f"- **Exported**: {datetime.now().isoformat(timespec='seconds')}",
        f"- **Token Tally**: {token_tally}",
        "",
        "---",
        "",
        transcript,
        "",
    ]

    try:
        Path(output_path).parent.mkdir(parents=True, exist_ok=True)
        with open(output_path, "w", encoding="utf-8") as f:
            f.write("\n".join(lines))
        return output_path
    except OSError as e:
        _log.warning("Export to %s failed: %s", output_path, e)
        return None
