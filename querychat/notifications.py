"""Status notifications emitted while a turn runs."""

from dataclasses import dataclass
from enum import Enum
from typing import List, Optional

from rich.console import Console

from .logger import get_logger
from .rendering import get_icon
from .theme import ACCENT, DIM, ERROR, MUTED, SUCCESS

_log = get_logger(__name__)


class Severity(str, Enum):
    ANIMATED = "animated"
    SUCCESS = "success"
    FAILURE = "failure"


@dataclass(frozen=True)
class NotificationAction:
    title: str
    hint: str = ""


@dataclass(frozen=True)
class Notification:
    severity: Severity
    title: str
    message: str = ""
    action: Optional[NotificationAction] = None


class Notifier:
    def notify(self, note: Notification) -> None:
        raise NotImplementedError


class RecordingNotifier(Notifier):
    """Keeps every notification in order."""

    def __init__(self):
        self.notifications: List[Notification] = []

    def notify(self, note: Notification) -> None:
        self.notifications.append(note)

    @property
    def last(self) -> Optional[Notification]:
        return self.notifications[-1] if self.notifications else None

    def severities(self) -> List[Severity]:
        return [n.severity for n in self.notifications]


_STYLES = {
    Severity.ANIMATED: (ACCENT, "◎"),
    Severity.SUCCESS: (SUCCESS, "✓"),
    Severity.FAILURE: (ERROR, "✗"),
}


class ConsoleNotifier(Notifier):
    """Prints one status line per notification to a rich console."""

    def __init__(self, console: Console, *, quiet_success: bool = False):
        self.console = console
        self.quiet_success = quiet_success
        self.history = RecordingNotifier()

    def notify(self, note: Notification) -> None:
        self.history.notify(note)
        _log.info("%s: %s %s", note.severity.value, note.title, note.message)
        if note.severity == Severity.SUCCESS and self.quiet_success:
            return

        color, icon = _STYLES[note.severity]
        line = f"  [{color}]{get_icon(icon)} {note.title}[/{color}]"
        if note.message:
            line += f" [{MUTED}]{note.message}[/{MUTED}]"
        self.console.print(line, highlight=False)
        if note.action:
            hint = f" ({note.action.hint})" if note.action.hint else ""
            self.console.print(f"    [{DIM}]{get_icon('›')} {note.action.title}{hint}[/{DIM}]")
