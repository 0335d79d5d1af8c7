from dataclasses import dataclass, field
from pathlib import Path


@dataclass(frozen=True)
class GhostPaths:
    """Centralizes filesystem locations used by ghostcmd."""

    home: Path = field(default_factory=Path.home)

    @property
    def state_dir(self) -> Path:
        return self.home / ".ghostcmd"

    @property
    def logs_dir(self) -> Path:
        return self.state_dir / "logs"

    @property
    def default_log_file(self) -> Path:
        return self.logs_dir / "ghostcmd.log"

    @property
    def history_file(self) -> Path:
        return self.state_dir / "history"
