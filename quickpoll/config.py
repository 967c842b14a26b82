from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path

CONFIG_PATH = Path(__file__).resolve().parent.parent / "config.json"

DEFAULTS = {
    "db_path": "quickpoll.db",
    "stack_files": [],
    "recent_days": 7,
    "require_used_question_id": False,
    "default_question_type": "single",
}


@dataclass
class Settings:
    db_path: str = DEFAULTS["db_path"]
    stack_files: list[str] = field(default_factory=lambda: list(DEFAULTS["stack_files"]))
    recent_days: int = DEFAULTS["recent_days"]
    require_used_question_id: bool = DEFAULTS["require_used_question_id"]
    default_question_type: str = DEFAULTS["default_question_type"]

    @property
    def project_root(self) -> Path:
        return Path(__file__).resolve().parent.parent

    @property
    def data_dir(self) -> Path:
        return self.project_root / "data"

    @property
    def db_full_path(self) -> Path:
        return self.project_root / self.db_path

    def resolved_stack_files(self) -> list[Path]:
        if self.stack_files:
            root = self.project_root
            return [root / f for f in self.stack_files]
        return sorted(self.data_dir.glob("*.json"))

    def to_dict(self) -> dict:
        return {
            "db_path": self.db_path,
            "stack_files": self.stack_files,
            "recent_days": self.recent_days,
            "require_used_question_id": self.require_used_question_id,
            "default_question_type": self.default_question_type,
        }


def load_settings() -> Settings:
    if CONFIG_PATH.exists():
        raw = json.loads(CONFIG_PATH.read_text())
        known = {f.name for f in Settings.__dataclass_fields__.values()}
        filtered = {k: v for k, v in raw.items() if k in known}
        return Settings(**filtered)
    return Settings()


def save_settings(settings: Settings) -> None:
    CONFIG_PATH.write_text(json.dumps(settings.to_dict(), indent=4) + "\n")
