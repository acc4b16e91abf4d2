"""
ledger_config.py — Runtime Configuration for the Shielded Ledger

Tunable, non-cryptographic parameters only. Field prime, curve constants,
generators and Poseidon2 parameters live as module constants.
"""

import json
import logging
from dataclasses import dataclass, field, asdict
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)

VIEW_STRING = 0x76696577696e675f6b6579   # b"viewing_key"


@dataclass
class LogParams:
    """Logging configuration."""
    level: str = "INFO"
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    file: Optional[str] = None
    max_size_mb: int = 10
    backup_count: int = 3


@dataclass
class LedgerParams:
    """Parameters shared by the tree, the transitions and nonce discovery."""
    max_tree_depth: int = 32          # 2^32 leaves
    nonce_scan_limit: int = 100       # nonces probed by discover_nonce
    view_string: int = VIEW_STRING    # domain tag for the view key
    log: LogParams = field(default_factory=LogParams)

    def __post_init__(self):
        if not 1 <= self.max_tree_depth <= 32:
            raise ValueError(f"max_tree_depth must be in [1, 32], got {self.max_tree_depth}")
        if self.nonce_scan_limit < 1:
            raise ValueError("nonce_scan_limit must be positive")

    def to_dict(self) -> dict:
        data = asdict(self)
        data["view_string"] = hex(self.view_string)
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "LedgerParams":
        data = dict(data)
        log = LogParams(**data.pop("log", {}))
        if isinstance(data.get("view_string"), str):
            data["view_string"] = int(data["view_string"], 0)
        return cls(log=log, **data)

    @classmethod
    def load(cls, path: str) -> "LedgerParams":
        p = Path(path)
        if not p.exists():
            logger.info(f"No config at {path}, using defaults")
            return cls()
        with open(p, "r") as f:
            return cls.from_dict(json.load(f))

    def save(self, path: str) -> None:
        p = Path(path)
        p.parent.mkdir(parents=True, exist_ok=True)
        with open(p, "w") as f:
            json.dump(self.to_dict(), f, indent=2)
        logger.info(f"Config saved to {path}")


DEFAULT_PARAMS = LedgerParams()


def setup_logging(params: LogParams) -> None:
    """Configure root logging from LogParams."""
    level = getattr(logging, params.level.upper(), logging.INFO)

    handlers = [logging.StreamHandler()]

    if params.file:
        from logging.handlers import RotatingFileHandler
        handlers.append(RotatingFileHandler(
            params.file,
            maxBytes=params.max_size_mb * 1024 * 1024,
            backupCount=params.backup_count,
        ))

    logging.basicConfig(level=level, format=params.format, handlers=handlers)
