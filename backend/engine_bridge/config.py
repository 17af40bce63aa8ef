"""Bridge configuration via environment variables."""

import os
import shutil
import sys
from pathlib import Path

from pydantic_settings import BaseSettings

BASE_DIR = Path(__file__).resolve().parents[1]

_SYSTEM_CANDIDATES = {
    "darwin": ["/opt/homebrew/bin/stockfish", "/usr/local/bin/stockfish", "/usr/bin/stockfish"],
    "linux": ["/usr/games/stockfish", "/usr/local/bin/stockfish", "/usr/bin/stockfish"],
}


def _normalize_windows_path(path_str: str) -> str:
    normalized = path_str.replace("\\", "/")
    if normalized.startswith("/mnt/"):
        _, _, drive, *rest = normalized.split("/")
        remainder = "/".join(rest)
        return f"{drive.upper()}:\\" + remainder.replace("/", "\\")
    return path_str


def _platform_key() -> str:
    if sys.platform.startswith("linux"):
        return "linux"
    return sys.platform


def _bundled_candidates() -> list[Path]:
    names = ["stockfish.exe"] if os.name == "nt" else ["stockfish", "stockfish-avx2"]
    bin_dir = BASE_DIR / "bin"
    subdirs = ["", _platform_key()]
    return [bin_dir / sub / name if sub else bin_dir / name for sub in subdirs for name in names]


def _default_stockfish_path() -> str:
    for candidate in _bundled_candidates():
        if candidate.exists():
            resolved = str(candidate.resolve())
            if os.name == "nt" or "PROGRAMFILES" in os.environ:
                resolved = _normalize_windows_path(resolved)
            return resolved
    for candidate in _SYSTEM_CANDIDATES.get(_platform_key(), []):
        if Path(candidate).exists():
            return candidate
    return shutil.which("stockfish") or "stockfish"


def _default_book_paths() -> list[str]:
    data_dir = BASE_DIR / "data"
    return [str(data_dir / "opening-book.json"), str(data_dir / "eco.json")]


class Settings(BaseSettings):
    api_prefix: str = "/api/v1"
    project_name: str = "Engine Bridge API"
    allow_origins: list[str] = ["http://localhost:5173", "http://127.0.0.1:5173"]

    stockfish_path: str = _default_stockfish_path()
    engine_threads: int = 2
    engine_max_threads: int = 4
    engine_hash_mb: int = 128
    engine_min_hash_mb: int = 64
    engine_max_hash_mb: int = 256
    engine_idle_ms: int = 90_000

    handshake_timeout_ms: int = 10_000
    resync_timeout_ms: int = 10_000
    quit_timeout_ms: int = 3_000

    rating_min: int = 400
    rating_max: int = 2500
    default_rating: int = 2000

    min_movetime_ms: int = 80
    max_multipv: int = 8
    guard_grace_ms: int = 2_000
    search_wait_margin_ms: int = 4_000
    search_wait_floor_ms: int = 6_000
    info_compact_window_ms: int = 80

    depth_floor: int = 20
    depth_floor_max_ply: int = 24
    depth_floor_stop_ms: int = 6_000
    depth_floor_wait_margin_ms: int = 7_000
    depth_floor_wait_floor_ms: int = 25_000

    book_paths: list[str] = _default_book_paths()
    book_max_ply: int = 24


settings = Settings()
