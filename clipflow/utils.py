"""Shared utilities used by multiple modules."""

import subprocess
import sys


def subprocess_kwargs() -> dict:
    """Extra kwargs to hide the console window on Windows."""
    kw: dict = {}
    if sys.platform == "win32":
        si = subprocess.STARTUPINFO()
        si.dwFlags |= subprocess.STARTF_USESHOWWINDOW
        kw["startupinfo"] = si
        kw["creationflags"] = subprocess.CREATE_NO_WINDOW
    return kw


def fmt_time(ms: float) -> str:
    """Format milliseconds as m:ss."""
    s = int(ms / 1000)
    m = s // 60
    return f"{m}:{s % 60:02d}"


def fmt_duration(ms: float) -> str:
    """Format milliseconds as mm:ss.t for the recording indicator."""
    ms = max(0, int(ms))
    total_s = ms // 1000
    tenths = (ms % 1000) // 100
    return f"{total_s // 60:02d}:{total_s % 60:02d}.{tenths}"


def extract_filename(path: str) -> str:
    """Last component of a path, accepting either separator."""
    parts = path.replace("\\", "/").split("/")
    return parts[-1] or path


def clamp(value: float, lo: float, hi: float) -> float:
    return max(lo, min(hi, value))
