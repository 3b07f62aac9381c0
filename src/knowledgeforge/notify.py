"""Badge labels and desktop notifications for unlocked badges, best-effort."""

from __future__ import annotations

import re
import subprocess
import sys

from knowledgeforge.roadmap.progress import ROADMAP_COMPLETE_BADGE

_PHASE_BADGE = re.compile(r"^phase_(\d+)_complete$")


def badge_label(badge_key: str) -> str:
    """Human-readable name for a badge key."""
    if badge_key == ROADMAP_COMPLETE_BADGE:
        return "Roadmap complete"
    match = _PHASE_BADGE.match(badge_key)
    if match:
        return f"Phase {match.group(1)} complete"
    return badge_key.replace("_", " ").capitalize()


def _run_quiet(*cmd: str) -> None:
    """Fire-and-forget subprocess, ignore failures."""
    try:
        subprocess.Popen(
            cmd,
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
        )
    except (FileNotFoundError, OSError):
        pass


def notify_badge(badge_key: str) -> None:
    """Show a toast (and a sound for roadmap completion) for *badge_key*."""
    message = f"Badge unlocked: {badge_label(badge_key)}"
    finished = badge_key == ROADMAP_COMPLETE_BADGE
    if sys.platform == "darwin":
        if finished:
            _run_quiet("afplay", "/System/Library/Sounds/Glass.aiff")
        _run_quiet(
            "osascript", "-e",
            f'display notification "{message}" with title "KnowledgeForge"',
        )
    elif sys.platform.startswith("linux"):
        _run_quiet("notify-send", "KnowledgeForge", message)
        if finished:
            _run_quiet("paplay", "/usr/share/sounds/freedesktop/stereo/complete.oga")
    elif sys.platform == "win32":
        _run_quiet(
            "powershell.exe", "-Command",
            "[System.Media.SystemSounds]::Asterisk.Play()",
        )
