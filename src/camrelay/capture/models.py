"""Capture data models — kinds and the fixed argument sets per kind."""

from __future__ import annotations

import enum
from dataclasses import dataclass


class CaptureKind(enum.Enum):
    """Which capture program a process runs."""

    CONTINUOUS = "continuous"
    SNAPSHOT = "snapshot"


@dataclass(frozen=True)
class CaptureProfile:
    """Fixed invocation of a capture program.

    ``capture_ms`` maps to ``-t``: zero means unlimited for the video
    program, and the delay before the shot for the still program.
    """

    kind: CaptureKind
    executable: str
    media_type: str
    width: int = 1280
    height: int = 720
    rotation: int = 0
    capture_ms: int = 0
    framerate: int | None = None
    bitrate: int | None = None
    inline_headers: bool = False
    extra_args: tuple[str, ...] = ()

    def argv(self) -> list[str]:
        """Render the full command line, writing the capture to stdout."""
        args = [self.executable, "-n"]  # no preview window
        if self.inline_headers:
            args.append("-ih")
        args += ["-w", str(self.width), "-h", str(self.height)]
        args += ["-t", str(self.capture_ms), "-rot", str(self.rotation)]
        if self.framerate is not None:
            args += ["-fps", str(self.framerate)]
        if self.bitrate is not None:
            args += ["-b", str(self.bitrate)]
        args += list(self.extra_args)
        args += ["-o", "-"]
        return args


CONTINUOUS_DEFAULT = CaptureProfile(
    kind=CaptureKind.CONTINUOUS,
    executable="raspivid",
    media_type="video/h264",
    capture_ms=0,
    framerate=15,
    bitrate=1_000_000,
    inline_headers=True,
)

SNAPSHOT_DEFAULT = CaptureProfile(
    kind=CaptureKind.SNAPSHOT,
    executable="raspistill",
    media_type="image/jpeg",
    capture_ms=1,
)

DEFAULT_PROFILES: dict[CaptureKind, CaptureProfile] = {
    CaptureKind.CONTINUOUS: CONTINUOUS_DEFAULT,
    CaptureKind.SNAPSHOT: SNAPSHOT_DEFAULT,
}
