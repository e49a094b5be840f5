"""Core data models for ClipFlow.

Defines the dataclasses and enums shared by the session controller:
the recording session, timeline clips and transitions, project
summaries, pipeline runs, annotations and subtitles.  Models that
cross the service boundary support JSON-compatible serialization via
``to_dict()`` / ``from_dict()`` using the service's snake_case keys.
"""

import math
from dataclasses import dataclass, replace
from enum import Enum
from typing import List, Optional, Tuple


class Lifecycle(Enum):
    """Recording lifecycle.  ``COUNTDOWN_PENDING`` only exists locally."""
    IDLE = "idle"
    COUNTDOWN_PENDING = "countdown"
    RECORDING = "recording"
    PAUSED = "paused"

    @property
    def is_active(self) -> bool:
        """True while the service holds an in-progress recording."""
        return self in (Lifecycle.RECORDING, Lifecycle.PAUSED)

    @staticmethod
    def from_wire(value: str) -> "Lifecycle":
        """Parse the service's ``idle`` / ``recording`` / ``paused`` tag."""
        try:
            state = Lifecycle(str(value).lower())
        except ValueError:
            raise ValueError(f"Unknown recording state: {value!r}") from None
        if state is Lifecycle.COUNTDOWN_PENDING:
            raise ValueError("The service never reports a countdown state")
        return state


class TransitionType(Enum):
    FADE = "fade"
    FADE_BLACK = "fadeblack"
    FADE_WHITE = "fadewhite"
    DISSOLVE = "dissolve"
    ZOOM = "zoom"
    SLIDE = "slide"
    SLIDE_RIGHT = "slideright"
    SLIDE_UP = "slideup"
    SLIDE_DOWN = "slidedown"
    WIPE_LEFT = "wipeleft"
    WIPE_RIGHT = "wiperight"
    WIPE_UP = "wipeup"
    WIPE_DOWN = "wipedown"
    PIXELIZE = "pixelize"
    CIRCLE_OPEN = "circleopen"
    CIRCLE_CLOSE = "circleclose"
    RADIAL = "radial"
    SMOOTH_LEFT = "smoothleft"
    SMOOTH_RIGHT = "smoothright"
    CUT = "cut"


class ExportFormat(Enum):
    MP4 = "mp4"
    GIF = "gif"


class ExportQuality(Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class AudioSource(Enum):
    NONE = "none"
    SYSTEM = "system"
    MICROPHONE = "microphone"
    BOTH = "both"


def round_even(value: float) -> int:
    """Round to the nearest even integer, halves up (encoders need even dimensions)."""
    return int(math.floor(value / 2.0 + 0.5)) * 2


@dataclass(frozen=True)
class Region:
    """A capture rectangle in absolute (physical) screen coordinates."""
    x: int
    y: int
    width: int
    height: int

    def aligned(self) -> "Region":
        """Return a copy with integer origin and even width/height."""
        return Region(
            x=int(round(self.x)),
            y=int(round(self.y)),
            width=round_even(self.width),
            height=round_even(self.height),
        )

    def to_dict(self) -> dict:
        return {"x": self.x, "y": self.y, "width": self.width, "height": self.height}

    @staticmethod
    def from_dict(d: dict) -> "Region":
        return Region(x=d["x"], y=d["y"], width=d["width"], height=d["height"])


@dataclass(frozen=True)
class Clip:
    """A recorded clip as reported by the service.

    ``trim_end_ms`` is ``None`` when the clip is untrimmed at the end.
    The service encodes that as ``0``; the conversion lives in
    ``to_dict()`` / ``from_dict()`` only.
    """
    id: str
    source_path: str
    duration_ms: int
    region: Region
    has_audio: bool = False
    thumbnail_path: Optional[str] = None
    trim_start_ms: int = 0
    trim_end_ms: Optional[int] = None

    @property
    def effective_end_ms(self) -> int:
        return self.trim_end_ms if self.trim_end_ms is not None else self.duration_ms

    @property
    def trimmed_duration_ms(self) -> int:
        return self.effective_end_ms - self.trim_start_ms

    def is_valid_trim(self, start_ms: int, end_ms: Optional[int]) -> bool:
        """Check ``0 <= start < effective_end <= duration`` for a proposed trim."""
        end = self.duration_ms if end_ms is None else end_ms
        return 0 <= start_ms < end <= self.duration_ms

    def with_trim(self, start_ms: int, end_ms: Optional[int]) -> "Clip":
        return replace(self, trim_start_ms=start_ms, trim_end_ms=end_ms)

    def to_dict(self) -> dict:
        """Serialize using the service's wire keys (``0`` = untrimmed end)."""
        return {
            "id": self.id,
            "path": self.source_path,
            "duration_ms": self.duration_ms,
            "region": self.region.to_dict(),
            "has_audio": self.has_audio,
            "thumbnail_path": self.thumbnail_path,
            "trim_start_ms": self.trim_start_ms,
            "trim_end_ms": self.trim_end_ms or 0,
        }

    @staticmethod
    def from_dict(d: dict) -> "Clip":
        """Reconstruct from wire data, ignoring unknown keys for forward compat."""
        trim_end = int(d.get("trim_end_ms") or 0)
        return Clip(
            id=d["id"],
            source_path=d.get("path", ""),
            duration_ms=int(d["duration_ms"]),
            region=Region.from_dict(d["region"]),
            has_audio=bool(d.get("has_audio", False)),
            thumbnail_path=d.get("thumbnail_path"),
            trim_start_ms=int(d.get("trim_start_ms") or 0),
            trim_end_ms=trim_end if trim_end > 0 else None,
        )


@dataclass(frozen=True)
class Transition:
    """The transition that fills one gap between adjacent clips."""
    transition_type: TransitionType = TransitionType.FADE
    duration_s: Optional[float] = None

    def to_dict(self) -> dict:
        d: dict = {"transition_type": self.transition_type.value}
        if self.duration_s is not None:
            d["duration_s"] = self.duration_s
        return d

    @staticmethod
    def from_dict(d: dict) -> "Transition":
        return Transition(
            transition_type=TransitionType(d["transition_type"]),
            duration_s=d.get("duration_s"),
        )


@dataclass(frozen=True)
class ProjectSummary:
    """Listing entry for a saved project; the full data stays in the service."""
    id: str
    name: str
    created_at: str
    updated_at: str
    clip_count: int
    total_duration_ms: int

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "clip_count": self.clip_count,
            "total_duration_ms": self.total_duration_ms,
        }

    @staticmethod
    def from_dict(d: dict) -> "ProjectSummary":
        return ProjectSummary(
            id=d["id"],
            name=d.get("name", ""),
            created_at=d.get("created_at", ""),
            updated_at=d.get("updated_at", ""),
            clip_count=int(d.get("clip_count", 0)),
            total_duration_ms=int(d.get("total_duration_ms", 0)),
        )


@dataclass
class Session:
    """The one recording session owned by the state machine.

    ``elapsed_ms`` is only meaningful while recording or paused.
    """
    lifecycle: Lifecycle = Lifecycle.IDLE
    elapsed_ms: int = 0
    countdown_remaining: int = 0


class PipelineKind(Enum):
    EXPORT = "export"
    PREVIEW = "preview"


class PipelineStatus(Enum):
    IDLE = "idle"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass
class PipelineRun:
    """State of one long-running export or preview render."""
    kind: PipelineKind
    status: PipelineStatus = PipelineStatus.IDLE
    progress: int = 0  # 0-100
    result_path: Optional[str] = None
    error_message: Optional[str] = None

    @property
    def is_running(self) -> bool:
        return self.status is PipelineStatus.RUNNING

    def reset(self) -> None:
        self.status = PipelineStatus.IDLE
        self.progress = 0
        self.result_path = None
        self.error_message = None


class AnnotationKind(Enum):
    ARROW = "arrow"
    RECTANGLE = "rectangle"
    CIRCLE = "circle"
    TEXT = "text"
    FREEHAND = "freehand"


@dataclass(frozen=True)
class Annotation:
    """A shape drawn over one clip.

    Geometry is normalized to 0-1 of the clip frame; timing is relative
    to the clip's own start.
    """
    id: str
    kind: AnnotationKind
    x: float
    y: float
    width: float
    height: float
    start_ms: int
    end_ms: int
    color: str = "#ef4444"
    stroke_width: float = 3.0
    text: Optional[str] = None
    points: Optional[List[Tuple[float, float]]] = None  # freehand only

    def is_valid(self) -> bool:
        in_frame = all(0.0 <= v <= 1.0 for v in (self.x, self.y, self.width, self.height))
        return in_frame and 0 <= self.start_ms < self.end_ms

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "kind": self.kind.value,
            "x": self.x,
            "y": self.y,
            "width": self.width,
            "height": self.height,
            "color": self.color,
            "stroke_width": self.stroke_width,
            "text": self.text,
            "points": [list(p) for p in self.points] if self.points is not None else None,
            "start_ms": self.start_ms,
            "end_ms": self.end_ms,
        }

    @staticmethod
    def from_dict(d: dict) -> "Annotation":
        points = d.get("points")
        return Annotation(
            id=d["id"],
            kind=AnnotationKind(d["kind"]),
            x=float(d.get("x", 0.0)),
            y=float(d.get("y", 0.0)),
            width=float(d.get("width", 0.0)),
            height=float(d.get("height", 0.0)),
            start_ms=int(d.get("start_ms", 0)),
            end_ms=int(d.get("end_ms", 0)),
            color=d.get("color", "#ef4444"),
            stroke_width=float(d.get("stroke_width", 3.0)),
            text=d.get("text"),
            points=[(float(px), float(py)) for px, py in points] if points is not None else None,
        )


class SubtitlePosition(Enum):
    TOP = "top"
    CENTER = "center"
    BOTTOM = "bottom"


@dataclass(frozen=True)
class Subtitle:
    """A caption burned into the export, timed on the whole timeline."""
    id: str
    text: str
    start_ms: int
    end_ms: int
    position: SubtitlePosition = SubtitlePosition.BOTTOM
    font_size: int = 32
    color: str = "#ffffff"

    def is_valid(self) -> bool:
        return 0 <= self.start_ms and self.end_ms - self.start_ms >= SUBTITLE_MIN_SPAN_MS

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "text": self.text,
            "start_ms": self.start_ms,
            "end_ms": self.end_ms,
            "position": self.position.value,
            "font_size": self.font_size,
            "color": self.color,
        }

    @staticmethod
    def from_dict(d: dict) -> "Subtitle":
        return Subtitle(
            id=d["id"],
            text=d.get("text", ""),
            start_ms=int(d.get("start_ms", 0)),
            end_ms=int(d.get("end_ms", 0)),
            position=SubtitlePosition(d.get("position", "bottom")),
            font_size=int(d.get("font_size", 32)),
            color=d.get("color", "#ffffff"),
        )


def clips_from_wire(items: List[dict]) -> List[Clip]:
    return [Clip.from_dict(c) for c in items or []]


def transitions_from_wire(items: List[dict]) -> List[Transition]:
    return [Transition.from_dict(t) for t in items or []]


def expected_transition_count(clip_count: int) -> int:
    """Number of gaps on a timeline of ``clip_count`` clips."""
    return max(0, clip_count - 1)


DEFAULT_COUNTDOWN_SECONDS = 3
COUNTDOWN_CHOICES = (0, 3, 5)
DEFAULT_POLL_INTERVAL_MS = 200
DEFAULT_PIPELINE_TIMEOUT_S = 1800.0
TRANSITION_DURATION_MIN_S = 0.1
TRANSITION_DURATION_MAX_S = 5.0
VOLUME_MIN = 0.0
VOLUME_MAX = 2.0
SUBTITLE_MIN_SPAN_MS = 100
