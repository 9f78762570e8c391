"""
Anti-piracy heuristic interface.

A heuristic inspects a ClientEnvironment snapshot and returns a violation
message, or None. Heuristics are independent and best-effort: they never
block playback and never revoke a session. New techniques subclass
DetectionHeuristic and register with the engine; a heuristic that always
returns None is a legitimate placeholder.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence


@dataclass(frozen=True)
class MarkupElement:
    """A rendered element as reported by the client (tag, id, class, text)."""

    tag: str = "div"
    id: str = ""
    class_name: str = ""
    text: str = ""

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "MarkupElement":
        if not isinstance(data, Mapping):
            raise ValueError(f"markup entries must be objects, got {type(data).__name__}")
        return cls(
            tag=str(data.get("tag", "div")),
            id=str(data.get("id") or ""),
            class_name=str(data.get("className") or data.get("class_name") or data.get("class") or ""),
            text=str(data.get("text") or ""),
        )


@dataclass
class ClientEnvironment:
    """Snapshot of the playback environment the heuristics examine."""

    user_agent: str = ""
    platform: str = ""
    document_title: str = ""
    markup: List[MarkupElement] = field(default_factory=list)
    outer_width: int = 0
    outer_height: int = 0
    inner_width: int = 0
    inner_height: int = 0
    display_capture_active: bool = False
    window_globals: List[str] = field(default_factory=list)
    storage_keys: List[str] = field(default_factory=list)
    extensions: List[str] = field(default_factory=list)
    frame_rates: List[float] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ClientEnvironment":
        """Build from the camelCase JSON a client posts (snake_case also accepted).

        Raises:
            ValueError: If a field has the wrong shape
        """
        if not isinstance(data, Mapping):
            raise ValueError("environment must be an object")

        def pick(*names: str, default: Any = None) -> Any:
            for name in names:
                if name in data and data[name] is not None:
                    return data[name]
            return default

        def pick_list(*names: str) -> list:
            value = pick(*names, default=[])
            if not isinstance(value, (list, tuple)):
                raise ValueError(f"{names[0]} must be a list")
            return list(value)

        window = pick("window", default={})
        if not isinstance(window, Mapping):
            raise ValueError("window must be an object")
        return cls(
            user_agent=str(pick("userAgent", "user_agent", default="")),
            platform=str(pick("platform", default="")),
            document_title=str(pick("documentTitle", "document_title", "title", default="")),
            markup=[MarkupElement.from_dict(m) for m in pick_list("markup")],
            outer_width=int(pick("outerWidth", "outer_width", default=window.get("outerWidth", 0))),
            outer_height=int(pick("outerHeight", "outer_height", default=window.get("outerHeight", 0))),
            inner_width=int(pick("innerWidth", "inner_width", default=window.get("innerWidth", 0))),
            inner_height=int(pick("innerHeight", "inner_height", default=window.get("innerHeight", 0))),
            display_capture_active=bool(pick("displayCaptureActive", "display_capture_active", default=False)),
            window_globals=[str(g) for g in pick_list("windowGlobals", "window_globals")],
            storage_keys=[str(k) for k in pick_list("storageKeys", "storage_keys")],
            extensions=[str(e) for e in pick_list("extensions")],
            frame_rates=[float(f) for f in pick_list("frameRates", "frame_rates")],
        )


@dataclass(frozen=True)
class Violation:
    heuristic: str
    message: str
    advisory: bool = False

    def to_dict(self) -> dict:
        return {"heuristic": self.heuristic, "message": self.message, "advisory": self.advisory}


@dataclass
class SecurityViolationReport:
    """Aggregate result of one scan. Advisory violations do not make it insecure."""

    violations: List[Violation] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)

    @property
    def is_secure(self) -> bool:
        return not any(not v.advisory for v in self.violations)

    @property
    def messages(self) -> List[str]:
        return [v.message for v in self.violations]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "isSecure": self.is_secure,
            "violations": self.messages,
            "details": [v.to_dict() for v in self.violations],
            "errors": list(self.errors),
        }


class DetectionHeuristic:
    """Base class for a single detection technique. Subclasses override `check`."""

    def __init__(self, name: str, description: str, advisory: bool = False):
        """Initialize a heuristic.

        Args:
            name: Short identifier used in reports and logs
            description: What the heuristic looks for
            advisory: Advisory findings are reported but never make a scan insecure
        """
        self.name = name
        self.description = description
        self.advisory = advisory

    def check(self, env: ClientEnvironment) -> Optional[str]:
        """Return a violation message, or None when nothing was detected."""
        raise NotImplementedError

    def reset(self) -> None:
        """Drop any state carried between scans."""


def contains_any(haystack: str, needles: Sequence[str]) -> Optional[str]:
    """Case-insensitive substring search; returns the first needle found."""
    lowered = haystack.lower()
    for needle in needles:
        if needle.lower() in lowered:
            return needle
    return None
