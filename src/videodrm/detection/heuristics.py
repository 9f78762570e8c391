"""
Built-in anti-piracy heuristics.

Screen recording:
- OverlayMarkupHeuristic: recorder / Game Bar overlay fingerprints in markup
- ScreenCaptureApiHeuristic: an active display-capture stream
- RecorderTitleHeuristic: recorder names in the document title
- GameBarHeuristic: Game Bar storage keys and injected globals
- FrameRateHeuristic: sustained frame-rate collapse

Extensions and dev tools:
- DownloaderExtensionHeuristic: known downloader extension fingerprints
- DevToolsHeuristic: outer/inner window size gap
- NetworkInterceptionHeuristic: placeholder, never fires

Environment:
- VirtualMachineHeuristic: VM vendor in the user agent (advisory only)
"""

from __future__ import annotations

import re
from typing import List, Optional, Sequence

from .base import ClientEnvironment, DetectionHeuristic, contains_any
from .framerate import FrameRateMonitor

RECORDER_NAMES = (
    "OBS Studio", "Bandicam", "Fraps", "Camtasia", "ScreenFlow", "Loom",
    "Screencastify", "Game Bar", "Xbox Game Bar", "Windows Game Bar", "Game DVR",
    "ShadowPlay", "Relive", "Action!", "HyperCam", "ScreenRecorder", "RecordIt",
    "Screencast-O-Matic",
)

RECORDER_MARKUP = (
    "obs-studio", "xsplit", "bandicam", "fraps", "camtasia", "screen-recorder",
    "game-recorder", "streaming-software",
)

GAMEBAR_MARKUP = ("gamebar", "xbox")

RECORDING_WORDS = re.compile(r"record|capture|stream|live|broadcast", re.IGNORECASE)

DOWNLOADER_EXTENSIONS = (
    "video-downloader", "youtube-downloader", "video-saver", "media-downloader",
    "video-downloadhelper", "flash-video-downloader",
)

GAMEBAR_STORAGE_KEYS = ("gamebar", "xbox", "game-dvr", "gamebar-overlay")
GAMEBAR_GLOBALS = ("GameBar", "XboxGameBar", "GameDVR", "GameBarAPI")

VM_VENDORS = ("VirtualBox", "VMware", "QEMU", "Xen")


class OverlayMarkupHeuristic(DetectionHeuristic):
    """Scan rendered markup for recorder overlays. O(markup size)."""

    def __init__(self, recorder_markers: Sequence[str] = RECORDER_MARKUP,
                 gamebar_markers: Sequence[str] = GAMEBAR_MARKUP):
        super().__init__(
            "overlay_markup",
            "Look for screen-recorder or Game Bar overlay fingerprints in the page markup",
        )
        self.recorder_markers = tuple(recorder_markers)
        self.gamebar_markers = tuple(gamebar_markers)

    def check(self, env: ClientEnvironment) -> Optional[str]:
        for element in env.markup:
            attrs = f"{element.id} {element.class_name}"
            hit = contains_any(attrs, self.gamebar_markers)
            if hit:
                return f"Screen recording overlay detected ({hit})"
            hit = contains_any(f"{attrs} {element.text}", self.recorder_markers)
            # recorder names alone are common in page text; require a recording word too
            if hit and RECORDING_WORDS.search(f"{attrs} {element.text}"):
                return f"Screen recording indicator detected ({hit})"
        return None


class ScreenCaptureApiHeuristic(DetectionHeuristic):
    def __init__(self):
        super().__init__("screen_capture_api", "Detect an active display-capture stream")

    def check(self, env: ClientEnvironment) -> Optional[str]:
        if env.display_capture_active:
            return "Screen capture API in use"
        return None


class RecorderTitleHeuristic(DetectionHeuristic):
    def __init__(self, names: Sequence[str] = RECORDER_NAMES):
        super().__init__("recorder_title", "Match the document title against known recorder names")
        self.names = tuple(names)

    def check(self, env: ClientEnvironment) -> Optional[str]:
        hit = contains_any(env.document_title, self.names)
        if hit:
            return f"Recording software detected in title ({hit})"
        return None


class GameBarHeuristic(DetectionHeuristic):
    def __init__(self):
        super().__init__("game_bar", "Look for Windows Game Bar storage keys and injected globals")

    def check(self, env: ClientEnvironment) -> Optional[str]:
        keys = {k.lower() for k in env.storage_keys}
        for key in GAMEBAR_STORAGE_KEYS:
            if key in keys:
                return f"Windows Game Bar detected (storage key {key})"
        for name in GAMEBAR_GLOBALS:
            if name in env.window_globals:
                return f"Windows Game Bar detected ({name})"
        return None


class FrameRateHeuristic(DetectionHeuristic):
    """Feeds reported per-second frame rates into a FrameRateMonitor.

    The monitor keeps its streak across scans, so samples may arrive in any
    batch size; each sustained collapse is reported once.
    """

    def __init__(self, monitor: Optional[FrameRateMonitor] = None, threshold: float = 10.0,
                 required_windows: int = 3):
        super().__init__("frame_rate", "Detect a sustained frame-rate collapse during playback")
        self.monitor = monitor or FrameRateMonitor(threshold, required_windows)

    def check(self, env: ClientEnvironment) -> Optional[str]:
        for fps in env.frame_rates:
            self.monitor.record_window(fps)
        if self.monitor.consume():
            return (f"Persistent low frame rate (<{self.monitor.threshold:g} fps for "
                    f"{self.monitor.required_windows}s), possible recording")
        return None

    def reset(self) -> None:
        self.monitor.reset()


class DownloaderExtensionHeuristic(DetectionHeuristic):
    def __init__(self, fingerprints: Sequence[str] = DOWNLOADER_EXTENSIONS):
        super().__init__("downloader_extension", "Match installed extensions against known video downloaders")
        self.fingerprints = tuple(fingerprints)

    def check(self, env: ClientEnvironment) -> Optional[str]:
        for ext in env.extensions:
            hit = contains_any(ext, self.fingerprints)
            if hit:
                return f"Suspicious browser extension detected ({hit})"
        for element in env.markup:
            hit = contains_any(f"{element.id} {element.class_name}", self.fingerprints)
            if hit:
                return f"Suspicious browser extension detected ({hit})"
        return None


class DevToolsHeuristic(DetectionHeuristic):
    def __init__(self, threshold: int = 160):
        super().__init__("dev_tools", "Detect docked developer tools from the outer/inner window gap")
        self.threshold = threshold

    def check(self, env: ClientEnvironment) -> Optional[str]:
        if not (env.outer_width and env.inner_width) and not (env.outer_height and env.inner_height):
            return None
        if (env.outer_height - env.inner_height > self.threshold
                or env.outer_width - env.inner_width > self.threshold):
            return "Developer tools detected"
        return None


class VirtualMachineHeuristic(DetectionHeuristic):
    def __init__(self, vendors: Sequence[str] = VM_VENDORS):
        super().__init__("virtual_machine", "Match the user agent against VM vendors", advisory=True)
        self.vendors = tuple(vendors)

    def check(self, env: ClientEnvironment) -> Optional[str]:
        hit = contains_any(env.user_agent, self.vendors)
        if hit:
            return f"Virtual machine environment detected ({hit})"
        return None


class NetworkInterceptionHeuristic(DetectionHeuristic):
    """Placeholder: request interception cannot be observed from a snapshot."""

    def __init__(self):
        super().__init__("network_interception", "Detect suspicious media requests (not implemented)")

    def check(self, env: ClientEnvironment) -> Optional[str]:
        return None


def default_heuristics(framerate_threshold: float = 10.0, framerate_windows: int = 3,
                       devtools_threshold: int = 160) -> List[DetectionHeuristic]:
    return [
        OverlayMarkupHeuristic(),
        ScreenCaptureApiHeuristic(),
        RecorderTitleHeuristic(),
        GameBarHeuristic(),
        FrameRateHeuristic(threshold=framerate_threshold, required_windows=framerate_windows),
        DownloaderExtensionHeuristic(),
        DevToolsHeuristic(devtools_threshold),
        VirtualMachineHeuristic(),
        NetworkInterceptionHeuristic(),
    ]
