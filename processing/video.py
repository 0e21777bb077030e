"""
Video path: launch ffmpeg for one attempt and report its lifecycle as events.

Launching is the only synchronous step. A daemon monitor thread owns the
process handle, parses ffmpeg's ``-progress pipe:1`` output and ends the
attempt with exactly one ``done`` or ``error``. Running handles are kept in an
EngineRegistry keyed by job id so a future cancel can terminate them.
"""
import logging
import re
import shlex
import subprocess
import threading
from collections import deque
from pathlib import Path
from typing import Dict, List, Optional

from .attempts import ProcessingAttempt
from .exceptions import EngineFailure
from .models import OutputProfile

logger = logging.getLogger(__name__)

DEFAULT_CODECS = ("libx264", "aac")
CONTAINER_CODECS = {
    "webm": ("libvpx-vp9", "libopus"),
}
FASTSTART_CONTAINERS = {"mp4", "mov"}

PROGRESS_LINE = re.compile(r"^([a-z_]+)=(.*)$")
PROGRESS_KEYS = {
    "frame", "fps", "bitrate", "total_size", "out_time_us", "out_time_ms",
    "out_time", "dup_frames", "drop_frames", "speed", "progress",
}
DURATION_LINE = re.compile(r"Duration: (\d+):(\d+):(\d+(?:\.\d+)?)")


def build_command(ffmpeg_bin: str, source: Path, output: Path, profile: OutputProfile,
                  preset: str = "veryfast") -> List[str]:
    """ffmpeg argv derived strictly from the effective profile."""
    vcodec, acodec = CONTAINER_CODECS.get(profile.container, DEFAULT_CODECS)
    cmd = [
        ffmpeg_bin,
        "-y",
        "-i", str(source),
        "-c:v", vcodec,
        "-vf", f"scale={profile.width}:{profile.height}",
        "-r", f"{profile.fps:g}",
        "-b:v", f"{profile.video_bitrate_kbps}k",
        "-c:a", acodec,
        "-b:a", f"{profile.audio_bitrate_kbps}k",
        "-pix_fmt", "yuv420p",
    ]
    if vcodec == "libx264":
        cmd += ["-preset", preset]
    if profile.container in FASTSTART_CONTAINERS:
        # moov atom up front so the file plays while downloading
        cmd += ["-movflags", "+faststart"]
    cmd += ["-progress", "pipe:1", "-nostats", str(output)]
    return cmd


def parse_duration(line: str) -> Optional[float]:
    match = DURATION_LINE.search(line)
    if not match:
        return None
    h, m, s = match.groups()
    return int(h) * 3600 + int(m) * 60 + float(s)


def progress_measure(block: Dict[str, str], duration: Optional[float]) -> Dict:
    """
    Normalize one ffmpeg progress block.

    ``percent`` is only present when the input duration is known.
    """
    measure = {}
    if block.get("frame", "").isdigit():
        measure["frames"] = int(block["frame"])
    try:
        measure["currentFps"] = float(block["fps"])
    except (KeyError, ValueError):
        pass
    if block.get("out_time"):
        measure["timemark"] = block["out_time"]
    if block.get("speed") and block["speed"] != "N/A":
        measure["speed"] = block["speed"]

    # out_time_ms is reported in microseconds by ffmpeg as well
    raw_us = block.get("out_time_us") or block.get("out_time_ms")
    try:
        seconds = int(raw_us) / 1_000_000
    except (TypeError, ValueError):
        seconds = None
    if seconds is not None and seconds >= 0:
        measure["seconds"] = round(seconds, 3)
        if duration:
            measure["percent"] = round(min(100.0, seconds / duration * 100), 2)
    return measure


class VideoHandle:
    """A running ffmpeg process for one attempt."""

    def __init__(self, attempt: ProcessingAttempt, process: subprocess.Popen, command: List[str]):
        self.attempt = attempt
        self.process = process
        self.command = command
        self.thread: Optional[threading.Thread] = None

    @property
    def job_id(self) -> str:
        return self.attempt.job_id

    def terminate(self) -> None:
        if self.process.poll() is None:
            logger.info("Terminating ffmpeg for job %s attempt %s", self.job_id, self.attempt.id)
            self.process.terminate()

    def stop(self, timeout: float = 5.0) -> None:
        """Terminate and reap the process, killing it if SIGTERM is ignored."""
        self.terminate()
        try:
            self.process.wait(timeout=timeout)
        except subprocess.TimeoutExpired:
            logger.warning("ffmpeg for job %s ignored SIGTERM; killing", self.job_id)
            self.process.kill()
            self.process.wait()

    def join(self, timeout: Optional[float] = None) -> None:
        if self.thread is not None:
            self.thread.join(timeout)


class EngineRegistry:
    """Running engine handles by job id."""

    def __init__(self):
        self._handles: Dict[str, Dict[str, VideoHandle]] = {}
        self._lock = threading.Lock()

    def add(self, handle: VideoHandle) -> None:
        with self._lock:
            self._handles.setdefault(handle.job_id, {})[handle.attempt.id] = handle

    def remove(self, handle: VideoHandle) -> None:
        with self._lock:
            running = self._handles.get(handle.job_id)
            if running is None:
                return
            running.pop(handle.attempt.id, None)
            if not running:
                del self._handles[handle.job_id]

    def get(self, job_id: str) -> List[VideoHandle]:
        with self._lock:
            return list(self._handles.get(job_id, {}).values())


class VideoPath:
    def __init__(self, registry: EngineRegistry, ffmpeg_bin: str = "ffmpeg",
                 preset: str = "veryfast", tail_lines: int = 40):
        self.registry = registry
        self.ffmpeg_bin = ffmpeg_bin
        self.preset = preset
        self.tail_lines = tail_lines

    def start(self, source: Path, output_abs: Path, attempt: ProcessingAttempt) -> VideoHandle:
        """Launch ffmpeg and return immediately; the outcome arrives as events."""
        output_abs = Path(output_abs)
        output_abs.parent.mkdir(parents=True, exist_ok=True)
        cmd = build_command(self.ffmpeg_bin, source, output_abs, attempt.profile, self.preset)
        command_line = shlex.join(cmd)
        logger.info("Starting ffmpeg for job %s: %s", attempt.job_id, command_line)

        try:
            process = subprocess.Popen(
                cmd,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                text=True,
                encoding="utf-8",
                errors="replace",
                bufsize=1,
            )
        except (OSError, ValueError) as e:
            message = f"Failed to launch ffmpeg: {e}"
            attempt.fail(message)
            raise EngineFailure(message)

        handle = VideoHandle(attempt, process, cmd)
        self.registry.add(handle)
        attempt.started(command_line)

        handle.thread = threading.Thread(
            target=self._monitor,
            args=(handle,),
            name=f"ffmpeg-{attempt.job_id[:8]}-{attempt.id[:6]}",
            daemon=True,
        )
        handle.thread.start()
        return handle

    def _monitor(self, handle: VideoHandle) -> None:
        attempt = handle.attempt
        process = handle.process
        tail = deque(maxlen=self.tail_lines)
        block: Dict[str, str] = {}
        duration = None

        try:
            for raw in process.stdout:
                line = raw.strip()
                if not line:
                    continue
                match = PROGRESS_LINE.match(line)
                if match and match.group(1) in PROGRESS_KEYS:
                    key, value = match.group(1), match.group(2).strip()
                    if key == "progress":
                        attempt.report_progress(progress_measure(block, duration))
                        block = {}
                    else:
                        block[key] = value
                    continue
                tail.append(line)
                if duration is None:
                    duration = parse_duration(line)
            returncode = process.wait()
        except Exception as e:
            logger.exception("Monitoring ffmpeg for job %s failed", attempt.job_id)
            self.registry.remove(handle)
            attempt.fail(f"Lost track of ffmpeg: {e}")
            handle.stop()
            return
        finally:
            if process.stdout is not None:
                process.stdout.close()

        self.registry.remove(handle)
        if returncode == 0:
            attempt.complete()
        else:
            detail = "\n".join(list(tail)[-10:]) or "no output"
            attempt.fail(f"ffmpeg exited with code {returncode}: {detail}")
