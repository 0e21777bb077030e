import io
import threading
from pathlib import Path

from django.core.files.uploadedfile import SimpleUploadedFile
from PIL import Image

from processing.attempts import ProcessingAttempt
from processing.models import MediaKind
from processing.presets import PLATFORMS
from processing.services import MediaService


def build_service(tmp_dir, **kwargs) -> MediaService:
    tmp_dir = Path(tmp_dir)
    return MediaService.build(upload_dir=tmp_dir / "uploads", output_dir=tmp_dir / "output", **kwargs)


def make_attempt(channel, address, job_id="job-1", platform="tiktok", kind=MediaKind.VIDEO):
    return ProcessingAttempt(
        job_id=job_id,
        platform=platform,
        profile=PLATFORMS[platform].recommended,
        output_name=f"abc_{platform}.mp4",
        kind=kind,
        channel=channel,
        address=address,
    )


def image_bytes(size=(4000, 3000), fmt="JPEG", color=(200, 40, 40)) -> bytes:
    buf = io.BytesIO()
    Image.new("RGB", size, color).save(buf, format=fmt)
    return buf.getvalue()


def image_upload(name="photo.jpg", size=(4000, 3000), content_type="image/jpeg"):
    return SimpleUploadedFile(name, image_bytes(size), content_type=content_type)


def video_upload(name="clip.mp4", content_type="video/mp4"):
    return SimpleUploadedFile(name, b"\x00\x00\x00\x18ftypmp42 not really a video", content_type=content_type)


def ffmpeg_output(blocks=3, duration="00:00:10.00"):
    """Lines as ffmpeg prints them with -progress pipe:1 and stderr merged."""
    lines = [
        "Input #0, mov,mp4,m4a,3gp,3g2,mj2, from 'clip.mp4':",
        f"  Duration: {duration}, start: 0.000000, bitrate: 1205 kb/s",
        "Stream mapping:",
        "  Stream #0:0 -> #0:0 (h264 (native) -> h264 (libx264))",
    ]
    for i in range(1, blocks + 1):
        us = i * 2_500_000
        lines += [
            f"frame={i * 75}",
            "fps=74.80",
            "bitrate=7990.1kbits/s",
            f"out_time_us={us}",
            f"out_time_ms={us}",
            f"out_time=00:00:{i * 2.5:09.6f}",
            "speed=2.49x",
            "progress=continue" if i < blocks else "progress=end",
        ]
    return lines


class FakeProcess:
    """Stands in for subprocess.Popen running ffmpeg."""

    def __init__(self, lines, returncode=0):
        self.stdout = io.StringIO("".join(f"{line}\n" for line in lines))
        self.returncode = None
        self.pid = 4242
        self._exit_code = returncode
        self.terminated = False
        self.killed = False

    def wait(self, timeout=None):
        self.returncode = self._exit_code
        return self.returncode

    def poll(self):
        return self.returncode

    def terminate(self):
        self.terminated = True
        self._exit_code = -15

    def kill(self):
        self.killed = True
        self._exit_code = -9


class BlockingStdout(io.StringIO):
    """stdout that stays open until release() is called."""

    def __init__(self, lines=()):
        super().__init__("".join(f"{line}\n" for line in lines))
        self.released = threading.Event()

    def __iter__(self):
        while True:
            line = self.readline()
            if not line:
                break
            yield line
        self.released.wait(5)

    def release(self):
        self.released.set()


class BlockingProcess(FakeProcess):
    def __init__(self, lines=(), returncode=0):
        super().__init__([], returncode)
        self.stdout = BlockingStdout(lines)

    def terminate(self):
        super().terminate()
        self.stdout.release()


def collect_events(subscriber, timeout=5.0):
    """Read events until a terminal one arrives (or timeout); returns them all."""
    events = []
    while True:
        event = subscriber.get(timeout=timeout)
        if event is None:
            return events
        events.append(event)
        if event.is_terminal:
            return events


def drain(subscriber):
    events = []
    while True:
        event = subscriber.get(timeout=0.05)
        if event is None:
            return events
        events.append(event)
