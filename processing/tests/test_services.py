"""
Tests for processing/services.py, processing/dispatch.py, processing/store.py
and processing/cleanup.py

End-to-end flows through the service facade with real Pillow encoding and a
stubbed ffmpeg process.
"""
import tempfile
import threading
from pathlib import Path
from unittest.mock import patch

from django.core.files.uploadedfile import SimpleUploadedFile
from django.test import SimpleTestCase
from PIL import Image

from processing.events import EventType
from processing.exceptions import (
    EngineFailure,
    InvalidConfig,
    InvalidRequest,
    IOFailure,
    NotFound,
    UnsupportedMediaKind,
)
from processing.models import MediaKind
from processing.store import JobStore

from .helpers import (
    BlockingProcess,
    FakeProcess,
    build_service,
    collect_events,
    drain,
    ffmpeg_output,
    image_upload,
    video_upload,
)


class JobStoreTest(SimpleTestCase):

    def setUp(self):
        self.store = JobStore()

    def create(self, name="a.jpg"):
        return self.store.create(filename=name, original_name=name, mime="image/jpeg",
                                 kind=MediaKind.IMAGE, path=Path("/tmp") / name)

    def test_ids_are_unique(self):
        ids = {self.create(f"{i}.jpg").id for i in range(50)}
        self.assertEqual(len(ids), 50)
        self.assertEqual(len(self.store), 50)

    def test_get_and_delete(self):
        job = self.create()
        self.assertIs(self.store.get(job.id), job)
        self.assertTrue(self.store.exists(job.id))

        self.store.delete(job.id)

        self.assertFalse(self.store.exists(job.id))
        with self.assertRaises(NotFound):
            self.store.get(job.id)
        with self.assertRaises(NotFound):
            self.store.delete(job.id)
        self.assertTrue(self.store.is_retired(job.id))

    def test_concurrent_creates(self):
        def create_many():
            for i in range(100):
                self.create(f"{threading.get_ident()}-{i}.jpg")

        threads = [threading.Thread(target=create_many) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        self.assertEqual(len(self.store), 400)


class MediaServiceTestCase(SimpleTestCase):

    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.service = build_service(self.tmp.name)
        self.outputs = Path(self.tmp.name) / "output"

    def tearDown(self):
        self.tmp.cleanup()

    def output_files(self):
        if not self.outputs.exists():
            return []
        return sorted(p.name for p in self.outputs.iterdir())


class UploadTest(MediaServiceTestCase):

    def test_upload_creates_job_with_assigned_name(self):
        job = self.service.upload(image_upload("../../Holiday Photo.JPG"))

        self.assertEqual(job.kind, MediaKind.IMAGE)
        self.assertEqual(job.original_name, "Holiday Photo.JPG")
        self.assertTrue(job.filename.endswith(".jpg"))
        self.assertNotIn("Holiday", job.filename)
        self.assertTrue(job.path.is_file())
        self.assertEqual(job.path.parent, Path(self.tmp.name) / "uploads")

    def test_kind_comes_from_declared_type(self):
        job = self.service.upload(SimpleUploadedFile("notes.txt", b"hello", content_type="text/plain"))
        self.assertEqual(job.kind, MediaKind.OTHER)

        job = self.service.upload(SimpleUploadedFile("clip.mov", b"data", content_type="application/octet-stream"))
        self.assertEqual(job.mime, "video/quicktime")
        self.assertEqual(job.kind, MediaKind.VIDEO)

    def test_missing_file(self):
        with self.assertRaises(InvalidRequest):
            self.service.upload(None)

    def test_upload_over_size_limit(self):
        service = build_service(self.tmp.name, max_upload_size=1024)

        with self.assertRaises(InvalidRequest):
            service.upload(SimpleUploadedFile("big.jpg", b"\0" * 2048, content_type="image/jpeg"))

        self.assertEqual(len(service.store), 0)
        self.assertFalse((Path(self.tmp.name) / "uploads").exists())
        job = service.upload(SimpleUploadedFile("small.jpg", b"\0" * 1024, content_type="image/jpeg"))
        self.assertEqual(job.kind, MediaKind.IMAGE)


class ImageProcessingTest(MediaServiceTestCase):

    def test_instagram_feed_image(self):
        """4000x3000 upload for instagram_feed fits 1080x1080 as jpeg, no upscale"""
        sub = self.service.channel.connect()
        job = self.service.upload(image_upload(size=(4000, 3000)))

        outcome = self.service.process(job.id, "instagram_feed", address=sub.address)

        self.assertFalse(outcome.accepted)
        self.assertEqual(outcome.out_name, f"{job.stem}_instagram_feed.jpg")
        self.assertEqual(outcome.url, f"/download/{outcome.out_name}")
        with Image.open(self.service.retrieve(outcome.out_name)) as img:
            self.assertEqual(img.format, "JPEG")
            self.assertEqual(img.size, (1080, 810))

        events = drain(sub)
        self.assertEqual([e.type for e in events], [EventType.DONE])
        self.assertEqual(events[0].job_id, job.id)

    def test_repeat_request_overwrites_same_output(self):
        job = self.service.upload(image_upload(size=(1600, 1200)))

        first = self.service.process(job.id, "twitter")
        second = self.service.process(job.id, "twitter", {"width": 320, "height": 320})

        self.assertEqual(first.out_name, second.out_name)
        self.assertEqual(self.output_files(), [first.out_name])
        with Image.open(self.service.retrieve(second.out_name)) as img:
            self.assertEqual(img.size, (320, 240))
        self.assertEqual(len(self.service.store.attempts(job.id)), 2)

    def test_different_platforms_produce_distinct_outputs(self):
        job = self.service.upload(image_upload(size=(800, 600)))
        self.service.process(job.id, "youtube")
        self.service.process(job.id, "instagram_feed")
        self.assertEqual(self.output_files(), sorted([f"{job.stem}_youtube.jpg",
                                                      f"{job.stem}_instagram_feed.jpg"]))

    def test_invalid_overrides_create_no_artifact(self):
        job = self.service.upload(image_upload(size=(800, 600)))

        for overrides in ({"width": 0}, {"width": -10}, {"container": "xyz"}):
            with self.subTest(overrides=overrides):
                with self.assertRaises(InvalidConfig):
                    self.service.process(job.id, "custom", overrides)

        self.assertEqual(self.output_files(), [])
        self.assertEqual(self.service.store.attempts(job.id), [])

    def test_corrupt_image_reports_error(self):
        sub = self.service.channel.connect()
        job = self.service.upload(SimpleUploadedFile("bad.png", b"nope", content_type="image/png"))

        with self.assertRaises(EngineFailure) as ctx:
            self.service.process(job.id, "custom", address=sub.address)

        self.assertEqual(ctx.exception.kind, "engine_failure")
        self.assertEqual([e.type for e in drain(sub)], [EventType.ERROR])
        status = self.service.job_status(job.id)
        self.assertEqual(status["attempts"][0]["status"], "failed")


class VideoProcessingTest(MediaServiceTestCase):

    def test_tiktok_video(self):
        """started, at least one progress, then done referencing an mp4"""
        sub = self.service.channel.connect()
        job = self.service.upload(video_upload())

        with patch("processing.video.subprocess.Popen",
                   return_value=FakeProcess(ffmpeg_output(blocks=2))) as popen:
            outcome = self.service.process(job.id, "tiktok", address=sub.address)

        self.assertTrue(outcome.accepted)
        self.assertEqual(outcome.to_dict()["message"], "processing_started")

        events = collect_events(sub)
        types = [e.type for e in events]
        self.assertEqual(types[0], EventType.STARTED)
        self.assertGreaterEqual(types.count(EventType.PROGRESS), 1)
        self.assertEqual(types[-1], EventType.DONE)
        self.assertTrue(events[-1].payload()["outName"].endswith(".mp4"))
        self.assertTrue(all(e.job_id == job.id for e in events))

        cmd = popen.call_args[0][0]
        self.assertIn("scale=1080:1920", cmd)
        self.assertIn("8000k", cmd)

        status = self.service.job_status(job.id)
        self.assertEqual(status["attempts"][0]["status"], "completed")
        self.assertEqual(status["running"], 0)

    def test_image_container_rejected_for_video(self):
        job = self.service.upload(video_upload())
        with patch("processing.video.subprocess.Popen") as popen:
            with self.assertRaises(InvalidConfig):
                self.service.process(job.id, "tiktok", {"container": "png"})
        popen.assert_not_called()

    def test_cleanup_stops_running_transcode(self):
        sub = self.service.channel.connect()
        job = self.service.upload(video_upload())
        process = BlockingProcess(ffmpeg_output(blocks=1))

        with patch("processing.video.subprocess.Popen", return_value=process):
            self.service.process(job.id, "tiktok", address=sub.address)
        self.assertEqual(len(self.service.running(job.id)), 1)

        self.service.cleanup(job.id)

        self.assertTrue(process.terminated)
        self.assertEqual(self.service.running(job.id), [])
        events = drain(sub)
        self.assertEqual(events[0].type, EventType.STARTED)
        self.assertEqual([e.type for e in events if e.is_terminal], [EventType.ERROR])
        self.assertIn("cleaned up", events[-1].payload()["message"])
        self.assertFalse(job.path.exists())

    def test_addressed_delivery_between_clients(self):
        """Two jobs from two addresses each receive only their own events"""
        alice = self.service.channel.connect()
        bob = self.service.channel.connect()
        job_a = self.service.upload(video_upload("a.mp4"))
        job_b = self.service.upload(video_upload("b.mp4"))

        processes = [FakeProcess(ffmpeg_output(blocks=3)), FakeProcess(ffmpeg_output(blocks=2))]
        with patch("processing.video.subprocess.Popen", side_effect=processes):
            self.service.process(job_a.id, "youtube", address=alice.address)
            self.service.process(job_b.id, "twitter", address=bob.address)

        alice_events = collect_events(alice)
        bob_events = collect_events(bob)

        self.assertEqual({e.job_id for e in alice_events}, {job_a.id})
        self.assertEqual({e.job_id for e in bob_events}, {job_b.id})
        self.assertEqual(alice_events[-1].type, EventType.DONE)
        self.assertEqual(bob_events[-1].type, EventType.DONE)
        self.assertEqual(drain(alice), [])
        self.assertEqual(drain(bob), [])


class RequestValidationTest(MediaServiceTestCase):

    def test_unknown_job_is_invalid_request(self):
        with patch("processing.video.subprocess.Popen") as popen:
            with self.assertRaises(InvalidRequest):
                self.service.process("never-uploaded", "tiktok")
            with self.assertRaises(InvalidRequest):
                self.service.process("", "tiktok")
        popen.assert_not_called()
        self.assertEqual(self.output_files(), [])

    def test_unsupported_kind_fails_before_work(self):
        job = self.service.upload(SimpleUploadedFile("doc.pdf", b"%PDF", content_type="application/pdf"))
        with patch("processing.video.subprocess.Popen") as popen:
            with self.assertRaises(UnsupportedMediaKind):
                self.service.process(job.id, "custom")
        popen.assert_not_called()
        self.assertEqual(self.output_files(), [])


class CleanupTest(MediaServiceTestCase):

    def test_cleanup_twice(self):
        """First cleanup succeeds, the second returns NotFound"""
        job = self.service.upload(image_upload(size=(800, 600)))
        out = self.service.process(job.id, "youtube")

        removed = self.service.cleanup(job.id)

        self.assertIn(job.filename, removed)
        self.assertIn(out.out_name, removed)
        self.assertFalse(job.path.exists())
        self.assertEqual(self.output_files(), [])
        with self.assertRaises(NotFound):
            self.service.cleanup(job.id)
        with self.assertRaises(NotFound):
            self.service.process(job.id, "youtube")
        with self.assertRaises(NotFound):
            self.service.job_status(job.id)

    def test_cleanup_leaves_other_jobs_outputs(self):
        job_a = self.service.upload(image_upload(size=(800, 600)))
        job_b = self.service.upload(image_upload(size=(800, 600)))
        self.service.process(job_a.id, "youtube")
        kept = self.service.process(job_b.id, "youtube")

        self.service.cleanup(job_a.id)

        self.assertEqual(self.output_files(), [kept.out_name])

    def test_partial_failure_still_retires_job(self):
        job = self.service.upload(image_upload(size=(800, 600)))
        self.service.process(job.id, "youtube")

        real_unlink = Path.unlink

        def flaky_unlink(path, *args, **kwargs):
            if path.parent == self.outputs:
                raise PermissionError(13, "Permission denied")
            return real_unlink(path, *args, **kwargs)

        with patch.object(Path, "unlink", flaky_unlink):
            with self.assertRaises(IOFailure):
                self.service.cleanup(job.id)

        self.assertFalse(job.path.exists())
        self.assertFalse(self.service.store.exists(job.id))
        with self.assertRaises(NotFound):
            self.service.cleanup(job.id)

    def test_retrieve_missing(self):
        with self.assertRaises(NotFound):
            self.service.retrieve("nothing.mp4")
        with self.assertRaises(NotFound):
            self.service.retrieve("")
