import os

# Must be set before any application module reads the config
os.environ["ENVIRONMENT"] = "development"
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["ADMIN_API_KEY"] = "test-admin-key"
os.environ["GROQ_API_KEY"] = ""
os.environ["GEMINI_API_KEY"] = ""
os.environ["PODCAST_INDEX_KEY"] = ""
os.environ["PODCAST_INDEX_SECRET"] = ""
os.environ["WEBHOOK_URL"] = ""

import subprocess  # noqa: E402

import pytest  # noqa: E402


class FakeMedia:
    """Stands in for ffmpeg/ffprobe: records calls and writes output files."""

    def __init__(self, duration=600.0, output_bytes=1024, fail_compress=False):
        self.duration = duration
        self.output_bytes = output_bytes
        self.fail_compress = fail_compress
        self.calls = []

    def __call__(self, cmd, **kwargs):
        self.calls.append(list(cmd))
        if cmd[0] == "ffprobe":
            return subprocess.CompletedProcess(cmd, 0, stdout=f"{self.duration}\n", stderr="")
        dest = cmd[-1]
        if self.fail_compress and dest.endswith("_compressed.mp3"):
            raise subprocess.CalledProcessError(1, cmd, output=b"", stderr=b"Invalid data found")
        with open(dest, "wb") as out:
            out.write(b"\0" * self.output_bytes)
        return subprocess.CompletedProcess(cmd, 0, stdout=b"", stderr=b"")

    @property
    def ffmpeg_calls(self):
        return [cmd for cmd in self.calls if cmd[0] == "ffmpeg"]


@pytest.fixture
def fake_media(monkeypatch):
    media = FakeMedia()
    monkeypatch.setattr(subprocess, "run", media)
    return media


@pytest.fixture
def scratch_dir(tmp_path):
    path = tmp_path / "scratch"
    path.mkdir()
    return path


# ── Pipeline collaborators ───────────────────────────────────────────────

from src.transcription.models import SegmentTranscript  # noqa: E402


class FakeAudioStore:
    def __init__(self, scratch_dir, size=4096, error=None):
        self.scratch_dir = scratch_dir
        self.size = size
        self.error = error
        self.urls = []

    def scratch_path(self, job_id):
        return str(self.scratch_dir / f"{job_id}_1700000000000.mp3")

    async def fetch(self, url, dest_path, report=None):
        self.urls.append(url)
        if self.error is not None:
            raise self.error
        with open(dest_path, "wb") as out:
            out.write(b"\1" * self.size)
        report(100, "Download complete")
        return dest_path


class FakeTranscriber:
    """Returns canned text per segment and records the call order."""

    def __init__(self, texts=None, fail_at=None, error=None, relabel=None):
        self.texts = texts or {}
        # segment index -> index reported back, to simulate a lost segment
        self.relabel = relabel or {}
        self.fail_at = fail_at
        self.error = error
        self.calls = []
        self.active = 0

    async def transcribe(self, segment, total=None):
        assert self.active == 0, "segments must be transcribed one at a time"
        assert os.path.exists(segment.path)
        self.active += 1
        try:
            self.calls.append(segment.index)
            if segment.index == self.fail_at:
                raise self.error
            text = self.texts.get(segment.index, f"segment {segment.index}")
            index = self.relabel.get(segment.index, segment.index)
            return SegmentTranscript(index=index, text=text)
        finally:
            self.active -= 1


class FakeSummarizer:
    def __init__(self, summary=None, error=None, configured=True):
        self.summary = summary
        self.error = error
        self.configured = configured

    async def summarize(self, transcript, episode_title):
        if self.error is not None:
            raise self.error
        return self.summary


class FakeNotifier:
    configured = True

    def __init__(self):
        self.sent = []

    async def send(self, subject, body):
        self.sent.append((subject, body))
        return True


class FakeResolver:
    def __init__(self, feed_url="https://feeds.example.com/show.xml", episode=None, error=None):
        self.feed_url = feed_url
        self.episode = episode
        self.error = error
        self.lookups = []

    async def find_feed(self, podcast_name):
        self.lookups.append(podcast_name)
        return self.feed_url

    async def resolve_episode(self, feed_url, episode_title, duration_hint=None):
        if self.error is not None:
            raise self.error
        return self.episode


@pytest.fixture
def make_controller(scratch_dir):
    from src.transcription.worker import JobController

    def factory(**overrides):
        parts = {
            "audio_store": FakeAudioStore(scratch_dir),
            "transcriber": FakeTranscriber(),
            "summarizer": FakeSummarizer(configured=False),
            "resolver": FakeResolver(),
            "notifier": FakeNotifier(),
        }
        parts.update(overrides)
        return JobController(**parts)

    return factory


