import asyncio
import os

import pytest

from conftest import FakeAudioStore, FakeResolver, FakeSummarizer, FakeTranscriber
from src.notifications.webhook import WebhookNotifier
from src.transcription.errors import (
    AcquisitionError,
    InvalidTransitionError,
    ResolutionError,
    SummarizationError,
    TranscriptionError,
)
from src.transcription.models import JobRequest, JobState, ResolvedEpisode

DIRECT = JobRequest(
    episode_title="Episode 12",
    audio_url="https://cdn.example.com/ep12.mp3",
    duration_seconds=2100,
)


def _run(controller, request=DIRECT):
    job = controller.submit(request)
    asyncio.run(controller.run(job.job_id))
    return controller.get_job(job.job_id), controller.snapshot(job.job_id)


def test_short_episode_is_transcribed_in_one_call(make_controller, fake_media, scratch_dir):
    fake_media.duration = 600
    transcriber = FakeTranscriber(texts={0: "  just one segment of speech  "})
    controller = make_controller(transcriber=transcriber)

    job, snapshot = _run(controller)

    assert transcriber.calls == [0]
    assert job.state == JobState.COMPLETE
    assert job.result.transcript == "just one segment of speech"
    assert job.result.duration == "35:00"
    assert snapshot["complete"] is True
    assert snapshot["transcribe"]["percentage"] == 100
    assert os.listdir(scratch_dir) == []


def test_long_episode_is_split_and_transcribed_in_order(make_controller, fake_media, scratch_dir):
    fake_media.duration = 35 * 60
    transcriber = FakeTranscriber(texts={0: "a b", 1: "b c", 2: "c d", 3: "d e"})
    controller = make_controller(
        audio_store=FakeAudioStore(scratch_dir, size=2048),
        transcriber=transcriber,
        overlap_words=1,
    )
    controller.segmenter.max_file_size_mb = 1024 / (1024 * 1024)

    job, snapshot = _run(controller)

    assert transcriber.calls == [0, 1, 2, 3]
    assert job.result.transcript == "a b c d e"
    assert snapshot["splitting"]["percentage"] == 100
    assert "compress" not in snapshot
    assert os.listdir(scratch_dir) == []


def test_feed_lookup_by_podcast_name(make_controller, fake_media):
    episode = ResolvedEpisode(
        title="Episode 12: Deep Sea", audio_url="https://cdn.example.com/ep12.mp3",
        published="Tue, 02 Jan 2024", duration="00:35:00",
    )
    resolver = FakeResolver(episode=episode)
    controller = make_controller(resolver=resolver)

    job, snapshot = _run(controller, JobRequest(episode_title="Deep Sea", podcast_name="Example Show"))

    assert resolver.lookups == ["Example Show"]
    assert controller.audio_store.urls == ["https://cdn.example.com/ep12.mp3"]
    assert job.result.to_dict()["episode"] == {
        "title": "Episode 12: Deep Sea",
        "published": "Tue, 02 Jan 2024",
        "duration": "00:35:00",
    }
    assert list(snapshot)[:3] == ["metadata", "rss", "parse"]


def test_missing_feed_fails_the_job(make_controller, scratch_dir):
    controller = make_controller(resolver=FakeResolver(feed_url=None))

    job, snapshot = _run(controller, JobRequest(episode_title="x", podcast_name="Unknown Show"))

    assert job.state == JobState.FAILED
    assert 'Unable to find RSS feed for "Unknown Show"' in job.error
    assert snapshot["error"]["percentage"] == 100
    assert "download" not in snapshot
    assert controller.notifier.sent[0][0] == "Error Processing: x"


def test_failed_segment_stops_the_pipeline(make_controller, fake_media, scratch_dir):
    fake_media.duration = 35 * 60
    transcriber = FakeTranscriber(
        fail_at=1, error=TranscriptionError("Rate limit reached for model", status_code=429)
    )
    controller = make_controller(
        audio_store=FakeAudioStore(scratch_dir, size=2048), transcriber=transcriber
    )
    controller.segmenter.max_file_size_mb = 1024 / (1024 * 1024)

    job, snapshot = _run(controller)

    assert transcriber.calls == [0, 1]
    assert job.state == JobState.FAILED
    assert job.error == "Rate limit reached for model"
    assert snapshot["complete"] is True
    assert snapshot["error"]["percentage"] == 100
    assert snapshot["error"]["message"] == "Rate limit reached for model"
    assert snapshot["transcribe"]["percentage"] < 100
    for later in ("merge", "summary", "complete"):
        assert later not in snapshot
    assert os.listdir(scratch_dir) == []


def test_download_failure_leaves_no_scratch_files(make_controller, scratch_dir):
    controller = make_controller(
        audio_store=FakeAudioStore(scratch_dir, error=AcquisitionError("Audio download failed with HTTP 404"))
    )

    job, snapshot = _run(controller)

    assert job.error == "Audio download failed with HTTP 404"
    assert snapshot["error"]["message"] == "Audio download failed with HTTP 404"
    assert os.listdir(scratch_dir) == []


def test_unexpected_errors_are_reported_like_step_failures(make_controller, scratch_dir):
    controller = make_controller(
        resolver=FakeResolver(error=RuntimeError("feed exploded"))
    )

    job, snapshot = _run(controller, JobRequest(episode_title="x", feed_url="https://feeds.example.com/x"))

    assert job.state == JobState.FAILED
    assert job.error == "feed exploded"
    assert snapshot["complete"] is True


def test_compression_failure_transcribes_original(make_controller, fake_media, scratch_dir):
    fake_media.fail_compress = True
    transcriber = FakeTranscriber(texts={0: "original audio"})
    controller = make_controller(transcriber=transcriber)

    job, snapshot = _run(controller)

    assert job.result.transcript == "original audio"
    assert snapshot["compress"]["message"] == "Compression failed, using original audio"
    assert os.listdir(scratch_dir) == []


def test_summary_failure_keeps_the_transcript(make_controller, fake_media):
    controller = make_controller(
        summarizer=FakeSummarizer(error=SummarizationError("no response from Gemini"))
    )

    job, snapshot = _run(controller)

    assert job.state == JobState.COMPLETE
    assert job.result.summary is None
    assert snapshot["summary"]["percentage"] == 100
    assert "no response from Gemini" in snapshot["summary"]["message"]
    assert controller.notifier.sent[0][0] == "Error Summarising: Episode 12"


def test_summary_is_stored_and_sent(make_controller, fake_media):
    controller = make_controller(summarizer=FakeSummarizer(summary="### TL;DR\n- fish"))

    job, snapshot = _run(controller)

    assert job.result.summary == "### TL;DR\n- fish"
    assert snapshot["summary"]["percentage"] == 100
    subject, body = controller.notifier.sent[-1]
    assert subject == "Summary: Episode 12"
    assert body.startswith("### TL;DR")


def test_summary_skipped_without_api_key(make_controller, fake_media):
    job, snapshot = _run(make_controller())

    assert job.result.summary is None
    assert snapshot["summary"]["message"] == "Summary skipped (Gemini API key not configured)"


def test_finished_job_is_not_run_again(make_controller, fake_media):
    transcriber = FakeTranscriber()
    controller = make_controller(transcriber=transcriber)
    job, _ = _run(controller)

    asyncio.run(controller.run(job.job_id))

    assert transcriber.calls == [0]


def test_cleanup_refuses_running_jobs(make_controller):
    controller = make_controller()
    job = controller.submit(DIRECT)

    with pytest.raises(InvalidTransitionError):
        controller.cleanup(job.job_id)

    controller.jobs.fail_job(job.job_id, "stopped")
    assert controller.cleanup(job.job_id) is True
    assert controller.get_job(job.job_id) is None
    assert controller.snapshot(job.job_id) is None


def test_evict_expired_drops_progress_too(make_controller, fake_media):
    controller = make_controller(result_retention_seconds=0)
    job, _ = _run(controller)

    controller.mark_result_read(job.job_id)

    assert controller.evict_expired() == [job.job_id]
    assert controller.snapshot(job.job_id) is None


def test_resolution_error_is_not_retried(make_controller):
    resolver = FakeResolver(error=ResolutionError("No audio URL found for this episode"))
    controller = make_controller(resolver=resolver)

    job, _ = _run(controller, JobRequest(episode_title="x", podcast_name="Show"))

    assert job.error == "No audio URL found for this episode"
    assert resolver.lookups == ["Show"]


def test_segment_index_gap_fails_the_job(make_controller, fake_media, scratch_dir):
    fake_media.duration = 1200
    transcriber = FakeTranscriber(relabel={1: 2})
    controller = make_controller(
        audio_store=FakeAudioStore(scratch_dir, size=2048), transcriber=transcriber
    )
    controller.segmenter.max_file_size_mb = 1024 / (1024 * 1024)

    job, snapshot = _run(controller)

    assert transcriber.calls == [0, 1]
    assert job.state == JobState.FAILED
    assert "missing [1]" in job.error
    assert snapshot["error"]["message"] == job.error
    assert snapshot["merge"]["percentage"] == 0
    assert os.listdir(scratch_dir) == []


def test_broken_webhook_url_does_not_fail_a_finished_job(make_controller, fake_media):
    controller = make_controller(
        summarizer=FakeSummarizer(summary="### TL;DR\n- fish"),
        notifier=WebhookNotifier(url="https://hooks.example.com/x\ty"),
    )

    job, snapshot = _run(controller)

    assert job.state == JobState.COMPLETE
    assert job.result.summary == "### TL;DR\n- fish"
    assert snapshot["summary"]["percentage"] == 100


def test_broken_webhook_url_does_not_break_failure_reporting(make_controller, scratch_dir):
    controller = make_controller(
        audio_store=FakeAudioStore(scratch_dir, error=AcquisitionError("Audio source returned no content")),
        notifier=WebhookNotifier(url="https://hooks.example.com/x\ty"),
    )

    job, snapshot = _run(controller)

    assert job.state == JobState.FAILED
    assert job.error == "Audio source returned no content"
    assert snapshot["complete"] is True
