import asyncio
import json

import httpx

from src.notifications.webhook import WebhookNotifier, summary_body

HOOK = "https://hooks.example.com/notify"


def _notifier(handler, url=HOOK):
    return WebhookNotifier(url=url, transport=httpx.MockTransport(handler))


def test_send_posts_markdown_payload():
    requests = []

    def handler(request):
        requests.append(request)
        return httpx.Response(200)

    delivered = asyncio.run(_notifier(handler).send("Summary: Episode 12", "### TL;DR"))

    assert delivered is True
    assert len(requests) == 1
    assert requests[0].method == "POST"
    assert str(requests[0].url) == HOOK
    assert json.loads(requests[0].content) == {
        "subject": "Summary: Episode 12",
        "body": "### TL;DR",
        "format": "markdown",
    }


def test_error_status_is_reported_not_raised():
    notifier = _notifier(lambda request: httpx.Response(503))
    assert asyncio.run(notifier.send("subject", "body")) is False


def test_unconfigured_url_skips_without_a_request():
    requests = []
    notifier = _notifier(lambda request: requests.append(request), url="")

    assert notifier.configured is False
    assert asyncio.run(notifier.send("subject", "body")) is False
    assert requests == []


def test_trailing_line_ending_in_url_is_ignored():
    requests = []

    def handler(request):
        requests.append(request)
        return httpx.Response(204)

    notifier = _notifier(handler, url=HOOK + "\r\n")

    assert notifier.url == HOOK
    assert asyncio.run(notifier.send("subject", "body")) is True
    assert str(requests[0].url) == HOOK


def test_malformed_url_is_reported_not_raised():
    requests = []
    notifier = _notifier(lambda request: requests.append(request), url=HOOK + "\tx")

    assert asyncio.run(notifier.send("subject", "body")) is False
    assert requests == []


def test_summary_body_quotes_the_transcript():
    body = summary_body("  ### TL;DR\n- fish \n", "line one\nline two")
    assert body == (
        "### TL;DR\n- fish\n\n---\n\n### Full Transcript\n\n"
        "> line one\n> line two"
    )
