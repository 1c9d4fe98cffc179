import json

import httpx
import pytest

from willtank.services import email_service, email_templates


@pytest.fixture
def resend(monkeypatch):
    """Route Resend calls to a MockTransport; returns the captured requests."""
    captured: list[httpx.Request] = []
    state = {"response": httpx.Response(200, json={"id": "re_123"})}

    def handler(request: httpx.Request) -> httpx.Response:
        captured.append(request)
        response = state["response"]
        if isinstance(response, Exception):
            raise response
        return response

    real_client = httpx.AsyncClient

    def client_factory(**kwargs):
        return real_client(transport=httpx.MockTransport(handler), **kwargs)

    monkeypatch.setattr(email_service.settings, "RESEND_API_KEY", "re_test_key")
    monkeypatch.setattr(email_service.httpx, "AsyncClient", client_factory)
    return captured, state


async def test_dry_run_without_api_key(monkeypatch):
    monkeypatch.setattr(email_service.settings, "RESEND_API_KEY", "")

    result = await email_service.send_email(
        to_email="to@example.com", subject="Hi", html="<p>Hi</p>"
    )

    assert result.success is True
    assert result.message_id is None
    assert email_service.is_configured() is False


async def test_send_email_posts_to_resend(resend):
    captured, _ = resend

    assert email_service.is_configured() is True

    result = await email_service.send_email(
        to_email="to@example.com",
        subject="Hello",
        html="<p>Hello <strong>world</strong></p>",
        tags={"type": "executor_pin"},
        high_priority=True,
        idempotency_key="pin:abc",
    )

    assert result.success is True
    assert result.message_id == "re_123"
    [request] = captured
    assert str(request.url) == email_service.RESEND_SEND_URL
    assert request.headers["Authorization"] == "Bearer re_test_key"
    assert request.headers["Idempotency-Key"] == "pin:abc"
    body = json.loads(request.content)
    assert body["to"] == ["to@example.com"]
    assert body["text"] == "Hello world"
    assert body["tags"] == [{"name": "type", "value": "executor_pin"}]
    assert body["headers"]["X-Priority"] == "1"


async def test_send_email_api_error(resend):
    captured, state = resend
    state["response"] = httpx.Response(422, json={"message": "Invalid `to` field"})

    result = await email_service.send_email(to_email="bad", subject="Hi", html="<p>Hi</p>")

    assert result.success is False
    assert result.error == "Resend API error: 422 (Invalid `to` field)"
    assert len(captured) == 1


async def test_send_email_transport_error_is_not_retried(resend):
    captured, state = resend
    state["response"] = httpx.ConnectError("connection refused")

    result = await email_service.send_email(to_email="to@example.com", subject="Hi", html="<p>Hi</p>")

    assert result.success is False
    assert result.error == "Email transport error: ConnectError"
    assert len(captured) == 1


def test_html_to_text():
    text = email_service.html_to_text("<p>Line one</p><p>Line &amp; two<br>three</p>")
    assert text == "Line one\nLine & two\nthree"


def test_templates_escape_values():
    subject, html = email_templates.contact_pin(
        contact_name="<script>x</script>",
        deceased_name="Alex",
        executor_name="Sam",
        pin="123456",
    )
    assert "<script>" not in html
    assert "123456" in html
    assert "Alex" in subject


def test_unlock_url(monkeypatch):
    monkeypatch.setattr(email_templates.settings, "FRONTEND_URL", "https://app.willtank.com/")
    assert email_templates.unlock_url("tok") == "https://app.willtank.com/will-unlock/tok"
