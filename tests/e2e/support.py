"""Shared constants and helpers for the end-to-end tests."""
import json

USER_ID = "user-1"
PROJECT_ID = "project-1"


async def read_events(response):
    """Decode an NDJSON chat stream into event dicts."""
    body = await response.get_data(as_text=True)
    return [json.loads(line) for line in body.splitlines() if line.strip()]


def chat_body(text, **overrides):
    body = {
        "messages": [{"role": "user", "parts": [{"type": "text", "text": text}]}],
        "projectId": PROJECT_ID,
        "provider": "openai",
        "model": "gpt-4o",
    }
    body.update(overrides)
    return body
