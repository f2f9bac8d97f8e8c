from __future__ import annotations

import json

from push_pipeline.jobs.models import NotificationJob
from push_pipeline.notifications.payload import build_message, stringify_data
from push_pipeline.utils.masking import mask_sample, mask_token


def test_mask_token_shows_prefix_and_suffix_only():
  token = "dGVzdC10b2tlbi1mb3ItZmNtLWRldmljZQ"
  masked = mask_token(token)
  assert masked == "dGVzdC...dmljZQ"
  assert token not in masked


def test_mask_token_handles_short_and_invalid_values():
  assert mask_token("abc") == "***"
  assert mask_token("x" * 12) == "*" * 12
  assert mask_token("") == "<invalid>"
  assert mask_token(None) == "<invalid>"
  assert mask_token(12345) == "<invalid>"


def test_mask_sample_limits_output():
  tokens = [f"{index:02d}" + "z" * 30 for index in range(5)]
  sample = mask_sample(tokens, limit=2)
  assert sample.count("...") == 2
  assert "02" not in sample


def test_stringify_data_keeps_strings_and_encodes_the_rest():
  payload = stringify_data({"url": "/lessons/1", "count": 3, "flags": {"a": True}, "ids": [1, 2], "missing": None})
  assert payload["url"] == "/lessons/1"
  assert payload["count"] == "3"
  assert json.loads(payload["flags"]) == {"a": True}
  assert payload["ids"] == "[1, 2]"
  assert payload["missing"] == "null"


def test_build_message_preserves_title_and_body():
  job = NotificationJob(recipient_id="user-1", title="", body="Your lesson is ready", data={"lesson_id": 7})
  message = build_message(job)
  assert message.title == ""
  assert message.body == "Your lesson is ready"
  assert message.data == {"lesson_id": "7"}
