"""
Filename policy and request parsing tests

Run: cd api && python tests/test_filenames.py
"""

import base64
import os
import sys

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from integrations.core.errors import ConfigurationError
from integrations.core.filenames import append_timestamp, resolve_filename, unique_filename
from integrations.core.types import ActionRequest, ActionType, sanitize_filename

T = 1700000000123


def clock():
    return T


def test_unique_filename():
    assert unique_filename("report.csv", clock) == f"report_{T}.csv"
    assert unique_filename("report", clock) == f"report_{T}"
    # Greedy stem: only the last extension moves
    assert unique_filename("q1.sales.csv", clock) == f"q1.sales_{T}.csv"

    print("✅ unique_filename: PASSED")


def test_append_timestamp():
    assert append_timestamp("daily", clock) == f"daily{T}"
    print("✅ append_timestamp: PASSED")


def test_resolve_filename():
    assert resolve_filename("report", "csv", clock=clock) == "report.csv"
    assert resolve_filename("report", "csv", overwrite=False, clock=clock) == f"report_{T}.csv"
    assert resolve_filename("report", overwrite=False, clock=clock) == f"report_{T}"

    print("✅ resolve_filename: PASSED")


def test_sanitize_filename():
    assert sanitize_filename('a/b:c*?"<>|.csv') == "abc.csv"
    assert len(sanitize_filename("x" * 500)) == 200
    print("✅ sanitize_filename: PASSED")


def test_request_from_payload():
    body = {
        "type": "query",
        "data": {"state_url": "https://caller.example/state", "region": "us-east-1", "empty": None},
        "form_params": {"bucket": "exports"},
        "attachment": {
            "data": base64.b64encode(b"a,b\n1,2\n").decode(),
            "mimetype": "text/csv",
            "fileExtension": "csv",
        },
        "scheduled_plan": {"title": "Weekly Sales"},
        "webhook_id": "wh-1",
        "caller_version": "7.2.0",
    }
    request = ActionRequest.from_payload("amazon_s3", body)

    assert request.type == ActionType.QUERY
    assert request.state_url == "https://caller.example/state"
    assert "empty" not in request.params
    assert request.form_params == {"bucket": "exports"}
    assert request.payload.data == b"a,b\n1,2\n"
    assert not request.payload.is_streaming
    assert request.suggested_filename() == "Weekly Sales.csv"
    assert request.webhook_id == "wh-1"

    print("✅ request_from_payload: PASSED")


def test_request_plain_attachment_and_filename():
    request = ActionRequest.from_payload("dropbox", {
        "attachment": {"data": "hello", "encoding": "utf-8", "filename": "notes/today.txt"},
    })
    assert request.payload.data == b"hello"
    assert request.suggested_filename() == "notestoday.txt"

    print("✅ request_plain_attachment_and_filename: PASSED")


def test_request_rejects_malformed():
    for body in ([], {"type": "spreadsheet"}, {"attachment": {"data": "***not base64***"}}):
        try:
            ActionRequest.from_payload("dropbox", body)
            assert False, f"{body!r} should be rejected"
        except ConfigurationError:
            pass

    print("✅ request_rejects_malformed: PASSED")


def test_state_json_parsing():
    ok = ActionRequest.from_payload("dropbox", {"data": {"state_json": '{"access_token": "t"}'}})
    assert ok.parse_state_json() == {"access_token": "t"}

    for raw in ("reset", "{not json", "[1, 2]", ""):
        request = ActionRequest.from_payload("dropbox", {"data": {"state_json": raw}})
        assert request.parse_state_json() is None, f"{raw!r} should parse as absent state"

    print("✅ state_json_parsing: PASSED")


if __name__ == "__main__":
    test_unique_filename()
    test_append_timestamp()
    test_resolve_filename()
    test_sanitize_filename()
    test_request_from_payload()
    test_request_plain_attachment_and_filename()
    test_request_rejects_malformed()
    test_state_json_parsing()
    print("\n✅ All filename tests passed")
