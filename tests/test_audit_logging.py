import json


def _events_from_caplog(caplog) -> list[dict]:
    events: list[dict] = []
    for record in caplog.records:
        if record.name != "uploads.audit":
            continue
        try:
            events.append(json.loads(record.message))
        except json.JSONDecodeError:
            continue
    return events


def test_audit_logs_for_chunk_complete_cancel_and_delete(client, caplog) -> None:
    caplog.set_level("INFO", logger="uploads.audit")
    headers = {"X-Request-ID": "req-audit"}

    chunk = client.post(
        "/files/upload-chunk",
        data={"upload_id": "audit-1", "chunk_index": "0"},
        files={"chunk": ("blob", b"abcd", "application/octet-stream")},
        headers=headers,
    )
    assert chunk.status_code == 200

    complete = client.post(
        "/files/complete-upload",
        data={"upload_id": "audit-1", "file_name": "audit.bin", "total_chunks": "1"},
        headers=headers,
    )
    assert complete.status_code == 200

    cancel = client.delete("/files/audit-2/cancel-upload", headers=headers)
    assert cancel.status_code == 200

    delete = client.delete("/files", params={"url": complete.json()["url"]}, headers=headers)
    assert delete.status_code == 200

    events = _events_from_caplog(caplog)
    actions = [event.get("action") for event in events]
    assert "chunk_upload" in actions
    assert "upload_complete" in actions
    assert "upload_cancel" in actions
    assert "file_delete" in actions
    complete_event = next(event for event in events if event.get("action") == "upload_complete")
    assert complete_event["request_id"] == "req-audit"
    assert complete_event["upload_id"] == "audit-1"
    assert complete_event["object_key"] == "audit.bin"
    assert "trace_id" in complete_event
    cancel_event = next(event for event in events if event.get("action") == "upload_cancel")
    assert cancel_event["had_scratch_state"] is False
