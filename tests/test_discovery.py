from ccremote.web.discovery import SessionReport, parse_session_report


def test_hook_payload() -> None:
    report = parse_session_report(
        {"session_id": "0f3c-aa", "cwd": "/repo", "hook_event_name": "Stop", "branch": "main"}
    )
    assert report == SessionReport(session_id="0f3c-aa", working_directory="/repo", branch_label="main")


def test_hook_payload_missing_cwd() -> None:
    assert parse_session_report({"session_id": "x"}) is None
    assert parse_session_report("not a dict") is None


def test_embed_prefers_full_resume_id() -> None:
    embed = {
        "fields": [
            {"name": "📂 Directory", "value": "`/home/me/widget`"},
            {"name": "🆔 Session", "value": "`abc123def4...`"},
            {"name": "🌿 Branch", "value": "`feature/x`"},
            {"name": "📦 Project", "value": "`widget`"},
            {"name": "▶ Resume", "value": "```claude --resume abc123def456-7890```"},
        ]
    }
    report = parse_session_report(embed)

    assert report == SessionReport(
        session_id="abc123def456-7890",
        working_directory="/home/me/widget",
        branch_label="feature/x",
        project_label="widget",
    )


def test_embed_truncated_session_without_resume() -> None:
    report = parse_session_report(
        {"fields": [{"name": "Session", "value": "`abc123...`"}, {"name": "Directory", "value": "`/d`"}]}
    )
    assert report is not None
    assert report.session_id == "abc123"


def test_message_with_embeds_list() -> None:
    msg = {
        "embeds": [
            {"title": "no fields"},
            {"fields": [{"name": "Session", "value": "`s1`"}, {"name": "Directory", "value": "`/d`"}]},
        ]
    }
    assert parse_session_report(msg).session_id == "s1"


def test_embed_without_directory() -> None:
    assert parse_session_report({"fields": [{"name": "Session", "value": "`s1`"}]}) is None
