from structlog.testing import capture_logs

from sonar_bot.log import hash_user_id, log_conversation


def test_hash_user_id_is_stable_and_opaque():
    digest = hash_user_id("123456")
    assert digest == hash_user_id("123456")
    assert digest != hash_user_id("654321")
    assert digest.startswith("user_")
    assert "123456" not in digest


def test_log_conversation_respects_toggle():
    with capture_logs() as logs:
        log_conversation(False, "telegram", "42", "user", "hello")
    assert logs == []


def test_log_conversation_truncates_content():
    with capture_logs() as logs:
        log_conversation(True, "telegram", "42", "assistant", "x" * 600)

    [entry] = logs
    assert entry["event"] == "conversation"
    assert entry["user"] == hash_user_id("42")
    assert entry["content_length"] == 600
    assert entry["content_preview"] == "x" * 500 + "..."
