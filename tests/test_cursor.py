import pytest

from dealbot.utils.cursor import MAX_CALLBACK_BYTES, InvalidCursor, decode_cursor, encode_cursor


@pytest.fixture(autouse=True)
def cursor_secret(monkeypatch):
    monkeypatch.setenv("CURSOR_SECRET", "test-secret")


def test_cursor_carries_only_the_offset():
    token = encode_cursor(30)
    assert token.startswith("digest:")
    assert len(token.encode("utf-8")) <= MAX_CALLBACK_BYTES
    assert decode_cursor(token) == 30


def test_large_offsets_still_fit_callback_limit():
    assert decode_cursor(encode_cursor(10_000_000)) == 10_000_000


def test_tampered_cursor_is_rejected(monkeypatch):
    token = encode_cursor(10)
    _, signature = token.rsplit(".", 1)
    forged_payload, _ = encode_cursor(20).rsplit(".", 1)
    with pytest.raises(InvalidCursor):
        decode_cursor(f"{forged_payload}.{signature}")
    monkeypatch.setenv("CURSOR_SECRET", "other-secret")
    with pytest.raises(InvalidCursor):
        decode_cursor(token)


def test_plain_offsets_and_foreign_callbacks_are_rejected():
    with pytest.raises(InvalidCursor):
        decode_cursor("digest:10")
    with pytest.raises(InvalidCursor):
        decode_cursor("favorite:500")


def test_negative_offset_cannot_be_encoded():
    with pytest.raises(ValueError):
        encode_cursor(-1)
