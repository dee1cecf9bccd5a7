import pytest

from bugsync.services.signature import SignatureCodec, build_payload, canonical_json, check_expired, generate_signature

from conftest import FakeClock, SECRET, START_MS


@pytest.fixture
def codec():
    return SignatureCodec(SECRET, window_ms=300_000, clock=FakeClock(START_MS))


def test_canonical_json_is_compact_and_keeps_key_order():
    assert canonical_json({"b": 1, "a": [1, 2]}) == '{"b":1,"a":[1,2]}'
    assert canonical_json(None) == "{}"
    assert canonical_json("") == "{}"
    assert canonical_json({"title": "Fehlerbericht äöü"}) == '{"title":"Fehlerbericht äöü"}'


def test_payload_uppercases_method_and_keeps_path(codec):
    ctx = codec.context("post", "/api/Bugs", "123", {"a": 1})
    assert build_payload(ctx) == 'POST:/api/Bugs:123:{"a":1}'


def test_sign_is_deterministic_hex(codec):
    ctx = codec.context("POST", "/bugs/getbugs", str(START_MS), {"page": 1})
    signature = codec.sign(ctx)
    assert signature == codec.sign(ctx)
    assert len(signature) == 64
    int(signature, 16)


def test_verify_accepts_own_signature(codec):
    ctx = codec.context("POST", "/webhook", str(START_MS), {"eventType": "bug.created"})
    assert codec.verify(codec.sign(ctx), ctx) is True


@pytest.mark.parametrize("field,value", [
    ("method", "PUT"),
    ("path", "/webhook/other"),
    ("timestamp", str(START_MS + 1)),
    ("body", {"eventType": "bug.updated"}),
    ("secret", "other-secret"),
])
def test_verify_rejects_when_one_field_changes(codec, field, value):
    ctx = codec.context("POST", "/webhook", str(START_MS), {"eventType": "bug.created"})
    signature = codec.sign(ctx)
    tampered = ctx.model_copy(update={field: value})
    assert codec.verify(signature, tampered) is False


def test_verify_rejects_missing_signature(codec):
    ctx = codec.context("GET", "/bugs", str(START_MS))
    assert codec.verify(None, ctx) is False
    assert codec.verify("", ctx) is False


def test_expiry_boundary_is_symmetric(codec):
    assert codec.is_expired(START_MS) is False
    assert codec.is_expired(START_MS - 300_000) is False
    assert codec.is_expired(START_MS + 300_000) is False
    assert codec.is_expired(START_MS - 300_001) is True
    assert codec.is_expired(START_MS + 300_001) is True
    assert codec.is_expired(str(START_MS - 300_000)) is False


@pytest.mark.parametrize("timestamp", [None, "", "abc", "12.5", True])
def test_missing_or_non_numeric_timestamp_is_expired(codec, timestamp):
    assert codec.is_expired(timestamp) is True


@pytest.mark.parametrize("timestamp", [f"{START_MS:_}", f" {START_MS}", f"{START_MS}\n", f"+{START_MS}"])
def test_only_plain_digit_timestamps_are_accepted(codec, timestamp):
    assert codec.is_expired(timestamp) is True


def test_module_helpers_match_codec():
    ctx = SignatureCodec(SECRET).context("GET", "/bugs/1", "42", None)
    assert generate_signature("GET", "/bugs/1", "42", None, SECRET) == SignatureCodec(SECRET).sign(ctx)
    assert check_expired(None) is True
    assert check_expired("not-a-number") is True
