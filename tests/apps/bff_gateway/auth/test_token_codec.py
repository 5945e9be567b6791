from __future__ import annotations

import base64

import pytest

from apps.bff_gateway.auth import token_codec


def test_mask_is_randomized_but_unmasks_to_same_secret() -> None:
    secret = token_codec.generate_secret()

    first = token_codec.mask(secret)
    second = token_codec.mask(secret)

    assert first != second
    assert token_codec.unmask(first) == secret
    assert token_codec.unmask(second) == secret


def test_token_for_one_secret_never_matches_another() -> None:
    secret_a = token_codec.generate_secret()
    secret_b = token_codec.generate_secret()

    token = token_codec.mask(secret_a)

    assert token_codec.token_matches(token, secret_a) is True
    assert token_codec.token_matches(token, secret_b) is False


def test_wire_token_is_url_safe_without_padding() -> None:
    token = token_codec.mask(token_codec.generate_secret())

    assert "=" not in token
    assert "+" not in token
    assert "/" not in token
    assert len(token) == 86


def test_wire_token_differs_from_encoded_secret() -> None:
    secret = token_codec.generate_secret()

    assert token_codec.encode_secret(secret) not in token_codec.mask(secret)


def test_encode_decode_secret() -> None:
    secret = token_codec.generate_secret()

    encoded = token_codec.encode_secret(secret)

    assert token_codec.decode_secret(encoded) == secret


@pytest.mark.parametrize(
    "token",
    [
        None,
        "",
        "not base64!",
        "abc",
        base64.urlsafe_b64encode(b"x" * 32).decode().rstrip("="),
        base64.urlsafe_b64encode(b"x" * 65).decode().rstrip("="),
    ],
)
def test_unmask_rejects_malformed_tokens(token: str | None) -> None:
    assert token_codec.unmask(token) is None
    assert token_codec.token_matches(token, token_codec.generate_secret()) is False


def test_tampered_token_does_not_match() -> None:
    secret = token_codec.generate_secret()
    token = token_codec.mask(secret)
    replacement = "A" if token[50] != "A" else "B"
    tampered = token[:50] + replacement + token[51:]

    assert token_codec.token_matches(tampered, secret) is False


def test_secrets_match_is_exact() -> None:
    secret = token_codec.generate_secret()

    assert token_codec.secrets_match(secret, bytes(secret)) is True
    assert token_codec.secrets_match(secret, secret[:-1] + bytes([secret[-1] ^ 1])) is False
