from tablekeeper.backend.security import client_password_hash, generate_token, hash_secret, verify_secret


def test_hash_secret_is_deterministic_for_same_inputs() -> None:
    hashed_first = hash_secret("player-token", "local-dev-salt")
    hashed_second = hash_secret("player-token", "local-dev-salt")

    assert hashed_first == hashed_second
    assert len(hashed_first) == 64
    assert hash_secret("player-token", "other-salt") != hashed_first


def test_verify_secret_accepts_valid_and_rejects_invalid_value() -> None:
    salt = "local-dev-salt"
    stored_hash = hash_secret("host-token", salt)

    assert verify_secret("host-token", stored_hash, salt) is True
    assert verify_secret("wrong-token", stored_hash, salt) is False


def test_generate_token_returns_non_empty_random_value() -> None:
    first = generate_token()
    second = generate_token()

    assert first
    assert second
    assert first != second


def test_client_password_hash_binds_username() -> None:
    assert client_password_hash("aria", "secret") != client_password_hash("brom", "secret")
    assert len(client_password_hash("aria", "secret")) == 64
