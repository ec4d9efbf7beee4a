from utils.logger import sanitize_log_data


def test_secret_redaction():
    data = {"otp": "482913", "api_key": "sk_live_abcdef"}
    sanitized = sanitize_log_data(data)

    assert sanitized["otp"] == "***REDACTED***"
    assert sanitized["api_key"] == "***REDACTED***"


def test_token_partial_redaction():
    data = {"access_token": "eyJhbGciOiJIUzI1NiIsInR5cCI6IkpXVCJ9.long_token_here"}
    sanitized = sanitize_log_data(data)

    assert len(sanitized["access_token"]) == 11
    assert sanitized["access_token"].startswith(data["access_token"][:8])
    assert sanitized["access_token"].endswith("...")
    assert "long_token_here" not in sanitized["access_token"]


def test_personal_data_keeps_tail():
    data = {"phone": "+919812345678", "address": "12 MG Road, Bengaluru 560001", "email": "a@b"}
    sanitized = sanitize_log_data(data)

    assert sanitized["phone"] == "***5678"
    assert sanitized["address"] == "***0001"
    assert sanitized["email"] == "***"


def test_nested_dict_sanitization():
    data = {
        "customer": {
            "phone": "+919812345678",
            "token": "abcdefghijklmnop"
        }
    }
    sanitized = sanitize_log_data(data)

    assert sanitized["customer"]["phone"] == "***5678"
    assert sanitized["customer"]["token"] == "abcdefgh..."
    assert data["customer"]["phone"] == "+919812345678"


def test_non_sensitive_data_unchanged():
    data = {"order_id": 123, "status": "packed", "role": "admin"}
    sanitized = sanitize_log_data(data)

    assert sanitized == data
