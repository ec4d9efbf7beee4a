from middleware.rate_limiter import limiter, get_user_id
from core.config import settings
from services.token_service import TokenService
from starlette.requests import Request


def _request(headers: dict) -> Request:
    return Request({
        "type": "http",
        "method": "GET",
        "path": "/orders",
        "headers": [(k.lower().encode(), v.encode()) for k, v in headers.items()],
        "client": ("10.0.0.1", 1234),
    })


def test_rate_limiter_disabled_in_testing():
    """Verify rate limiter is disabled during tests."""
    assert settings.ENV == "testing"
    assert limiter.enabled is False


def test_key_is_user_id_for_valid_token():
    token = TokenService.create_access_token(user_id=42, role="customer")
    assert get_user_id(_request({"Authorization": f"Bearer {token}"})) == "user:42"


def test_key_falls_back_to_ip():
    assert get_user_id(_request({})) == "10.0.0.1"
    assert get_user_id(_request({"Authorization": "Bearer garbage"})) == "10.0.0.1"


async def test_can_make_multiple_requests_in_tests(client, customer, products, auth_headers):
    """Verify rate limiting doesn't interfere with tests."""
    for _ in range(35):
        response = await client.post("/orders", headers=auth_headers(customer), json={
            "userId": customer.id,
            "items": [{"productId": products[0].id, "quantity": 1}],
            "paymentMethod": "cash"
        })
        assert response.status_code in (201, 400)
