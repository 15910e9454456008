from conftest import PASSWORD, make_user
from library_system.repositories.user_repo import UserRepo

REGISTRATION = {
    "first_name": "Nora",
    "last_name": "Reader",
    "email": "Nora@Example.com",
    "phone": "+905551112233",
    "password": "hunter22",
}


def login(client, who, password=PASSWORD):
    return client.post("/api/auth/login", json={"email_or_phone": who, "password": password})


def test_register_creates_unverified_member(client, outbox):
    res = client.post("/api/auth/register", json={**REGISTRATION, "role": "admin"})
    assert res.status_code == 201
    assert res.get_json()["data"]["email"] == "nora@example.com"

    user = UserRepo.get_by_email("nora@example.com")
    assert user.role == "member"
    assert user.membership_number.startswith("LIB2024")
    assert not user.is_email_verified and not user.is_phone_verified
    assert len(user.phone_verification_token) == 6

    kinds = sorted((channel, to) for channel, to, *_ in outbox)
    assert kinds == [("email", "nora@example.com"), ("sms", "+905551112233")]


def test_register_duplicate_email(client):
    client.post("/api/auth/register", json=REGISTRATION)
    res = client.post("/api/auth/register", json={**REGISTRATION, "phone": "+905559998877"})
    assert res.status_code == 409
    assert res.get_json()["message"] == "Email already registered"


def test_register_missing_fields(client):
    res = client.post("/api/auth/register", json={"email": "x@example.com"})
    assert res.status_code == 400
    assert "first_name is required" in res.get_json()["errors"]


def test_unverified_user_cannot_login(client):
    client.post("/api/auth/register", json=REGISTRATION)
    res = login(client, "nora@example.com", "hunter22")
    assert res.status_code == 403


def test_verify_email_then_login(client):
    client.post("/api/auth/register", json=REGISTRATION)
    token = UserRepo.get_by_email("nora@example.com").email_verification_token

    res = client.post("/api/auth/verify-email", json={"token": token})
    assert res.status_code == 200

    res = login(client, "NORA@example.com", "hunter22")
    assert res.status_code == 200
    data = res.get_json()["data"]
    assert data["token"] and data["refresh_token"]
    assert data["user"]["is_email_verified"] is True


def test_verify_phone_sends_welcome(client, outbox):
    client.post("/api/auth/register", json=REGISTRATION)
    otp = UserRepo.get_by_email("nora@example.com").phone_verification_token
    outbox.clear()

    res = client.post("/api/auth/verify-phone", json={"phone": REGISTRATION["phone"], "otp": otp})
    assert res.status_code == 200
    assert UserRepo.get_by_phone(REGISTRATION["phone"]).is_phone_verified
    assert outbox and outbox[0][0] == "sms" and "Welcome Nora" in outbox[0][3]


def test_expired_otp_is_rejected(client, clock):
    client.post("/api/auth/register", json=REGISTRATION)
    otp = UserRepo.get_by_email("nora@example.com").phone_verification_token
    clock.advance(minutes=11)

    res = client.post("/api/auth/verify-phone", json={"phone": REGISTRATION["phone"], "otp": otp})
    assert res.status_code == 400
    assert res.get_json()["message"] == "Invalid or expired OTP"


def test_resend_verification(client):
    client.post("/api/auth/register", json=REGISTRATION)
    old = UserRepo.get_by_email("nora@example.com").email_verification_token

    res = client.post("/api/auth/resend-email-verification", json={"email": REGISTRATION["email"]})
    assert res.status_code == 200
    assert UserRepo.get_by_email("nora@example.com").email_verification_token != old

    res = client.post("/api/auth/resend-phone-verification", json={"phone": "+905550000000"})
    assert res.status_code == 404


def test_login_with_phone(client, member):
    assert login(client, member.phone).status_code == 200


def test_wrong_password_locks_account(app, client, clock, member):
    for _ in range(app.config["MAX_LOGIN_ATTEMPTS"]):
        assert login(client, member.email, "wrong-pass").status_code == 401

    res = login(client, member.email)
    assert res.status_code == 423

    clock.advance(minutes=app.config["LOCK_DURATION_MINUTES"] + 1)
    assert login(client, member.email).status_code == 200
    assert UserRepo.get_by_id(member.id).login_attempts == 0


def test_inactive_user_cannot_login(client):
    user = make_user(is_active=False)
    assert login(client, user.email).status_code == 401


def test_me_refresh_and_logout(client, member):
    tokens = login(client, member.email).get_json()["data"]
    headers = {"Authorization": f"Bearer {tokens['token']}"}

    res = client.get("/api/auth/me", headers=headers)
    assert res.status_code == 200
    assert res.get_json()["data"]["email"] == member.email

    res = client.post("/api/auth/refresh", headers={"Authorization": f"Bearer {tokens['refresh_token']}"})
    assert res.status_code == 200
    assert res.get_json()["data"]["token"]

    assert client.post("/api/auth/logout", headers=headers).status_code == 200
    res = client.get("/api/auth/me", headers=headers)
    assert res.status_code == 401
    assert res.get_json()["message"] == "Token has been revoked"


def test_password_reset_flow(client, clock, outbox, member):
    res = client.post("/api/auth/forgot-password", json={"email": member.email})
    assert res.status_code == 200
    assert outbox[-1][0] == "email" and "reset-password?token=" in outbox[-1][3]

    token = UserRepo.get_by_id(member.id).password_reset_token
    res = client.post("/api/auth/reset-password", json={"token": token, "password": "brand-new"})
    assert res.status_code == 200
    assert login(client, member.email, "brand-new").status_code == 200

    # single use
    res = client.post("/api/auth/reset-password", json={"token": token, "password": "another1"})
    assert res.status_code == 400


def test_forgot_password_unknown_email_is_silent(client, outbox):
    res = client.post("/api/auth/forgot-password", json={"email": "ghost@example.com"})
    assert res.status_code == 200
    assert outbox == []


def test_reset_token_expires(client, clock, member):
    client.post("/api/auth/forgot-password", json={"email": member.email})
    token = UserRepo.get_by_id(member.id).password_reset_token
    clock.advance(hours=2)

    res = client.post("/api/auth/reset-password", json={"token": token, "password": "brand-new"})
    assert res.status_code == 400
