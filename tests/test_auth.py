from urllib.parse import parse_qs, urlparse

from passlib.hash import django_pbkdf2_sha256

from src.auth.utils import pwd_context
from src.models import Job, AuditLog
from src.worker.schemas import JobType

PASSWORD = "password123"


def link_token(db, job_type):
    job = db.query(Job).filter(Job.job_type == job_type.value).order_by(Job.created_at.desc()).first()
    return parse_qs(urlparse(job.payload["link"]).query)["token"][0]


class TestSignIn:
    """POST /api/auth/signin"""

    def test_returns_profile_and_tokens(self, client, student):
        response = client.post("/api/auth/signin", json={"email": "U2021001@giki.edu.pk", "password": PASSWORD})
        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["data"]["email"] == "u2021001@giki.edu.pk"
        assert body["data"]["auth"]["access_token"]
        assert body["data"]["auth"]["refresh_token"]
        assert body["meta"]["request_id"]

    def test_wrong_password(self, client, db, student):
        response = client.post("/api/auth/signin", json={"email": student.email, "password": "nope-nope"})
        assert response.status_code == 401
        assert response.json()["error"]["code"] == "INVALID_PASSWORD"
        failures = db.query(AuditLog).filter(AuditLog.action == "LOGIN_FAILURE").count()
        assert failures == 1

    def test_unknown_email(self, client):
        response = client.post("/api/auth/signin", json={"email": "ghost@giki.edu.pk", "password": PASSWORD})
        assert response.status_code == 404
        assert response.json()["error"]["code"] == "USER_NOT_FOUND"

    def test_legacy_hash_is_upgraded(self, client, db, student):
        student.password_hash = django_pbkdf2_sha256.hash(PASSWORD)
        student.password_algo = "django_pbkdf2_sha256"
        db.commit()

        response = client.post("/api/auth/signin", json={"email": student.email, "password": PASSWORD})
        assert response.status_code == 200
        db.expire_all()
        assert pwd_context.identify(student.password_hash) == "bcrypt"
        assert student.password_algo == "bcrypt"

        again = client.post("/api/auth/signin", json={"email": student.email, "password": PASSWORD})
        assert again.status_code == 200

    def test_pending_employee(self, client, make_user):
        make_user(email="staff@giki.edu.pk", user_type="EMPLOYEE", is_active=False)
        response = client.post("/api/auth/signin", json={"email": "staff@giki.edu.pk", "password": PASSWORD})
        assert response.status_code == 403
        assert response.json()["error"]["code"] == "USER_PENDING_APPROVAL"

    def test_unverified_account(self, client, make_user):
        make_user(email="u2021999@giki.edu.pk", is_verified=False)
        response = client.post("/api/auth/signin", json={"email": "u2021999@giki.edu.pk", "password": PASSWORD})
        assert response.status_code == 403
        assert response.json()["error"]["code"] == "USER_NOT_VERIFIED"


class TestCurrentUser:
    """GET /api/auth/me"""

    def test_requires_token(self, client):
        response = client.get("/api/auth/me")
        assert response.status_code == 401
        assert response.json()["error"]["code"] == "UNAUTHORIZED"

    def test_rejects_garbage_token(self, client):
        response = client.get("/api/auth/me", headers={"Authorization": "Bearer not-a-jwt"})
        assert response.status_code == 401
        assert response.json()["error"]["code"] == "UNAUTHORIZED"

    def test_returns_profile(self, client, student, auth_headers):
        response = client.get("/api/auth/me", headers=auth_headers(student))
        assert response.status_code == 200
        assert response.json()["data"]["name"] == "Ali Khan"
        assert response.json()["data"]["auth"] is None


class TestRefresh:
    """POST /api/auth/refresh"""

    def sign_in(self, client, user):
        response = client.post("/api/auth/signin", json={"email": user.email, "password": PASSWORD})
        return response.json()["data"]["auth"]

    def test_rotates_tokens(self, client, student):
        tokens = self.sign_in(client, student)
        response = client.post("/api/auth/refresh", json={"refresh_token": tokens["refresh_token"]})
        assert response.status_code == 200
        assert response.json()["data"]["refresh_token"] != tokens["refresh_token"]

    def test_reuse_revokes_family(self, client, student):
        tokens = self.sign_in(client, student)
        rotated = client.post("/api/auth/refresh", json={"refresh_token": tokens["refresh_token"]}).json()["data"]

        replay = client.post("/api/auth/refresh", json={"refresh_token": tokens["refresh_token"]})
        assert replay.status_code == 401
        assert replay.json()["error"]["code"] == "INVALID_REFRESH_TOKEN"

        # the token issued by the rotation was revoked with the rest of the family
        response = client.post("/api/auth/refresh", json={"refresh_token": rotated["refresh_token"]})
        assert response.status_code == 401

    def test_unknown_token(self, client):
        response = client.post("/api/auth/refresh", json={"refresh_token": "f" * 64})
        assert response.status_code == 401
        assert response.json()["error"]["code"] == "INVALID_REFRESH_TOKEN"

    def test_sign_out_revokes(self, client, student, auth_headers):
        tokens = self.sign_in(client, student)
        response = client.post(
            "/api/auth/signout", json={"refresh_token": tokens["refresh_token"]}, headers=auth_headers(student)
        )
        assert response.status_code == 204
        response = client.post("/api/auth/refresh", json={"refresh_token": tokens["refresh_token"]})
        assert response.status_code == 401


class TestEmailVerification:
    """GET /api/auth/verify"""

    def test_activates_student(self, client, db):
        response = client.post("/api/auth/register", json={
            "name": "Sara Ahmed",
            "email": "u2022555@giki.edu.pk",
            "phone_number": "03111234567",
            "password": "secret-pass",
            "user_type": "student",
            "reg_id": "2022555",
        })
        assert response.status_code == 201

        token = link_token(db, JobType.SEND_STUDENT_VERIFY_EMAIL)
        response = client.get("/api/auth/verify", params={"token": token})
        assert response.status_code == 200
        assert response.json()["data"]["auth"]["access_token"]

        signin = client.post("/api/auth/signin", json={"email": "u2022555@giki.edu.pk", "password": "secret-pass"})
        assert signin.status_code == 200

    def test_token_is_single_use(self, client, db):
        client.post("/api/auth/register", json={
            "name": "Sara Ahmed",
            "email": "u2022555@giki.edu.pk",
            "phone_number": "03111234567",
            "password": "secret-pass",
            "user_type": "student",
            "reg_id": "2022555",
        })
        token = link_token(db, JobType.SEND_STUDENT_VERIFY_EMAIL)
        assert client.get("/api/auth/verify", params={"token": token}).status_code == 200

        response = client.get("/api/auth/verify", params={"token": token})
        assert response.status_code == 400
        assert response.json()["error"]["code"] == "INVALID_VERIFICATION_TOKEN"


class TestPasswordReset:
    """POST /api/auth/forgot-password and /api/auth/reset-password"""

    def test_unknown_email_still_succeeds(self, client, db):
        response = client.post("/api/auth/forgot-password", json={"email": "ghost@giki.edu.pk"})
        assert response.status_code == 200
        assert db.query(Job).count() == 0

    def test_reset_flow(self, client, db, student):
        response = client.post("/api/auth/forgot-password", json={"email": student.email})
        assert response.status_code == 200

        token = link_token(db, JobType.SEND_PASSWORD_RESET_EMAIL)
        response = client.post("/api/auth/reset-password", json={"token": token, "new_password": "brand-new-pass"})
        assert response.status_code == 200

        old = client.post("/api/auth/signin", json={"email": student.email, "password": PASSWORD})
        assert old.status_code == 401
        new = client.post("/api/auth/signin", json={"email": student.email, "password": "brand-new-pass"})
        assert new.status_code == 200

    def test_short_password_rejected(self, client):
        response = client.post("/api/auth/reset-password", json={"token": "abc", "new_password": "short"})
        assert response.status_code == 422
        assert response.json()["error"]["code"] == "UNPROCESSABLE_ENTITY"
