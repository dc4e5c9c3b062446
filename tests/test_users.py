from src.models import Job, User, AuditLog


def registration(**overrides):
    payload = {
        "name": "Sara Ahmed",
        "email": "u2022555@giki.edu.pk",
        "phone_number": "03111234567",
        "password": "secret-pass",
        "user_type": "student",
        "reg_id": "2022555",
    }
    payload.update(overrides)
    return payload


class TestRegister:
    """POST /api/auth/register"""

    def test_student_queues_verification_email(self, client, db):
        response = client.post("/api/auth/register", json=registration())
        assert response.status_code == 201
        assert response.json()["data"]["user_type"] == "STUDENT"

        user = db.query(User).filter(User.email == "u2022555@giki.edu.pk").one()
        assert user.is_active is False
        assert user.student_profile.batch_year == 2022
        assert db.query(Job).filter(Job.job_type == "SEND_STUDENT_VERIFY_EMAIL").count() == 1

    def test_employee_waits_for_approval(self, client, db):
        response = client.post("/api/auth/register", json=registration(
            email="hr.officer@giki.edu.pk", user_type="employee", reg_id=None, phone_number="03211234567"
        ))
        assert response.status_code == 201
        assert db.query(Job).filter(Job.job_type == "SEND_EMPLOYEE_WAIT_EMAIL").count() == 1

    def test_student_needs_campus_email(self, client):
        response = client.post("/api/auth/register", json=registration(email="sara@gmail.com"))
        assert response.status_code == 403
        assert response.json()["error"]["code"] == "EMAIL_RESTRICTED"

    def test_student_needs_reg_id(self, client):
        response = client.post("/api/auth/register", json=registration(reg_id=""))
        assert response.status_code == 400
        assert response.json()["error"]["code"] == "MISSING_REG_ID"

    def test_bad_reg_id(self, client):
        response = client.post("/api/auth/register", json=registration(reg_id="abc"))
        assert response.status_code == 400
        assert response.json()["error"]["code"] == "INVALID_REG_ID"

    def test_unknown_user_type(self, client):
        response = client.post("/api/auth/register", json=registration(user_type="alumni"))
        assert response.status_code == 400
        assert response.json()["error"]["code"] == "INVALID_USER_TYPE"

    def test_verified_account_exists(self, client, student):
        response = client.post("/api/auth/register", json=registration(email=student.email))
        assert response.status_code == 409
        assert response.json()["error"]["code"] == "USER_EXISTS"

    def test_duplicate_phone(self, client, student):
        response = client.post("/api/auth/register", json=registration(phone_number=student.phone_number))
        assert response.status_code == 409
        assert response.json()["error"]["code"] == "DUPLICATE_PHONE"

    def test_unverified_reregistration_resends(self, client, db):
        client.post("/api/auth/register", json=registration())
        response = client.post("/api/auth/register", json=registration(name="Sara A."))
        assert response.status_code == 201
        assert db.query(User).filter(User.email == "u2022555@giki.edu.pk").one().name == "Sara A."
        assert db.query(Job).filter(Job.job_type == "SEND_STUDENT_VERIFY_EMAIL").count() == 2


class TestAdminUsers:
    """/api/admin/users"""

    def test_requires_super_admin(self, client, student, auth_headers):
        response = client.get("/api/admin/users", headers=auth_headers(student))
        assert response.status_code == 403
        assert response.json()["error"]["code"] == "FORBIDDEN"

    def test_list_and_search(self, client, student, super_admin, auth_headers):
        response = client.get("/api/admin/users", params={"search": "ali"}, headers=auth_headers(super_admin))
        assert response.status_code == 200
        page = response.json()["data"]
        assert page["total_count"] == 1
        assert page["data"][0]["email"] == student.email

    def test_pending_filter(self, client, make_user, super_admin, auth_headers):
        make_user(email="staff@giki.edu.pk", user_type="EMPLOYEE", is_active=False)
        response = client.get(
            "/api/admin/users", params={"filter_status": "pending"}, headers=auth_headers(super_admin)
        )
        emails = [item["email"] for item in response.json()["data"]["data"]]
        assert emails == ["staff@giki.edu.pk"]

    def test_create_user_emails_password(self, client, db, super_admin, auth_headers):
        response = client.post("/api/admin/users", headers=auth_headers(super_admin), json={
            "name": "Transport Office",
            "email": "transport@giki.edu.pk",
            "user_type": "transport_admin",
        })
        assert response.status_code == 201
        assert response.json()["data"]["user_type"] == "TRANSPORT_ADMIN"
        assert response.json()["data"]["is_active"] is True
        job = db.query(Job).filter(Job.job_type == "SEND_ACCOUNT_CREATED_EMAIL").one()
        assert job.payload["password"]

    def test_approve_employee(self, client, db, make_user, super_admin, auth_headers):
        employee = make_user(email="staff@giki.edu.pk", user_type="EMPLOYEE", is_active=False, is_verified=False)
        response = client.post(f"/api/admin/users/{employee.id}/approve", headers=auth_headers(super_admin))
        assert response.status_code == 200
        assert response.json()["data"]["is_active"] is True

        again = client.post(f"/api/admin/users/{employee.id}/approve", headers=auth_headers(super_admin))
        assert again.status_code == 400
        assert again.json()["error"]["code"] == "ALREADY_VERIFIED"

    def test_approve_rejects_students(self, client, student, super_admin, auth_headers):
        response = client.post(f"/api/admin/users/{student.id}/approve", headers=auth_headers(super_admin))
        assert response.status_code == 400
        assert response.json()["error"]["code"] == "NOT_AN_EMPLOYEE"

    def test_reject_employee_removes_account(self, client, db, make_user, super_admin, auth_headers):
        employee = make_user(email="staff@giki.edu.pk", user_type="EMPLOYEE", is_active=False)
        employee_id = employee.id
        response = client.post(f"/api/admin/users/{employee_id}/reject", headers=auth_headers(super_admin))
        assert response.status_code == 204
        db.expire_all()
        assert db.query(User).filter(User.id == employee_id).first() is None

    def test_deactivate(self, client, db, student, super_admin, auth_headers):
        response = client.patch(
            f"/api/admin/users/{student.id}/status", json={"is_active": False}, headers=auth_headers(super_admin)
        )
        assert response.status_code == 200
        assert response.json()["data"]["is_active"] is False
        assert db.query(AuditLog).filter(AuditLog.action == "ADMIN_UPDATE_USER").count() == 1

        # the deactivated account can no longer use its token
        response = client.get("/api/auth/me", headers=auth_headers(student))
        assert response.status_code == 401
        assert response.json()["error"]["details"] == {"reason": "account inactive"}
