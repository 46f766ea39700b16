"""HTTP tests: routing, auth, error bodies and an end-to-end journey.

The app is built without running its lifespan; services are wired onto
``app.state`` over the in-memory store instead of Cassandra.
"""

from decimal import Decimal
from uuid import uuid4

import orjson
import pytest
from fastapi.testclient import TestClient

from internhub.auth.security import issue_access_token
from internhub.main import create_app
from internhub.payments.signatures import compute_checkout_signature, compute_signature

from fakes import KEY_SECRET, WEBHOOK_SECRET


def bearer(user_id, role: str = "student") -> dict[str, str]:
    token = issue_access_token(user_id, role, email="asha@example.com", name="Asha Verma")
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def app(enrollment_service, workflow, payment_service, certificate_service):
    app = create_app()
    app.state.enrollment_service = enrollment_service
    app.state.review_workflow = workflow
    app.state.payment_service = payment_service
    app.state.certificate_service = certificate_service
    return app


@pytest.fixture
def client(app) -> TestClient:
    return TestClient(app)


class TestHealth:
    def test_live_and_info(self, client) -> None:
        assert client.get("/health/live").json() == {"status": "alive"}
        assert client.get("/health").json()["status"] == "healthy"

    def test_ready_with_store(self, client) -> None:
        response = client.get("/health/ready")

        assert response.status_code == 200
        assert response.json()["database"] is True
        assert response.json()["payments"] is True

    def test_not_ready_without_store(self) -> None:
        response = TestClient(create_app()).get("/health/ready")

        assert response.status_code == 503
        assert response.json()["status"] == "not_ready"


class TestErrors:
    def test_missing_token(self, client, program) -> None:
        response = client.post("/v1/enrollments", json={"program_id": str(program.program_id)})

        assert response.status_code == 401
        assert response.headers["WWW-Authenticate"] == "Bearer"
        assert response.json()["error"] is True

    def test_domain_error_body_has_code(self, client, student_id) -> None:
        response = client.post(
            "/v1/enrollments",
            json={"program_id": str(uuid4())},
            headers=bearer(student_id),
        )

        body = response.json()
        assert response.status_code == 404
        assert body["code"] == "program_not_found"
        assert body["message"] == "Program not found"
        assert body["retryable"] is False
        assert "request_id" in body

    def test_validation_error_lists_fields(self, client, student_id) -> None:
        response = client.post(
            "/v1/enrollments", json={"program_id": "nope"}, headers=bearer(student_id)
        )

        assert response.status_code == 422
        assert response.json()["details"][0]["field"].endswith("program_id")

    def test_students_cannot_review(self, client, student_id) -> None:
        response = client.post(
            f"/v1/submissions/{uuid4()}/review",
            json={"outcome": "approved"},
            headers=bearer(student_id),
        )

        assert response.status_code == 403

    def test_service_unavailable_without_wiring(self, student_id) -> None:
        response = TestClient(create_app()).get(
            f"/v1/enrollments/{uuid4()}", headers=bearer(student_id)
        )

        assert response.status_code == 503


class TestProgramAdmin:
    def test_draft_then_publish(self, client) -> None:
        admin = bearer(uuid4(), "admin")
        created = client.post(
            "/v1/programs", json={"title": "Data", "price": "0"}, headers=admin
        )
        assert created.status_code == 201
        assert created.json()["is_published"] is False
        program_id = created.json()["program_id"]

        task = {"order": 1, "title": "Clean a dataset"}
        assert client.post(
            f"/v1/programs/{program_id}/tasks", json=task, headers=admin
        ).status_code == 201

        published = client.post(f"/v1/programs/{program_id}/publish", headers=admin)
        assert published.status_code == 200
        assert published.json()["is_published"] is True
        assert [t["order"] for t in published.json()["tasks"]] == [1]

        late = client.post(
            f"/v1/programs/{program_id}/tasks",
            json={"order": 2, "title": "Late task"},
            headers=admin,
        )
        assert late.status_code == 409
        assert late.json()["code"] == "program_published"


class TestStudentJourney:
    def test_enroll_pay_complete_and_certify(
        self, client, store, gateway, program, tasks, student_id, reviewer_id
    ) -> None:
        student = bearer(student_id)
        reviewer = bearer(reviewer_id, role="reviewer")

        enrolled = client.post(
            "/v1/enrollments", json={"program_id": str(program.program_id)}, headers=student
        )
        assert enrolled.status_code == 201
        enrollment_id = enrolled.json()["enrollment_id"]
        assert Decimal(enrolled.json()["payment_amount"]) == Decimal("4999.00")

        order = client.post(
            "/v1/payments/orders", json={"enrollment_id": enrollment_id}, headers=student
        ).json()
        gateway.payment_orders["pay_http"] = order["order_id"]
        verified = client.post(
            "/v1/payments/verify",
            json={
                "enrollment_id": enrollment_id,
                "razorpay_order_id": order["order_id"],
                "razorpay_payment_id": "pay_http",
                "razorpay_signature": compute_checkout_signature(
                    KEY_SECRET, order["order_id"], "pay_http"
                ),
            },
            headers=student,
        )
        assert verified.json()["payment"]["status"] == "completed"

        for task in tasks:
            submitted = client.post(
                f"/v1/enrollments/{enrollment_id}/tasks/{task.task_id}/submissions",
                json={"content": "https://github.com/asha/solution"},
                headers=student,
            )
            assert submitted.status_code == 201
            reviewed = client.post(
                f"/v1/submissions/{submitted.json()['submission_id']}/review",
                json={"outcome": "approved", "grade": "9"},
                headers=reviewer,
            )
            assert reviewed.status_code == 200

        assert reviewed.json()["enrollment_completed"] is True
        board = client.get(f"/v1/enrollments/{enrollment_id}/tasks", headers=student).json()
        assert board["progress"]["approved_mandatory"] == 2
        assert board["enrollment"]["status"] == "completed"

        issued = client.post(
            "/v1/certificates", json={"enrollment_id": enrollment_id}, headers=student
        ).json()
        number = issued["certificate"]["certificate_number"]
        assert issued["created"] is True
        assert issued["certificate"]["snapshot"]["final_score"] == 90

        public = client.get("/v1/certificates/verify", params={"ref": number}).json()
        assert public["is_valid"] is True
        assert public["certificate"]["student_name"] == "Asha Verma"
        assert "student_id" not in public["certificate"]

    def test_locked_task_reports_reason(
        self, client, unpaid_enrollment, tasks, student_id
    ) -> None:
        response = client.post(
            f"/v1/enrollments/{unpaid_enrollment.enrollment_id}"
            f"/tasks/{tasks[0].task_id}/submissions",
            json={"content": "early"},
            headers=bearer(student_id),
        )

        assert response.status_code == 409
        assert response.json()["code"] == "payment_required"


class TestWebhookRoute:
    def test_signed_webhook_settles_payment(
        self, client, store, payment_service, unpaid_enrollment, student_id
    ) -> None:
        order = client.post(
            "/v1/payments/orders",
            json={"enrollment_id": str(unpaid_enrollment.enrollment_id)},
            headers=bearer(student_id),
        ).json()
        body = orjson.dumps(
            {
                "event": "payment.captured",
                "payload": {
                    "payment": {
                        "entity": {
                            "id": "pay_hook",
                            "order_id": order["order_id"],
                            "status": "captured",
                        }
                    }
                },
            }
        )

        response = client.post(
            "/v1/payments/webhook",
            content=body,
            headers={
                "Content-Type": "application/json",
                "X-Razorpay-Signature": compute_signature(WEBHOOK_SECRET, body),
                "X-Razorpay-Event-Id": "evt_http",
            },
        )

        assert response.status_code == 200
        assert response.json() == {"event_id": "evt_http", "processed": True, "duplicate": False}
        assert store.enrollments[unpaid_enrollment.enrollment_id].is_paid

    def test_unsigned_webhook_rejected(self, client) -> None:
        response = client.post("/v1/payments/webhook", content=b"{}")

        assert response.status_code == 400
        assert response.json()["code"] == "invalid_signature"


def test_public_verify_of_unknown_reference(client) -> None:
    response = client.get("/v1/certificates/verify", params={"ref": "CERT-00000000-XXXXXX"})

    assert response.json() == {"is_valid": False, "certificate": None}
