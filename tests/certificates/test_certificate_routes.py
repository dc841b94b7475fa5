"""
E2E tests for the learner-facing certificate endpoints.
"""

import uuid

import pytest
from httpx import AsyncClient

from app.certificates.models import Certificate, CertificateStatus
from tests.utils.factories import (
    complete_lessons_factory,
    create_certificate_factory,
    enroll_user_factory,
    get_course_lessons,
)


@pytest.mark.asyncio
async def test_generate_certificate_after_course_completion(
    test_client: AsyncClient,
    test_user_token,
    completed_course,
):
    response = await test_client.post(
        f"/api/v1/certificates/courses/{completed_course.id}",
        cookies={"access_token": test_user_token},
    )

    assert response.status_code == 201
    data = response.json()
    assert data["status"] == "generated"
    assert data["final_score"] == 92
    assert data["student_name"] == "Ada Learner"
    assert data["metadata"]["total_lessons"] == 5
    assert "snapshot_metadata" not in data
    assert "file_path" not in data


@pytest.mark.asyncio
async def test_generate_with_completion_facts(
    test_client: AsyncClient,
    test_user_token,
    completed_course,
):
    response = await test_client.post(
        f"/api/v1/certificates/courses/{completed_course.id}",
        json={"final_score": 99, "template": "premium", "achievements": ["Fastest finisher"]},
        cookies={"access_token": test_user_token},
    )

    assert response.status_code == 201
    data = response.json()
    assert data["final_score"] == 99
    assert data["template"] == "premium"
    assert data["metadata"]["achievements"] == ["Fastest finisher"]


@pytest.mark.asyncio
async def test_generate_rejects_out_of_range_score(
    test_client: AsyncClient,
    test_user_token,
    completed_course,
):
    response = await test_client.post(
        f"/api/v1/certificates/courses/{completed_course.id}",
        json={"final_score": 140},
        cookies={"access_token": test_user_token},
    )

    assert response.status_code == 422


@pytest.mark.asyncio
async def test_generate_not_eligible(
    test_client: AsyncClient,
    test_user_token,
    test_user,
    test_course,
    db_session,
):
    enroll_user_factory(db_session, test_user, test_course)
    complete_lessons_factory(db_session, test_user, get_course_lessons(db_session, test_course)[:3])

    response = await test_client.post(
        f"/api/v1/certificates/courses/{test_course.id}",
        cookies={"access_token": test_user_token},
    )

    assert response.status_code == 400
    error = response.json()["error"]
    assert error["code"] == "NOT_ELIGIBLE"
    assert error["message"] == "2 lessons remaining to complete"
    assert error["details"]["completed_lessons"] == 3


@pytest.mark.asyncio
async def test_generate_twice_conflicts(
    test_client: AsyncClient,
    test_user_token,
    completed_course,
):
    url = f"/api/v1/certificates/courses/{completed_course.id}"
    first = await test_client.post(url, cookies={"access_token": test_user_token})
    second = await test_client.post(url, cookies={"access_token": test_user_token})

    assert first.status_code == 201
    assert second.status_code == 409
    assert second.json()["error"]["code"] == "ALREADY_ISSUED"


@pytest.mark.asyncio
async def test_generate_requires_authentication(test_client: AsyncClient, test_course):
    response = await test_client.post(f"/api/v1/certificates/courses/{test_course.id}")
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_eligibility_endpoint(
    test_client: AsyncClient,
    test_user_token,
    completed_course,
):
    response = await test_client.get(
        f"/api/v1/certificates/courses/{completed_course.id}/eligibility",
        cookies={"access_token": test_user_token},
    )

    assert response.status_code == 200
    data = response.json()
    assert data["eligible"] is True
    assert data["reason"] is None
    assert data["details"] == {
        "completed_lessons": 5,
        "total_lessons": 5,
        "passed_quizzes": 1,
        "total_quizzes": 1,
        "average_quiz_score": 92.0,
    }


@pytest.mark.asyncio
async def test_my_certificates(
    test_client: AsyncClient,
    test_user_token,
    test_user,
    other_user,
    test_course,
    db_session,
):
    mine = create_certificate_factory(db_session, test_user, test_course)
    create_certificate_factory(db_session, other_user, test_course)

    response = await test_client.get(
        "/api/v1/certificates/me", cookies={"access_token": test_user_token}
    )

    assert response.status_code == 200
    assert [c["id"] for c in response.json()] == [str(mine.id)]


@pytest.mark.asyncio
async def test_user_certificates_for_owner_and_admin(
    test_client: AsyncClient,
    test_user_token,
    test_admin_token,
    test_user,
    test_course,
    db_session,
):
    certificate = create_certificate_factory(db_session, test_user, test_course)

    for token in (test_user_token, test_admin_token):
        response = await test_client.get(
            f"/api/v1/certificates/user/{test_user.id}", cookies={"access_token": token}
        )

        assert response.status_code == 200
        assert [c["id"] for c in response.json()] == [str(certificate.id)]


@pytest.mark.asyncio
async def test_user_certificates_forbidden_for_other_user(
    test_client: AsyncClient,
    other_user_token,
    test_user,
    test_course,
    db_session,
):
    create_certificate_factory(db_session, test_user, test_course)

    response = await test_client.get(
        f"/api/v1/certificates/user/{test_user.id}", cookies={"access_token": other_user_token}
    )

    assert response.status_code == 403
    assert response.json()["error"]["code"] == "FORBIDDEN"


@pytest.mark.asyncio
async def test_public_verification(
    test_client: AsyncClient,
    test_user,
    test_course,
    db_session,
):
    certificate = create_certificate_factory(db_session, test_user, test_course)

    response = await test_client.get(f"/api/v1/certificates/verify/{certificate.verification_code}")

    assert response.status_code == 200
    data = response.json()
    assert data["is_valid"] is True
    assert data["certificate"]["student_name"] == test_user.name
    assert "id" not in data["certificate"]
    assert "user_id" not in data["certificate"]


@pytest.mark.asyncio
async def test_public_verification_unknown_code(test_client: AsyncClient):
    response = await test_client.get("/api/v1/certificates/verify/CERT-2026-00000000")

    assert response.status_code == 200
    data = response.json()
    assert data["is_valid"] is False
    assert data["certificate"] is None
    assert data["message"] == "Certificate not found or invalid verification code"


@pytest.mark.asyncio
async def test_public_verification_revoked(
    test_client: AsyncClient,
    test_user,
    test_course,
    db_session,
):
    certificate = create_certificate_factory(
        db_session, test_user, test_course, status=CertificateStatus.REVOKED
    )

    response = await test_client.get(f"/api/v1/certificates/verify/{certificate.verification_code}")

    data = response.json()
    assert data["is_valid"] is False
    assert data["message"] == "Certificate has been revoked"
    assert data["revoked_at"] is not None


@pytest.mark.asyncio
async def test_download_certificate(
    test_client: AsyncClient,
    test_user_token,
    completed_course,
    db_session,
):
    generated = await test_client.post(
        f"/api/v1/certificates/courses/{completed_course.id}",
        cookies={"access_token": test_user_token},
    )
    certificate_id = generated.json()["id"]
    code = generated.json()["verification_code"]

    response = await test_client.get(
        f"/api/v1/certificates/{certificate_id}/download",
        cookies={"access_token": test_user_token},
    )

    assert response.status_code == 200
    assert response.headers["content-type"] == "application/pdf"
    assert response.headers["content-disposition"] == (
        f'attachment; filename="certificate-{code}.pdf"'
    )
    assert response.content.startswith(b"%PDF")
    certificate = db_session.get(Certificate, uuid.UUID(certificate_id))
    db_session.refresh(certificate)
    assert certificate.download_count == 1


@pytest.mark.asyncio
async def test_download_forbidden_for_other_user(
    test_client: AsyncClient,
    test_user_token,
    other_user_token,
    completed_course,
):
    generated = await test_client.post(
        f"/api/v1/certificates/courses/{completed_course.id}",
        cookies={"access_token": test_user_token},
    )

    response = await test_client.get(
        f"/api/v1/certificates/{generated.json()['id']}/download",
        cookies={"access_token": other_user_token},
    )

    assert response.status_code == 403
    assert response.json()["error"]["code"] == "FORBIDDEN"


@pytest.mark.asyncio
async def test_download_unknown_certificate(test_client: AsyncClient, test_user_token):
    response = await test_client.get(
        f"/api/v1/certificates/{uuid.uuid4()}/download",
        cookies={"access_token": test_user_token},
    )

    assert response.status_code == 404
