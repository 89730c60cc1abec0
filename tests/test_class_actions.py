from uuid import uuid4

import pytest
from httpx import AsyncClient
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from schoolcore.api.v1.students.schemas import ClassActionRequest
from schoolcore.api.v1.students.service import apply_class_action
from schoolcore.core.config import settings
from schoolcore.core.enums import ClassActionType
from schoolcore.core.exceptions import DuplicateActionRequiresOverride
from schoolcore.core.models import StudentClassHistory

from tests.factories import auth_headers, create_class, create_section, create_student, create_user


PROMOTE_TO_9A = {"to_class": "9", "to_section": "A", "academic_year": "2024-2025"}


async def _history_count(db: AsyncSession, student_id) -> int:
    result = await db.execute(
        select(func.count()).select_from(StudentClassHistory).where(StudentClassHistory.student_id == student_id)
    )
    return result.scalar_one()


async def _grades_8_and_9(db: AsyncSession, tenant):
    grade_8 = await create_class(db, tenant, "8", academic_year="2023-2024")
    grade_9 = await create_class(db, tenant, "9", academic_year="2024-2025")
    await create_section(db, grade_8, "A")
    section_9a = await create_section(db, grade_9, "A")
    return grade_8, grade_9, section_9a


@pytest.mark.asyncio
async def test_promotion_guard_and_override(db_session: AsyncSession, tenant, admin) -> None:
    _, grade_9, section_9a = await _grades_8_and_9(db_session, tenant)
    student = await create_student(db_session, tenant, "8", "A", academic_year="2023-2024")
    await db_session.commit()
    payload = ClassActionRequest(**PROMOTE_TO_9A)

    result = await apply_class_action(db_session, tenant.id, student.id, ClassActionType.PROMOTED, payload, admin.id)

    history = (await db_session.execute(select(StudentClassHistory))).scalars().all()
    assert len(history) == 1
    assert (history[0].from_class, history[0].from_section) == ("8", "A")
    assert (history[0].to_class, history[0].to_section) == ("9", "A")
    assert history[0].performed_by == admin.id
    assert history[0].id == result.history_id
    assert result.student.class_id == grade_9.id
    assert result.student.section_id == section_9a.id
    assert result.student.academic_year == "2024-2025"
    assert (result.student.admission_class, result.student.admission_section) == ("8", "A")

    with pytest.raises(DuplicateActionRequiresOverride) as exc:
        await apply_class_action(db_session, tenant.id, student.id, ClassActionType.PROMOTED, payload, admin.id)
    assert exc.value.detail["requires_override"] is True
    assert await _history_count(db_session, student.id) == 1

    forced = ClassActionRequest(**PROMOTE_TO_9A, force_override=True)
    again = await apply_class_action(db_session, tenant.id, student.id, ClassActionType.PROMOTED, forced, admin.id)

    assert await _history_count(db_session, student.id) == 2
    # Snapshot is never overwritten.
    assert again.student.admission_class == "8"


@pytest.mark.asyncio
async def test_demotion_is_guarded_separately(db_session: AsyncSession, tenant, admin) -> None:
    await _grades_8_and_9(db_session, tenant)
    student = await create_student(db_session, tenant, "8", "A", academic_year="2023-2024")
    await db_session.commit()

    await apply_class_action(
        db_session, tenant.id, student.id, ClassActionType.PROMOTED, ClassActionRequest(**PROMOTE_TO_9A), admin.id
    )
    demoted = await apply_class_action(
        db_session,
        tenant.id,
        student.id,
        ClassActionType.DEMOTED,
        ClassActionRequest(to_class="8", to_section="A", academic_year="2024-2025", remarks="Repeat year"),
        admin.id,
    )

    assert demoted.student.class_name == "8"
    assert await _history_count(db_session, student.id) == 2


@pytest.mark.asyncio
async def test_unresolved_target_clears_references(client: AsyncClient, db_session: AsyncSession, tenant, admin) -> None:
    grade_8, _, _ = await _grades_8_and_9(db_session, tenant)
    student = await create_student(
        db_session, tenant, "8", "A", school_class=grade_8, roll_number="12", academic_year="2023-2024"
    )
    await db_session.commit()

    response = await client.post(
        f"/api/v1/students/{student.id}/promote",
        json={"to_class": "10", "to_section": "B", "academic_year": "2024-2025", "reset_roll_number": True},
        headers=auth_headers(admin),
    )

    assert response.status_code == 200
    body = response.json()["student"]
    assert body["class_name"] == "10"
    assert body["section_name"] == "B"
    assert body["class_id"] is None
    assert body["section_id"] is None
    assert body["roll_number"] is None
    assert body["is_enrolled"] is False


@pytest.mark.asyncio
async def test_duplicate_promotion_over_api(client: AsyncClient, db_session: AsyncSession, tenant, admin) -> None:
    await _grades_8_and_9(db_session, tenant)
    student = await create_student(db_session, tenant, "8", "A", academic_year="2023-2024")
    await db_session.commit()
    url = f"/api/v1/students/{student.id}/promote"
    headers = auth_headers(admin)

    first = await client.post(url, json=PROMOTE_TO_9A, headers=headers)
    second = await client.post(url, json=PROMOTE_TO_9A, headers=headers)
    forced = await client.post(url, json={**PROMOTE_TO_9A, "force_override": True}, headers=headers)

    assert first.status_code == 200
    assert second.status_code == 409
    detail = second.json()["detail"]
    assert detail["code"] == "requires_override"
    assert detail["requires_override"] is True
    assert detail["action_type"] == "promoted"
    assert forced.status_code == 200


@pytest.mark.asyncio
async def test_roll_number_clash_is_conflict(client: AsyncClient, db_session: AsyncSession, tenant, admin) -> None:
    await _grades_8_and_9(db_session, tenant)
    await create_student(db_session, tenant, "9", "A", roll_number="1", academic_year="2024-2025")
    mover = await create_student(db_session, tenant, "8", "A", roll_number="1", academic_year="2023-2024")
    await db_session.commit()

    response = await client.post(
        f"/api/v1/students/{mover.id}/promote", json=PROMOTE_TO_9A, headers=auth_headers(admin)
    )

    assert response.status_code == 409
    assert response.json()["detail"]["code"] == "conflict"
    assert await _history_count(db_session, mover.id) == 0


@pytest.mark.asyncio
async def test_bulk_collects_roll_number_clash(client: AsyncClient, db_session: AsyncSession, tenant, admin) -> None:
    await _grades_8_and_9(db_session, tenant)
    await create_student(db_session, tenant, "9", "A", roll_number="1", academic_year="2024-2025")
    clashing = await create_student(
        db_session, tenant, "8", "A", full_name="Clash", roll_number="1", academic_year="2023-2024"
    )
    clean = await create_student(
        db_session, tenant, "8", "A", full_name="Clean", roll_number="2", academic_year="2023-2024"
    )
    await db_session.commit()

    response = await client.post(
        "/api/v1/students/bulk-class-action",
        json={**PROMOTE_TO_9A, "student_ids": [str(clashing.id), str(clean.id)]},
        headers=auth_headers(admin),
    )

    assert response.status_code == 200
    body = response.json()
    assert body["success_count"] == 1
    assert len(body["errors"]) == 1
    assert body["errors"][0]["student_id"] == str(clashing.id)
    assert body["errors"][0]["student_name"] == "Clash"
    assert body["errors"][0]["code"] == "conflict"
    await db_session.refresh(clean)
    assert clean.class_name == "9"
    assert await _history_count(db_session, clashing.id) == 0
    assert await _history_count(db_session, clean.id) == 1


@pytest.mark.asyncio
async def test_bulk_promotion_partial_success(client: AsyncClient, db_session: AsyncSession, tenant, admin) -> None:
    await _grades_8_and_9(db_session, tenant)
    students = [
        await create_student(db_session, tenant, "8", "A", full_name=f"Student {i}", academic_year="2023-2024")
        for i in range(5)
    ]
    await db_session.commit()
    ids = [s.id for s in students]
    headers = auth_headers(admin)
    already = await client.post(f"/api/v1/students/{ids[0]}/promote", json=PROMOTE_TO_9A, headers=headers)
    assert already.status_code == 200

    response = await client.post(
        "/api/v1/students/bulk-class-action",
        json={**PROMOTE_TO_9A, "student_ids": [str(i) for i in ids], "action_type": "promoted"},
        headers=headers,
    )

    assert response.status_code == 200
    body = response.json()
    assert body["success_count"] == 4
    assert len(body["errors"]) == 1
    assert body["errors"][0]["student_id"] == str(ids[0])
    assert body["errors"][0]["student_name"] == "Student 0"
    assert body["errors"][0]["code"] == "requires_override"
    for student in students:
        await db_session.refresh(student)
        assert student.class_name == "9"
        assert await _history_count(db_session, student.id) == 1


@pytest.mark.asyncio
async def test_bulk_reports_unknown_students(client: AsyncClient, db_session: AsyncSession, tenant, admin) -> None:
    await _grades_8_and_9(db_session, tenant)
    student = await create_student(db_session, tenant, "8", "A", academic_year="2023-2024")
    await db_session.commit()
    missing = uuid4()

    response = await client.post(
        "/api/v1/students/bulk-class-action",
        json={**PROMOTE_TO_9A, "student_ids": [str(missing), str(student.id)]},
        headers=auth_headers(admin),
    )

    body = response.json()
    assert body["success_count"] == 1
    assert body["errors"] == [
        {"student_id": str(missing), "student_name": None, "code": "not_found", "message": "Student not found"}
    ]


@pytest.mark.asyncio
async def test_bulk_limit(client: AsyncClient, admin, monkeypatch) -> None:
    monkeypatch.setattr(settings, "bulk_class_action_limit", 2)

    response = await client.post(
        "/api/v1/students/bulk-class-action",
        json={**PROMOTE_TO_9A, "student_ids": [str(uuid4()) for _ in range(3)]},
        headers=auth_headers(admin),
    )

    assert response.status_code == 400
    assert response.json()["detail"]["limit"] == 2


@pytest.mark.asyncio
async def test_class_actions_require_admin(client: AsyncClient, db_session: AsyncSession, tenant) -> None:
    teacher = await create_user(db_session, tenant, "teacher", assigned_classes=["8"])
    student = await create_student(db_session, tenant, "8", "A")
    await db_session.commit()
    headers = auth_headers(teacher)

    promote = await client.post(f"/api/v1/students/{student.id}/promote", json=PROMOTE_TO_9A, headers=headers)
    bulk = await client.post(
        "/api/v1/students/bulk-class-action", json={**PROMOTE_TO_9A, "student_ids": [str(student.id)]}, headers=headers
    )

    assert promote.status_code == 403
    assert bulk.status_code == 403


@pytest.mark.asyncio
async def test_class_history_is_scoped(client: AsyncClient, db_session: AsyncSession, tenant, admin) -> None:
    await _grades_8_and_9(db_session, tenant)
    child = await create_student(db_session, tenant, "8", "A", academic_year="2023-2024")
    other = await create_student(db_session, tenant, "8", "A", academic_year="2023-2024")
    parent = await create_user(db_session, tenant, "parent", children=[str(child.id)])
    await db_session.commit()
    await client.post(
        f"/api/v1/students/{child.id}/demote",
        json={"to_class": "7", "to_section": "A", "academic_year": "2024-2025"},
        headers=auth_headers(admin),
    )

    own = await client.get(f"/api/v1/students/{child.id}/class-history", headers=auth_headers(parent))
    foreign = await client.get(f"/api/v1/students/{other.id}/class-history", headers=auth_headers(parent))

    assert own.status_code == 200
    assert [(h["action_type"], h["from_class"], h["to_class"]) for h in own.json()] == [("demoted", "8", "7")]
    assert foreign.status_code == 403


@pytest.mark.asyncio
async def test_promotion_report(client: AsyncClient, db_session: AsyncSession, tenant, admin) -> None:
    await _grades_8_and_9(db_session, tenant)
    first = await create_student(db_session, tenant, "8", "A", full_name="First", academic_year="2023-2024")
    second = await create_student(db_session, tenant, "8", "A", full_name="Second", academic_year="2023-2024")
    teacher = await create_user(db_session, tenant, "teacher", assigned_classes=["9"])
    await db_session.commit()
    headers = auth_headers(admin)
    for s in (first, second):
        await client.post(f"/api/v1/students/{s.id}/promote", json=PROMOTE_TO_9A, headers=headers)
    await client.post(
        f"/api/v1/students/{second.id}/demote",
        json={"to_class": "8", "to_section": "A", "academic_year": "2024-2025"},
        headers=headers,
    )

    report = await client.get("/api/v1/promotions/report", params={"academic_year": "2024-2025"}, headers=headers)
    demotions = await client.get("/api/v1/promotions/report", params={"action_type": "demoted"}, headers=headers)
    other_year = await client.get("/api/v1/promotions/report", params={"academic_year": "2030-2031"}, headers=headers)
    forbidden = await client.get("/api/v1/promotions/report", headers=auth_headers(teacher))

    assert report.status_code == 200
    assert report.json()["total"] == 3
    assert report.json()["totals_by_action"] == {"promoted": 2, "demoted": 1}
    assert [i["student_name"] for i in demotions.json()["items"]] == ["Second"]
    assert other_year.json()["total"] == 0
    assert forbidden.status_code == 403
