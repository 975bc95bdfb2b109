import asyncio
import uuid
from datetime import timedelta

import pytest
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.v1.registration_tokens import service
from app.api.v1.registration_tokens.schemas import RegistrationTokenBulkCreate, RegistrationTokenCreate
from app.core.enums import TokenStatus
from app.core.exceptions import NotFoundError, StateConflictError
from app.core.models import AuditLog, RegistrationToken


async def _reload(db: AsyncSession, token_id) -> RegistrationToken:
    return (await db.execute(
        select(RegistrationToken)
        .where(RegistrationToken.id == token_id)
        .execution_options(populate_existing=True)
    )).scalar_one()


@pytest.mark.asyncio
async def test_create_token_defaults(db_session: AsyncSession, organization, org_admin, fixed_now) -> None:
    token = await service.create_registration_token(
        db_session,
        organization.id,
        org_admin.id,
        RegistrationTokenCreate(student_name="Ama Boateng", student_email="ama@mail.com"),
        now=fixed_now,
    )
    assert token.status == TokenStatus.ACTIVE
    assert token.max_uses == 1
    assert token.current_uses == 0
    assert token.expires_at == fixed_now + timedelta(days=7)
    assert token.student_email == "ama@mail.com"
    assert token.generated_by_user_id == org_admin.id


@pytest.mark.asyncio
async def test_create_token_unknown_organization(db_session: AsyncSession, org_admin, fixed_now) -> None:
    with pytest.raises(NotFoundError):
        await service.create_registration_token(
            db_session, uuid.uuid4(), org_admin.id, RegistrationTokenCreate(), now=fixed_now
        )


@pytest.mark.asyncio
async def test_token_exhaustion(db_session: AsyncSession, organization, org_admin, fixed_now) -> None:
    token = await service.create_registration_token(
        db_session, organization.id, org_admin.id, RegistrationTokenCreate(max_uses=2), now=fixed_now
    )

    first = await service.redeem_registration_token(db_session, token.token, now=fixed_now)
    assert first.ok is True
    assert first.status == TokenStatus.ACTIVE
    assert first.current_uses == 1

    second = await service.redeem_registration_token(db_session, token.token, now=fixed_now)
    assert second.ok is True
    assert second.status == TokenStatus.USED
    assert second.current_uses == 2

    third = await service.redeem_registration_token(db_session, token.token, now=fixed_now)
    assert third.ok is False
    assert third.error_code == "ALREADY_USED"
    assert third.message == "This registration token has already been used"

    stored = await _reload(db_session, token.id)
    assert stored.status == TokenStatus.USED.value
    assert stored.current_uses == 2
    assert stored.used_at == fixed_now


@pytest.mark.asyncio
async def test_revoked_token_cannot_be_redeemed(db_session: AsyncSession, organization, org_admin, fixed_now) -> None:
    token = await service.create_registration_token(
        db_session, organization.id, org_admin.id, RegistrationTokenCreate(max_uses=3), now=fixed_now
    )
    revoked = await service.revoke_registration_token(
        db_session, organization.id, token.id, org_admin.id, "Sent to the wrong family", now=fixed_now
    )
    assert revoked.status == TokenStatus.REVOKED
    assert revoked.revoke_reason == "Sent to the wrong family"

    result = await service.redeem_registration_token(db_session, token.token, now=fixed_now)
    assert result.ok is False
    assert result.error_code == "REVOKED"
    assert result.message == "This registration token has been revoked"

    stored = await _reload(db_session, token.id)
    assert stored.current_uses == 0
    assert stored.status == TokenStatus.REVOKED.value


@pytest.mark.asyncio
async def test_revoking_terminal_token_conflicts(db_session: AsyncSession, organization, org_admin, fixed_now) -> None:
    token = await service.create_registration_token(
        db_session, organization.id, org_admin.id, RegistrationTokenCreate(), now=fixed_now
    )
    await service.redeem_registration_token(db_session, token.token, now=fixed_now)

    with pytest.raises(StateConflictError):
        await service.revoke_registration_token(db_session, organization.id, token.id, org_admin.id, now=fixed_now)


@pytest.mark.asyncio
async def test_lazy_expiry(db_session: AsyncSession, organization, org_admin, fixed_now) -> None:
    # a refused redemption rolls back and expires loaded instances
    org_id = organization.id
    token = await service.create_registration_token(
        db_session, org_id, org_admin.id, RegistrationTokenCreate(expires_in_days=7), now=fixed_now
    )
    later = fixed_now + timedelta(days=8)

    result = await service.redeem_registration_token(db_session, token.token, now=later)
    assert result.ok is False
    assert result.error_code == "EXPIRED"
    assert result.message == "This registration token has expired"

    # Stored status is untouched until maintenance runs, but reads report EXPIRED
    stored = await _reload(db_session, token.id)
    assert stored.status == TokenStatus.ACTIVE.value
    assert service.effective_status(stored, later) == TokenStatus.EXPIRED

    listing = await service.list_registration_tokens(db_session, org_id, now=later)
    assert listing.statistics.expired_tokens == 1
    assert listing.statistics.active_tokens == 0
    assert listing.tokens[0].status == TokenStatus.EXPIRED

    assert await service.expire_stale_tokens(db_session, now=later) == 1
    stored = await _reload(db_session, token.id)
    assert stored.status == TokenStatus.EXPIRED.value


@pytest.mark.asyncio
async def test_validate_does_not_consume(db_session: AsyncSession, organization, org_admin, fixed_now) -> None:
    token = await service.create_registration_token(
        db_session,
        organization.id,
        org_admin.id,
        RegistrationTokenCreate(student_name="Ama Boateng", education_level="PRIMARY"),
        now=fixed_now,
    )
    for _ in range(3):
        check = await service.validate_registration_token(db_session, token.token, now=fixed_now)
        assert check.valid is True
        assert check.organization_id == organization.id
        assert check.organization_name == "Accra Academy"
        assert check.remaining_uses == 1
        assert check.hints.student_name == "Ama Boateng"
        assert check.hints.education_level == "PRIMARY"

    stored = await _reload(db_session, token.id)
    assert stored.current_uses == 0


@pytest.mark.asyncio
async def test_validate_unknown_token(db_session: AsyncSession, fixed_now) -> None:
    check = await service.validate_registration_token(db_session, "no-such-token", now=fixed_now)
    assert check.valid is False
    assert check.error_code == "NOT_FOUND"
    assert check.errors == ["Registration token not found"]


@pytest.mark.asyncio
async def test_consume_checks_organization(
    db_session: AsyncSession, organization, other_organization, org_admin, fixed_now
) -> None:
    token = await service.create_registration_token(
        db_session, organization.id, org_admin.id, RegistrationTokenCreate(), now=fixed_now
    )
    with pytest.raises(service.TokenError) as exc:
        await service.consume_registration_token(
            db_session, token.token, now=fixed_now, organization_id=other_organization.id
        )
    assert exc.value.code == service.TokenErrorCode.NOT_FOUND
    await db_session.rollback()

    stored = await _reload(db_session, token.id)
    assert stored.current_uses == 0


@pytest.mark.asyncio
async def test_transitions_are_audited(db_session: AsyncSession, organization, org_admin, fixed_now) -> None:
    token = await service.create_registration_token(
        db_session, organization.id, org_admin.id, RegistrationTokenCreate(max_uses=2), now=fixed_now
    )
    await service.redeem_registration_token(db_session, token.token, now=fixed_now)
    await service.revoke_registration_token(db_session, organization.id, token.id, org_admin.id, now=fixed_now)

    actions = (await db_session.execute(
        select(AuditLog.action)
        .where(AuditLog.entity_id == token.id)
        .order_by(AuditLog.timestamp.asc())
    )).scalars().all()
    assert sorted(actions) == sorted([
        "registration_token_created",
        "registration_token_redeemed",
        "registration_token_revoked",
    ])


@pytest.mark.asyncio
async def test_bulk_create_reports_duplicates(db_session: AsyncSession, organization, org_admin, fixed_now) -> None:
    payload = RegistrationTokenBulkCreate(
        tokens=[
            RegistrationTokenCreate(student_email="ama@mail.com"),
            RegistrationTokenCreate(student_email="kwame@mail.com"),
            RegistrationTokenCreate(student_email="AMA@mail.com"),
        ],
        default_max_uses=2,
    )
    result = await service.bulk_create_registration_tokens(
        db_session, organization.id, org_admin.id, payload, now=fixed_now
    )
    assert result.total_requested == 3
    assert result.successfully_created == 2
    assert result.failed_to_create == 1
    assert result.errors[0].index == 2
    assert all(t.max_uses == 2 for t in result.created_tokens)

    count = (await db_session.execute(select(func.count()).select_from(RegistrationToken))).scalar_one()
    assert count == 2


@pytest.mark.asyncio
async def test_concurrent_redemption_single_winner(
    session_factory, db_session: AsyncSession, organization, org_admin, fixed_now
) -> None:
    token = await service.create_registration_token(
        db_session, organization.id, org_admin.id, RegistrationTokenCreate(max_uses=1), now=fixed_now
    )

    async def attempt():
        async with session_factory() as session:
            return await service.redeem_registration_token(session, token.token, now=fixed_now)

    results = await asyncio.gather(attempt(), attempt())
    winners = [r for r in results if r.ok]
    losers = [r for r in results if not r.ok]
    assert len(winners) == 1
    assert len(losers) == 1
    assert losers[0].error_code in ("ALREADY_USED", "BUSY")

    stored = await _reload(db_session, token.id)
    assert stored.current_uses == 1
    assert stored.status == TokenStatus.USED.value
