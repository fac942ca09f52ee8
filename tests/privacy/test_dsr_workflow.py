"""Tests for the DSR workflow (trustdesk/privacy/dsr.py).

Covers the pure transition guards, request creation, completion side
effects and the compare-and-swap behaviour under concurrent transitions.
"""

from __future__ import annotations

import asyncio
import uuid

import pytest
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from trustdesk.core.config import Settings
from trustdesk.core.errors import InvalidTransition, NotFound, ValidationFailed
from trustdesk.core.models import (
    ConsentPurpose,
    ConsentRecord,
    ConsentState,
    DSRRequest,
    DSRStatus,
    DSRType,
    ErasureTask,
    UserRole,
)
from trustdesk.core.principals import Principal
from trustdesk.privacy.consent import ConsentLedger
from trustdesk.privacy.dsr import (
    DsrSnapshot,
    DsrWorkflow,
    TransitionResult,
    plan_transition,
    purpose_from_notes,
)


def _principal(role: UserRole) -> Principal:
    return Principal(id=uuid.uuid4(), email=f"{role.value.lower()}@example.com", role=role)


async def _open(
    session_factory: async_sessionmaker[AsyncSession],
    settings: Settings,
    contact_id: uuid.UUID,
    dsr_type: DSRType = DSRType.DELETE,
    notes: str | None = None,
) -> uuid.UUID:
    async with session_factory() as session:
        request = await DsrWorkflow(session, settings).create(
            contact_id=contact_id, dsr_type=dsr_type, actor_id=None, notes=notes
        )
        await session.commit()
        return request.id


async def _transition(
    session_factory: async_sessionmaker[AsyncSession],
    settings: Settings,
    request_id: uuid.UUID,
    target: DSRStatus,
    **kwargs: object,
) -> TransitionResult:
    async with session_factory() as session:
        result = await DsrWorkflow(session, settings).transition(request_id, target, **kwargs)  # type: ignore[arg-type]
        await session.commit()
        return result


async def _grant(
    session_factory: async_sessionmaker[AsyncSession], contact_id: uuid.UUID, *purposes: ConsentPurpose
) -> None:
    async with session_factory() as session:
        ledger = ConsentLedger(session)
        for purpose in purposes:
            await ledger.record_consent(
                contact_id=contact_id, purpose=purpose, granted=True, source="web_form", actor_id=None
            )
        await session.commit()


async def _count(session_factory: async_sessionmaker[AsyncSession], query: object) -> int:
    async with session_factory() as session:
        return (await session.execute(query)).scalar_one()  # type: ignore[call-overload]


# ---------------------------------------------------------------------------
# plan_transition
# ---------------------------------------------------------------------------


class TestPlanTransition:
    """Pure guard checks, no database."""

    def test_assign_sets_assignee(self) -> None:
        manager = _principal(UserRole.MANAGER)
        plan = plan_transition(DsrSnapshot(DSRStatus.PENDING, DSRType.ACCESS), DSRStatus.IN_PROGRESS, assignee=manager)

        assert plan.applied is True
        assert plan.changes == {"assigned_to": manager.id, "assigned_by": manager.id}

    def test_assign_records_who_assigned(self) -> None:
        manager, qa = _principal(UserRole.MANAGER), _principal(UserRole.QA)

        plan = plan_transition(
            DsrSnapshot(DSRStatus.PENDING, DSRType.DELETE), DSRStatus.IN_PROGRESS, assignee=qa, assigned_by=manager
        )

        assert plan.changes == {"assigned_to": qa.id, "assigned_by": manager.id}

    @pytest.mark.parametrize("role", [UserRole.AGENT, UserRole.VIEWER])
    def test_assignee_without_handler_role_rejected(self, role: UserRole) -> None:
        with pytest.raises(InvalidTransition, match="handler role"):
            plan_transition(
                DsrSnapshot(DSRStatus.PENDING, DSRType.ACCESS), DSRStatus.IN_PROGRESS, assignee=_principal(role)
            )

    def test_assign_without_assignee_rejected(self) -> None:
        with pytest.raises(InvalidTransition):
            plan_transition(DsrSnapshot(DSRStatus.PENDING, DSRType.ACCESS), DSRStatus.IN_PROGRESS)

    @pytest.mark.parametrize(
        ("current", "target"),
        [
            (DSRStatus.PENDING, DSRStatus.COMPLETED),
            (DSRStatus.PENDING, DSRStatus.REJECTED),
            (DSRStatus.IN_PROGRESS, DSRStatus.PENDING),
            (DSRStatus.COMPLETED, DSRStatus.IN_PROGRESS),
            (DSRStatus.COMPLETED, DSRStatus.REJECTED),
            (DSRStatus.REJECTED, DSRStatus.COMPLETED),
        ],
    )
    def test_missing_edges_rejected(self, current: DSRStatus, target: DSRStatus) -> None:
        admin = _principal(UserRole.ADMIN)
        with pytest.raises(InvalidTransition) as exc_info:
            plan_transition(
                DsrSnapshot(current, DSRType.ACCESS), target, assignee=admin, verifier=admin, reason="duplicate"
            )
        assert exc_info.value.from_status == current.value
        assert exc_info.value.to_status == target.value

    @pytest.mark.parametrize("status", list(DSRStatus))
    def test_same_status_is_noop(self, status: DSRStatus) -> None:
        plan = plan_transition(DsrSnapshot(status, DSRType.DELETE), status)
        assert plan.applied is False
        assert plan.changes == {}

    def test_complete_requires_verifier(self) -> None:
        with pytest.raises(InvalidTransition, match="verifier required"):
            plan_transition(DsrSnapshot(DSRStatus.IN_PROGRESS, DSRType.ACCESS), DSRStatus.COMPLETED)

    @pytest.mark.parametrize("dsr_type", [DSRType.DELETE, DSRType.RESTRICT])
    def test_dual_control_blocks_self_verification(self, dsr_type: DSRType) -> None:
        manager = _principal(UserRole.MANAGER)
        snapshot = DsrSnapshot(DSRStatus.IN_PROGRESS, dsr_type, assigned_to=manager.id)

        with pytest.raises(InvalidTransition, match="must differ"):
            plan_transition(snapshot, DSRStatus.COMPLETED, verifier=manager)

    @pytest.mark.parametrize("dsr_type", [DSRType.DELETE, DSRType.RESTRICT])
    def test_dual_control_blocks_verification_by_assigner(self, dsr_type: DSRType) -> None:
        manager, qa = _principal(UserRole.MANAGER), _principal(UserRole.QA)
        snapshot = DsrSnapshot(DSRStatus.IN_PROGRESS, dsr_type, assigned_to=qa.id, assigned_by=manager.id)

        with pytest.raises(InvalidTransition, match="must differ"):
            plan_transition(snapshot, DSRStatus.COMPLETED, verifier=manager)

        plan = plan_transition(snapshot, DSRStatus.COMPLETED, verifier=_principal(UserRole.ADMIN))
        assert plan.applied is True

    def test_dual_control_can_be_disabled(self) -> None:
        manager = _principal(UserRole.MANAGER)
        snapshot = DsrSnapshot(DSRStatus.IN_PROGRESS, DSRType.DELETE, assigned_to=manager.id)

        plan = plan_transition(snapshot, DSRStatus.COMPLETED, verifier=manager, dual_control=False)

        assert plan.applied is True
        assert plan.changes["verified_by"] == manager.id

    def test_self_verification_allowed_for_access_requests(self) -> None:
        manager = _principal(UserRole.MANAGER)
        snapshot = DsrSnapshot(DSRStatus.IN_PROGRESS, DSRType.ACCESS, assigned_to=manager.id)

        plan = plan_transition(snapshot, DSRStatus.COMPLETED, verifier=manager)

        assert plan.changes["verified_by"] == manager.id
        assert plan.changes["completed_at"] is not None

    @pytest.mark.parametrize("reason", [None, "", "   "])
    def test_reject_requires_reason(self, reason: str | None) -> None:
        with pytest.raises(InvalidTransition, match="reason required"):
            plan_transition(DsrSnapshot(DSRStatus.IN_PROGRESS, DSRType.ACCESS), DSRStatus.REJECTED, reason=reason)

    def test_reject_strips_reason(self) -> None:
        plan = plan_transition(
            DsrSnapshot(DSRStatus.IN_PROGRESS, DSRType.ACCESS), DSRStatus.REJECTED, reason="  identity not verified "
        )
        assert plan.changes == {"rejection_reason": "identity not verified"}


class TestPurposeFromNotes:
    def test_known_purpose(self) -> None:
        assert purpose_from_notes(" Marketing ") == ConsentPurpose.MARKETING

    @pytest.mark.parametrize("notes", [None, "", "newsletters"])
    def test_unknown_purpose(self, notes: str | None) -> None:
        assert purpose_from_notes(notes) is None


# ---------------------------------------------------------------------------
# DsrWorkflow
# ---------------------------------------------------------------------------


class TestCreate:
    """Tests for DsrWorkflow.create."""

    @pytest.mark.asyncio
    async def test_new_request_is_pending_with_number(
        self, db_session: AsyncSession, test_settings: Settings, contact_id: uuid.UUID
    ) -> None:
        workflow = DsrWorkflow(db_session, test_settings)

        first = await workflow.create(contact_id=contact_id, dsr_type=DSRType.ACCESS, actor_id=None)
        second = await workflow.create(contact_id=contact_id, dsr_type=DSRType.RECTIFY, actor_id=None)

        assert first.status == DSRStatus.PENDING
        assert first.version == 1
        assert first.request_number == f"DSR-{first.sequence:06d}"
        assert second.sequence > first.sequence
        assert second.request_number != first.request_number

    @pytest.mark.asyncio
    @pytest.mark.parametrize("notes", [None, "please stop", ""])
    async def test_withdraw_consent_needs_purpose(
        self, db_session: AsyncSession, test_settings: Settings, contact_id: uuid.UUID, notes: str | None
    ) -> None:
        workflow = DsrWorkflow(db_session, test_settings)
        with pytest.raises(ValidationFailed, match="purpose"):
            await workflow.create(
                contact_id=contact_id, dsr_type=DSRType.WITHDRAW_CONSENT, actor_id=None, notes=notes
            )

    @pytest.mark.asyncio
    async def test_get_unknown_request(self, db_session: AsyncSession, test_settings: Settings) -> None:
        with pytest.raises(NotFound):
            await DsrWorkflow(db_session, test_settings).get(uuid.uuid4())

    @pytest.mark.asyncio
    async def test_list_newest_first_with_total(
        self, db_session: AsyncSession, test_settings: Settings, contact_id: uuid.UUID
    ) -> None:
        workflow = DsrWorkflow(db_session, test_settings)
        created = [
            await workflow.create(contact_id=contact_id, dsr_type=DSRType.ACCESS, actor_id=None) for _ in range(3)
        ]

        page, total = await workflow.list(limit=2)

        assert total == 3
        assert [r.id for r in page] == [created[2].id, created[1].id]

    @pytest.mark.asyncio
    async def test_list_filters_by_status(
        self, db_session: AsyncSession, test_settings: Settings, contact_id: uuid.UUID
    ) -> None:
        workflow = DsrWorkflow(db_session, test_settings)
        await workflow.create(contact_id=contact_id, dsr_type=DSRType.ACCESS, actor_id=None)

        assert (await workflow.list(status=DSRStatus.PENDING))[1] == 1
        assert (await workflow.list(status=DSRStatus.COMPLETED))[1] == 0


class TestTransition:
    """Tests for DsrWorkflow.transition against the database."""

    @pytest.mark.asyncio
    async def test_full_lifecycle_bumps_version(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        test_settings: Settings,
        contact_id: uuid.UUID,
    ) -> None:
        manager, admin = _principal(UserRole.MANAGER), _principal(UserRole.ADMIN)
        request_id = await _open(session_factory, test_settings, contact_id, DSRType.ACCESS)

        assigned = await _transition(
            session_factory, test_settings, request_id, DSRStatus.IN_PROGRESS, assignee=manager
        )
        completed = await _transition(session_factory, test_settings, request_id, DSRStatus.COMPLETED, verifier=admin)

        assert assigned.applied is True
        assert assigned.request.version == 2
        assert assigned.request.assigned_to == manager.id
        assert completed.applied is True
        assert completed.request.status == DSRStatus.COMPLETED
        assert completed.request.version == 3
        assert completed.request.verified_by == admin.id
        assert completed.request.completed_at is not None

    @pytest.mark.asyncio
    async def test_pending_cannot_complete(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        test_settings: Settings,
        contact_id: uuid.UUID,
    ) -> None:
        request_id = await _open(session_factory, test_settings, contact_id)

        with pytest.raises(InvalidTransition):
            await _transition(
                session_factory, test_settings, request_id, DSRStatus.COMPLETED, verifier=_principal(UserRole.ADMIN)
            )

    @pytest.mark.asyncio
    async def test_repeat_transition_is_noop(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        test_settings: Settings,
        contact_id: uuid.UUID,
    ) -> None:
        manager = _principal(UserRole.MANAGER)
        request_id = await _open(session_factory, test_settings, contact_id)
        await _transition(session_factory, test_settings, request_id, DSRStatus.IN_PROGRESS, assignee=manager)

        again = await _transition(session_factory, test_settings, request_id, DSRStatus.IN_PROGRESS, assignee=manager)

        assert again.applied is False
        assert again.request.version == 2

    @pytest.mark.asyncio
    async def test_delete_completion_withdraws_consent_and_queues_erasure(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        test_settings: Settings,
        contact_id: uuid.UUID,
    ) -> None:
        manager, admin = _principal(UserRole.MANAGER), _principal(UserRole.ADMIN)
        await _grant(session_factory, contact_id, ConsentPurpose.MARKETING, ConsentPurpose.ANALYTICS)
        request_id = await _open(session_factory, test_settings, contact_id)
        await _transition(session_factory, test_settings, request_id, DSRStatus.IN_PROGRESS, assignee=manager)

        result = await _transition(session_factory, test_settings, request_id, DSRStatus.COMPLETED, verifier=admin)

        assert {r.purpose for r in result.withdrawals} == {ConsentPurpose.MARKETING, ConsentPurpose.ANALYTICS}
        async with session_factory() as session:
            ledger = ConsentLedger(session)
            states = await ledger.current_states(contact_id)
            history = await ledger.history(contact_id)
            tasks = (await session.execute(select(ErasureTask))).scalars().all()

        assert states[ConsentPurpose.MARKETING] == ConsentState.WITHDRAWN
        assert states[ConsentPurpose.ANALYTICS] == ConsentState.WITHDRAWN
        assert states[ConsentPurpose.SALES] == ConsentState.UNKNOWN
        withdrawals = [r for r in history if not r.granted]
        assert {r.purpose for r in withdrawals} == {ConsentPurpose.MARKETING, ConsentPurpose.ANALYTICS}
        assert all(r.source == "dsr" and r.dsr_request_id == request_id for r in withdrawals)
        assert all(r.recorded_by == admin.id for r in withdrawals)
        assert len(tasks) == 1
        assert tasks[0].contact_id == contact_id

    @pytest.mark.asyncio
    async def test_withdraw_consent_completion_withdraws_named_purpose(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        test_settings: Settings,
        contact_id: uuid.UUID,
    ) -> None:
        manager = _principal(UserRole.MANAGER)
        await _grant(session_factory, contact_id, ConsentPurpose.MARKETING, ConsentPurpose.SALES)
        request_id = await _open(session_factory, test_settings, contact_id, DSRType.WITHDRAW_CONSENT, "marketing")
        await _transition(session_factory, test_settings, request_id, DSRStatus.IN_PROGRESS, assignee=manager)

        # Not a dual-control type, so the assignee may verify.
        await _transition(session_factory, test_settings, request_id, DSRStatus.COMPLETED, verifier=manager)

        async with session_factory() as session:
            states = await ConsentLedger(session).current_states(contact_id)
        assert states[ConsentPurpose.MARKETING] == ConsentState.WITHDRAWN
        assert states[ConsentPurpose.SALES] == ConsentState.GRANTED
        assert await _count(session_factory, select(func.count()).select_from(ErasureTask)) == 0

    @pytest.mark.asyncio
    async def test_rejection_has_no_side_effects(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        test_settings: Settings,
        contact_id: uuid.UUID,
    ) -> None:
        await _grant(session_factory, contact_id, ConsentPurpose.MARKETING)
        request_id = await _open(session_factory, test_settings, contact_id)
        await _transition(
            session_factory, test_settings, request_id, DSRStatus.IN_PROGRESS, assignee=_principal(UserRole.QA)
        )

        result = await _transition(
            session_factory, test_settings, request_id, DSRStatus.REJECTED, reason="identity not verified"
        )

        assert result.request.status == DSRStatus.REJECTED
        assert result.request.rejection_reason == "identity not verified"
        assert await _count(session_factory, select(func.count()).select_from(ErasureTask)) == 0
        assert await _count(session_factory, select(func.count()).select_from(ConsentRecord)) == 1


class TestConcurrentTransitions:
    """Only one of several racing transitions applies."""

    async def _in_progress_delete(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        settings: Settings,
        contact_id: uuid.UUID,
    ) -> uuid.UUID:
        await _grant(session_factory, contact_id, ConsentPurpose.MARKETING)
        request_id = await _open(session_factory, settings, contact_id)
        await _transition(
            session_factory, settings, request_id, DSRStatus.IN_PROGRESS, assignee=_principal(UserRole.MANAGER)
        )
        return request_id

    async def _side_effect_counts(
        self, session_factory: async_sessionmaker[AsyncSession], request_id: uuid.UUID
    ) -> tuple[int, int]:
        tasks = await _count(
            session_factory,
            select(func.count()).select_from(ErasureTask).where(ErasureTask.dsr_request_id == request_id),
        )
        withdrawals = await _count(
            session_factory,
            select(func.count()).select_from(ConsentRecord).where(ConsentRecord.dsr_request_id == request_id),
        )
        return tasks, withdrawals

    @pytest.mark.asyncio
    async def test_stale_completion_is_noop(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        test_settings: Settings,
        contact_id: uuid.UUID,
    ) -> None:
        """A caller holding a stale copy loses the CAS and runs no side effects."""
        request_id = await self._in_progress_delete(session_factory, test_settings, contact_id)

        async with session_factory() as stale_session:
            stale = DsrWorkflow(stale_session, test_settings)
            await stale.get(request_id)

            winner = await _transition(
                session_factory, test_settings, request_id, DSRStatus.COMPLETED, verifier=_principal(UserRole.ADMIN)
            )
            loser = await stale.transition(request_id, DSRStatus.COMPLETED, verifier=_principal(UserRole.QA))
            await stale_session.commit()

        assert winner.applied is True
        assert loser.applied is False
        assert loser.request.status == DSRStatus.COMPLETED
        assert loser.request.version == winner.request.version
        assert await self._side_effect_counts(session_factory, request_id) == (1, 1)

    @pytest.mark.asyncio
    async def test_stale_rejection_after_completion_fails(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        test_settings: Settings,
        contact_id: uuid.UUID,
    ) -> None:
        request_id = await self._in_progress_delete(session_factory, test_settings, contact_id)

        async with session_factory() as stale_session:
            stale = DsrWorkflow(stale_session, test_settings)
            await stale.get(request_id)

            await _transition(
                session_factory, test_settings, request_id, DSRStatus.COMPLETED, verifier=_principal(UserRole.ADMIN)
            )
            with pytest.raises(InvalidTransition):
                await stale.transition(request_id, DSRStatus.REJECTED, reason="duplicate request")
            await stale_session.rollback()

        async with session_factory() as session:
            final = await DsrWorkflow(session, test_settings).get(request_id)
        assert final.status == DSRStatus.COMPLETED
        assert final.rejection_reason is None

    @pytest.mark.asyncio
    async def test_rejection_losing_race_to_completion_fails(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        test_settings: Settings,
        contact_id: uuid.UUID,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        """The rejecter validated against in_progress, but completion committed first."""
        request_id = await self._in_progress_delete(session_factory, test_settings, contact_id)

        async with session_factory() as stale_session:
            stale = DsrWorkflow(stale_session, test_settings)
            snapshot = await stale.get(request_id)
            stale_session.expunge(snapshot)

            async def _stale_get(_request_id: uuid.UUID) -> DSRRequest:
                return snapshot

            monkeypatch.setattr(stale, "get", _stale_get)

            await _transition(
                session_factory, test_settings, request_id, DSRStatus.COMPLETED, verifier=_principal(UserRole.ADMIN)
            )
            with pytest.raises(InvalidTransition, match="concurrent update") as exc_info:
                await stale.transition(request_id, DSRStatus.REJECTED, reason="duplicate request")
            await stale_session.rollback()

        assert exc_info.value.from_status == DSRStatus.COMPLETED.value
        assert exc_info.value.to_status == DSRStatus.REJECTED.value
        async with session_factory() as session:
            final = await DsrWorkflow(session, test_settings).get(request_id)
        assert final.status == DSRStatus.COMPLETED
        assert final.rejection_reason is None
        assert await self._side_effect_counts(session_factory, request_id) == (1, 1)

    @pytest.mark.asyncio
    async def test_parallel_completions_apply_once(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        test_settings: Settings,
        contact_id: uuid.UUID,
    ) -> None:
        request_id = await self._in_progress_delete(session_factory, test_settings, contact_id)

        results = await asyncio.gather(
            _transition(
                session_factory, test_settings, request_id, DSRStatus.COMPLETED, verifier=_principal(UserRole.ADMIN)
            ),
            _transition(
                session_factory, test_settings, request_id, DSRStatus.COMPLETED, verifier=_principal(UserRole.QA)
            ),
        )

        assert sorted(r.applied for r in results) == [False, True]
        assert await self._side_effect_counts(session_factory, request_id) == (1, 1)
