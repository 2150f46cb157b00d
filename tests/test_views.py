"""Tests for the escrow view builder."""

import pytest

from orbitwork.canonicaljson import canonical_escrows
from orbitwork.disputes import DisputeSettlementResolver
from orbitwork.ledger.exceptions import LedgerError
from orbitwork.types import DisplayStatus, EscrowStatus, MilestoneStatus
from orbitwork.views import EscrowViewBuilder, build_escrow

from conftest import (
    FREELANCER,
    ONE,
    OTHER,
    VIEWER,
    ZERO,
    FakeLedger,
    dispute_event,
    milestone_tuple,
    summary_tuple,
)


def _stub_escrow(ledger, escrow_id, summary, milestones):
    ledger.set(("getEscrowSummary", escrow_id), summary)
    for index, record in enumerate(milestones):
        ledger.set(("milestones", escrow_id, index), record)


class TestBuildEscrow:
    def test_projection(self):
        escrow = build_escrow(
            7,
            summary_tuple(status=1, paid=ONE),
            [milestone_tuple("Design", status=2), milestone_tuple("Build", status=1)],
            viewer=VIEWER,
        )
        assert escrow.id == 7
        assert escrow.payer == VIEWER
        assert escrow.beneficiary == FREELANCER
        assert escrow.released_amount == ONE
        assert escrow.status is EscrowStatus.ACTIVE
        assert escrow.display_status is DisplayStatus.ACTIVE
        assert escrow.duration_seconds == 86_400
        assert escrow.project_title == "Landing page"
        assert escrow.arbiters == (OTHER,)
        assert escrow.is_client
        assert not escrow.is_freelancer
        assert [m.status for m in escrow.milestones] == [MilestoneStatus.APPROVED, MilestoneStatus.SUBMITTED]

    def test_disputed_milestone_terminates(self):
        escrow = build_escrow(1, summary_tuple(status=1), [milestone_tuple(status=3)])
        assert escrow.display_status is DisplayStatus.TERMINATED

    def test_named_summary(self):
        summary = {"depositor": VIEWER, "beneficiary": ZERO, "status": 0, "isOpenJob": True, "projectTitle": "Open"}
        escrow = build_escrow(2, summary, [])
        assert escrow.is_open_job
        assert escrow.display_status is DisplayStatus.PENDING
        assert escrow.milestone_count == 0

    def test_identical_input_is_byte_identical(self):
        summary = summary_tuple(paid=ONE)
        records = [milestone_tuple(status=2), milestone_tuple("Build", status=4, disputed_by=OTHER, reason="half")]
        first = canonical_escrows([build_escrow(1, summary, records, VIEWER)])
        second = canonical_escrows([build_escrow(1, summary, records, VIEWER)])
        assert first == second


class TestEscrowViewBuilder:
    @pytest.mark.asyncio
    async def test_failed_milestone_read_becomes_placeholder(self, ledger):
        ledger.set("nextEscrowId", 2)
        ledger.set(("getEscrowSummary", 1), summary_tuple(milestone_count=2))
        ledger.set(("milestones", 1, 0), milestone_tuple(status=1))
        ledger.set(("milestones", 1, 1), LedgerError("rpc down"))

        escrow = await EscrowViewBuilder(ledger).fetch_escrow(1)

        assert escrow.milestones[0].status is MilestoneStatus.SUBMITTED
        assert escrow.milestones[1].is_placeholder
        assert escrow.milestones[1].status is MilestoneStatus.PENDING

    @pytest.mark.asyncio
    async def test_undecodable_escrow_is_skipped(self, ledger):
        ledger.set("nextEscrowId", 3)
        _stub_escrow(ledger, 1, summary_tuple(milestone_count=1), [milestone_tuple()])
        ledger.set(("getEscrowSummary", 2), LedgerError("reverted"))

        escrows = await EscrowViewBuilder(ledger).fetch_escrows()

        assert [e.id for e in escrows] == [1]

    @pytest.mark.asyncio
    async def test_viewer_filter(self, ledger):
        ledger.set("nextEscrowId", 3)
        _stub_escrow(ledger, 1, summary_tuple(milestone_count=0), [])
        _stub_escrow(ledger, 2, summary_tuple(depositor=OTHER, beneficiary=OTHER, milestone_count=0), [])

        builder = EscrowViewBuilder(ledger, viewer=VIEWER)
        assert [e.id for e in await builder.fetch_escrows()] == [1]
        assert [e.id for e in await builder.fetch_escrows(include_all=True)] == [1, 2]

    @pytest.mark.asyncio
    async def test_windows_cover_every_id(self, ledger):
        ledger.set("nextEscrowId", 6)
        for escrow_id in range(1, 6):
            _stub_escrow(ledger, escrow_id, summary_tuple(milestone_count=0), [])

        escrows = await EscrowViewBuilder(ledger, concurrency=2).fetch_escrows()

        assert [e.id for e in escrows] == [1, 2, 3, 4, 5]

    @pytest.mark.asyncio
    async def test_refresh_is_byte_identical(self, ledger):
        ledger.set("nextEscrowId", 2)
        _stub_escrow(ledger, 1, summary_tuple(paid=ONE), [milestone_tuple(status=2), milestone_tuple(status=1)])
        builder = EscrowViewBuilder(ledger, viewer=VIEWER)

        assert canonical_escrows(await builder.fetch_escrows()) == canonical_escrows(await builder.fetch_escrows())

    @pytest.mark.asyncio
    async def test_attaches_settlement(self, ledger):
        ledger.set("nextEscrowId", 2)
        _stub_escrow(
            ledger,
            1,
            summary_tuple(milestone_count=1),
            [milestone_tuple(status=4, disputed_by=FREELANCER, reason="split")],
        )
        ledger.events.append(dispute_event(1, 0, ONE, ONE // 2, block=900))
        builder = EscrowViewBuilder(ledger, settlements=DisputeSettlementResolver(ledger))

        escrow = (await builder.fetch_escrows())[0]

        milestone = escrow.milestones[0]
        assert milestone.status is MilestoneStatus.RESOLVED
        assert milestone.freelancer_amount == 1.0
        assert milestone.client_amount == 0.5
        assert escrow.display_status is DisplayStatus.DISPUTE_RESOLVED

    @pytest.mark.asyncio
    async def test_unknown_settlement_keeps_status(self, ledger):
        ledger.unreachable = True
        ledger.set("nextEscrowId", 2)
        _stub_escrow(ledger, 1, summary_tuple(milestone_count=1), [milestone_tuple(status=4)])
        builder = EscrowViewBuilder(ledger, settlements=DisputeSettlementResolver(ledger))

        milestone = (await builder.fetch_escrows())[0].milestones[0]

        assert milestone.status is MilestoneStatus.RESOLVED
        assert milestone.freelancer_amount is None

    def test_rejects_zero_concurrency(self, ledger):
        with pytest.raises(ValueError):
            EscrowViewBuilder(ledger, concurrency=0)


class TestPendingApprovals:
    @pytest.mark.asyncio
    async def test_open_job_with_applications(self, ledger):
        ledger.set("nextEscrowId", 3)
        ledger.set(("getEscrowSummary", 1), summary_tuple())
        ledger.set(("getEscrowSummary", 2), summary_tuple(beneficiary=ZERO, is_open_job=True))
        ledger.set(("getApplicationCount", 2), 2)

        assert await EscrowViewBuilder(ledger, viewer=VIEWER).has_pending_approvals()

    @pytest.mark.asyncio
    async def test_no_applications(self, ledger):
        ledger.set("nextEscrowId", 2)
        ledger.set(("getEscrowSummary", 1), summary_tuple(beneficiary=ZERO, is_open_job=True))
        ledger.set(("getApplicationCount", 1), 0)

        assert not await EscrowViewBuilder(ledger, viewer=VIEWER).has_pending_approvals()

    @pytest.mark.asyncio
    async def test_other_creator(self, ledger):
        ledger.set("nextEscrowId", 2)
        ledger.set(("getEscrowSummary", 1), summary_tuple(depositor=OTHER, beneficiary=ZERO))
        ledger.set(("getApplicationCount", 1), 5)

        assert not await EscrowViewBuilder(ledger, viewer=VIEWER).has_pending_approvals()

    @pytest.mark.asyncio
    async def test_without_viewer(self):
        assert not await EscrowViewBuilder(FakeLedger()).has_pending_approvals()


class TestBoundedConcurrency:
    @pytest.mark.asyncio
    async def test_reads_in_flight_never_exceed_limit(self, ledger):
        ledger.yielding = True
        ledger.set("nextEscrowId", 61)
        for escrow_id in range(1, 61):
            _stub_escrow(
                ledger,
                escrow_id,
                summary_tuple(milestone_count=5),
                [milestone_tuple(f"m{i}") for i in range(5)],
            )

        escrows = await EscrowViewBuilder(ledger).fetch_escrows()

        assert len(escrows) == 60
        assert all(len(e.milestones) == 5 for e in escrows)
        assert 1 < ledger.peak_in_flight <= 20

    @pytest.mark.asyncio
    async def test_custom_limit(self, ledger):
        ledger.yielding = True
        ledger.set("nextEscrowId", 11)
        for escrow_id in range(1, 11):
            _stub_escrow(ledger, escrow_id, summary_tuple(milestone_count=3), [milestone_tuple()] * 3)

        await EscrowViewBuilder(ledger, concurrency=4).fetch_escrows()

        assert ledger.peak_in_flight <= 4


class TestViewerRoles:
    @pytest.mark.asyncio
    async def test_freelancer(self, ledger):
        ledger.set("nextEscrowId", 3)
        ledger.set(("getEscrowSummary", 1), LedgerError("missing"))
        ledger.set(("getEscrowSummary", 2), summary_tuple(depositor=OTHER, beneficiary=VIEWER))

        builder = EscrowViewBuilder(ledger, viewer=VIEWER)

        assert await builder.is_freelancer()
        assert not await builder.is_job_creator()

    @pytest.mark.asyncio
    async def test_job_creator(self, ledger):
        ledger.set("nextEscrowId", 2)
        ledger.set(("getEscrowSummary", 1), summary_tuple())

        builder = EscrowViewBuilder(ledger, viewer=VIEWER)

        assert await builder.is_job_creator()
        assert not await builder.is_freelancer()

    @pytest.mark.asyncio
    async def test_no_escrows(self, ledger):
        ledger.set("nextEscrowId", 1)
        builder = EscrowViewBuilder(ledger, viewer=VIEWER)

        assert not await builder.is_freelancer()
        assert not await builder.is_job_creator()

    @pytest.mark.asyncio
    async def test_arbiter_from_registry(self, ledger):
        ledger.set(("authorizedArbiters", OTHER), True)

        assert await EscrowViewBuilder(ledger, viewer=OTHER).is_arbiter()
        assert ("getEscrowSummary", 1) not in ledger.calls

    @pytest.mark.asyncio
    async def test_registry_says_no(self, ledger):
        ledger.set(("authorizedArbiters", VIEWER), False)

        assert not await EscrowViewBuilder(ledger, viewer=VIEWER).is_arbiter()

    @pytest.mark.asyncio
    async def test_arbiter_falls_back_to_escrow_lists(self, ledger):
        ledger.set("authorizedArbiters", LedgerError("execution reverted"))
        ledger.set("nextEscrowId", 2)
        ledger.set(("getEscrowSummary", 1), summary_tuple(arbiters=(OTHER,)))

        assert await EscrowViewBuilder(ledger, viewer=OTHER).is_arbiter()
        assert not await EscrowViewBuilder(ledger, viewer=FREELANCER).is_arbiter()

    @pytest.mark.asyncio
    async def test_roles_without_viewer(self, ledger):
        builder = EscrowViewBuilder(ledger)

        assert not await builder.is_freelancer()
        assert not await builder.is_job_creator()
        assert not await builder.is_arbiter()
        assert ledger.calls == []
