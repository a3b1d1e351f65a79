"""Tests for the mutation flows."""

import pytest

from project_tracker.audit import ActivityLogger
from project_tracker.errors import (
    NotAuthenticatedError,
    NotAuthorizedError,
    NotFoundError,
    ValidationError,
)
from project_tracker.models.records import (
    ACTIVITIES,
    AGGREGATIONS,
    BREAKDOWNS,
    RollupStatus,
)
from project_tracker.orchestrator import (
    BreakdownMutationFlow,
    ProjectMutationFlow,
    SubtotalFlow,
    create_app_components,
)
from project_tracker.services.identity import StaticIdentityProvider

from tests.helpers import (
    SpyRecalculationService,
    insert_project,
    make_breakdown,
)


async def counters(store, project_id):
    project = await store.get(project_id)
    return (
        project["project_completed"],
        project["project_delayed"],
        project["projects_on_track"],
    )


async def activities(store, action=None):
    records = await store.query(ACTIVITIES).collect()
    if action:
        records = [r for r in records if r["action"] == action]
    return records


class TestBreakdownLifecycle:
    """Create, update and delete a breakdown under one project."""

    @pytest.mark.asyncio
    async def test_create_update_delete_scenario(self, store, breakdown_flow):
        p1 = await insert_project(store)

        created = await breakdown_flow.create_breakdown(make_breakdown(p1, status="ongoing"))
        assert await counters(store, p1) == (0, 0, 1)
        assert created.affected_project_ids == [p1]
        assert created.rollup_status == RollupStatus.CONSISTENT

        await breakdown_flow.update_breakdown(created.breakdown_id, {"status": "completed"})
        assert await counters(store, p1) == (1, 0, 0)

        await breakdown_flow.delete_breakdown(created.breakdown_id)
        assert await counters(store, p1) == (0, 0, 0)

        logged = [r["action"] for r in await activities(store)]
        assert logged == ["created", "updated", "deleted"]

    @pytest.mark.asyncio
    async def test_create_without_parent(self, store, breakdown_flow, recalculation):
        result = await breakdown_flow.create_breakdown(make_breakdown())

        assert result.affected_project_ids == []
        assert result.rollup_status == RollupStatus.CONSISTENT
        assert recalculation.calls == []
        record = await store.get(result.breakdown_id)
        assert record["created_by"] == "user-1"

    @pytest.mark.asyncio
    async def test_create_with_missing_parent(self, store, breakdown_flow):
        with pytest.raises(NotFoundError):
            await breakdown_flow.create_breakdown(make_breakdown("missing"))
        assert await store.query(BREAKDOWNS).collect() == []

    @pytest.mark.asyncio
    async def test_create_invalid_input(self, store, breakdown_flow):
        with pytest.raises(ValidationError) as exc_info:
            await breakdown_flow.create_breakdown({"project_name": "Road Works"})
        assert exc_info.value.details[0]["loc"] == ["implementing_office"]
        assert await store.query(BREAKDOWNS).collect() == []

    @pytest.mark.asyncio
    async def test_update_logs_status_diff(self, store, breakdown_flow):
        p1 = await insert_project(store)
        created = await breakdown_flow.create_breakdown(make_breakdown(p1, status="ongoing"))

        await breakdown_flow.update_breakdown(created.breakdown_id, {"status": "delayed"})

        [update] = await activities(store, "updated")
        assert update["changed_fields"] == ["status"]
        assert update["change_summary"]["status_changed"] is True

    @pytest.mark.asyncio
    async def test_move_between_projects(self, store, breakdown_flow):
        p1 = await insert_project(store, "One")
        p2 = await insert_project(store, "Two")
        created = await breakdown_flow.create_breakdown(make_breakdown(p1, status="completed"))

        result = await breakdown_flow.update_breakdown(created.breakdown_id, {"project_id": p2})

        assert result.affected_project_ids == [p1, p2]
        assert await counters(store, p1) == (0, 0, 0)
        assert await counters(store, p2) == (1, 0, 0)

    @pytest.mark.asyncio
    async def test_update_without_touching_parent(self, store, breakdown_flow):
        p1 = await insert_project(store)
        created = await breakdown_flow.create_breakdown(make_breakdown(p1))

        result = await breakdown_flow.update_breakdown(created.breakdown_id, {"remarks": "ok"})

        assert result.affected_project_ids == [p1]

    @pytest.mark.asyncio
    async def test_unlink_parent(self, store, breakdown_flow):
        p1 = await insert_project(store)
        created = await breakdown_flow.create_breakdown(make_breakdown(p1, status="delayed"))

        result = await breakdown_flow.update_breakdown(created.breakdown_id, {"project_id": None})

        assert result.affected_project_ids == [p1]
        assert await counters(store, p1) == (0, 0, 0)
        assert "project_id" not in await store.get(created.breakdown_id)

    @pytest.mark.asyncio
    async def test_update_missing_breakdown(self, breakdown_flow):
        with pytest.raises(NotFoundError) as exc_info:
            await breakdown_flow.update_breakdown("missing", {"remarks": "x"})
        assert exc_info.value.resource == "Breakdown"

    @pytest.mark.asyncio
    async def test_update_to_missing_parent(self, store, breakdown_flow):
        created = await breakdown_flow.create_breakdown(make_breakdown())
        with pytest.raises(NotFoundError):
            await breakdown_flow.update_breakdown(created.breakdown_id, {"project_id": "missing"})

    @pytest.mark.asyncio
    async def test_delete_missing_breakdown(self, breakdown_flow):
        with pytest.raises(NotFoundError):
            await breakdown_flow.delete_breakdown("missing")

    @pytest.mark.asyncio
    async def test_activity_logged_before_recalc(self, store, breakdown_flow):
        p1 = await insert_project(store)
        await breakdown_flow.create_breakdown(make_breakdown(p1, status="ongoing"))

        [created] = await activities(store, "created")
        project = await store.get(p1)
        assert created["creation_time"] <= project["updated_at"].timestamp()


class TestAuthentication:
    """Every entrypoint needs a principal."""

    @pytest.mark.asyncio
    async def test_create_requires_principal(self, store, anonymous):
        flow = BreakdownMutationFlow(store, anonymous)
        with pytest.raises(NotAuthenticatedError):
            await flow.create_breakdown(make_breakdown())
        assert await store.query(BREAKDOWNS).collect() == []

    @pytest.mark.asyncio
    async def test_bulk_requires_principal(self, store, anonymous):
        flow = BreakdownMutationFlow(store, anonymous)
        with pytest.raises(NotAuthenticatedError):
            await flow.bulk_delete_breakdowns(["x"])

    @pytest.mark.asyncio
    async def test_recalculate_all_requires_elevated_role(self, store, breakdown_flow):
        with pytest.raises(NotAuthorizedError):
            await breakdown_flow.recalculate_all_projects()

    @pytest.mark.asyncio
    async def test_recalculate_all_as_admin(self, store, admin):
        p1 = await insert_project(store, project_completed=9)
        flow = BreakdownMutationFlow(
            store,
            StaticIdentityProvider(admin),
            recalculation=SpyRecalculationService(store),
        )

        batch = await flow.recalculate_all_projects()

        assert batch.all_succeeded
        assert await counters(store, p1) == (0, 0, 0)

    @pytest.mark.asyncio
    async def test_recalculate_project(self, store, breakdown_flow):
        p1 = await insert_project(store, project_delayed=4)
        result = await breakdown_flow.recalculate_project(p1)
        assert result.counters == (0, 0, 0)


class TestCascadeFailures:
    """A failed parent recalculation never undoes the child write."""

    @pytest.mark.asyncio
    async def test_stale_parent_reported(self, flaky_store, identity):
        p1 = await insert_project(flaky_store)
        flaky_store.failing_patch_ids.add(p1)
        flow = BreakdownMutationFlow(
            flaky_store,
            identity,
            recalculation=SpyRecalculationService(flaky_store),
        )

        result = await flow.create_breakdown(make_breakdown(p1, status="completed"))

        assert result.rollup_status == RollupStatus.STALE
        assert result.failed_project_ids == [p1]
        assert await flaky_store.get(result.breakdown_id) is not None

    @pytest.mark.asyncio
    async def test_other_parent_still_recalculated(self, flaky_store, identity):
        p1 = await insert_project(flaky_store, "One")
        p2 = await insert_project(flaky_store, "Two")
        flow = BreakdownMutationFlow(
            flaky_store,
            identity,
            recalculation=SpyRecalculationService(flaky_store),
        )
        created = await flow.create_breakdown(make_breakdown(p1, status="ongoing"))
        flaky_store.failing_patch_ids.add(p1)

        result = await flow.update_breakdown(created.breakdown_id, {"project_id": p2})

        assert result.failed_project_ids == [p1]
        assert [r.project_id for r in result.recalculations] == [p2]
        assert await counters(flaky_store, p2) == (0, 0, 1)

    @pytest.mark.asyncio
    async def test_activity_failure_does_not_fail_mutation(self, flaky_store, identity):
        flaky_store.fail_collections.add(ACTIVITIES)
        flow = BreakdownMutationFlow(
            flaky_store,
            identity,
            audit_logger=ActivityLogger(flaky_store, retry_attempts=1, retry_wait_seconds=0),
            recalculation=SpyRecalculationService(flaky_store),
        )

        result = await flow.create_breakdown(make_breakdown())

        assert await flaky_store.get(result.breakdown_id) is not None


class TestBulkOperations:
    """Bulk create/update/delete."""

    @pytest.mark.asyncio
    async def test_bulk_create(self, store, breakdown_flow, recalculation):
        p1 = await insert_project(store, "One")
        p2 = await insert_project(store, "Two")
        items = [
            make_breakdown(p1, status="completed"),
            make_breakdown(p1, status="delayed"),
            make_breakdown(p2, status="ongoing"),
            make_breakdown(),
        ]

        result = await breakdown_flow.bulk_create_breakdowns(items)

        assert result.count == 4
        assert result.affected_projects == 2
        assert recalculation.calls == [p1, p2]
        assert await counters(store, p1) == (1, 1, 0)
        assert await counters(store, p2) == (0, 0, 1)

        logged = await store.query(ACTIVITIES).with_index("batch_id", batch_id=result.batch_id).collect()
        assert len(logged) == 4
        assert all(r["action"] == "bulk_created" for r in logged)
        assert all(r["reason"] == "Excel import" for r in logged)

    @pytest.mark.asyncio
    async def test_bulk_create_validates_everything_first(self, store, breakdown_flow):
        items = [make_breakdown(), {"project_name": "No office"}]

        with pytest.raises(ValidationError) as exc_info:
            await breakdown_flow.bulk_create_breakdowns(items)

        assert exc_info.value.details[0]["index"] == 1
        assert await store.query(BREAKDOWNS).collect() == []

    @pytest.mark.asyncio
    async def test_bulk_create_checks_parents_first(self, store, breakdown_flow):
        p1 = await insert_project(store)
        with pytest.raises(NotFoundError):
            await breakdown_flow.bulk_create_breakdowns([
                make_breakdown(p1),
                make_breakdown("missing"),
            ])
        assert await store.query(BREAKDOWNS).collect() == []

    @pytest.mark.asyncio
    async def test_bulk_update_recalcs_parent_once(self, store, breakdown_flow, recalculation):
        p1 = await insert_project(store)
        created = await breakdown_flow.bulk_create_breakdowns(
            [make_breakdown(p1, status="ongoing") for _ in range(5)]
        )
        recalculation.calls.clear()

        result = await breakdown_flow.bulk_update_breakdowns(
            [{"breakdown_id": i, "status": "completed"} for i in created.ids],
            reason="Status sweep",
        )

        assert result.count == 5
        assert recalculation.calls == [p1]
        assert await counters(store, p1) == (5, 0, 0)

        logged = await store.query(ACTIVITIES).with_index("batch_id", batch_id=result.batch_id).collect()
        assert all(r["changed_fields"] == ["status"] for r in logged)
        assert all(r["reason"] == "Status sweep" for r in logged)

    @pytest.mark.asyncio
    async def test_bulk_update_skips_missing(self, store, breakdown_flow):
        created = await breakdown_flow.create_breakdown(make_breakdown())

        result = await breakdown_flow.bulk_update_breakdowns([
            {"breakdown_id": created.breakdown_id, "remarks": "x"},
            {"breakdown_id": "gone", "remarks": "y"},
        ])

        assert result.ids == [created.breakdown_id]
        assert result.skipped_ids == ["gone"]

    @pytest.mark.asyncio
    async def test_bulk_update_moves_affect_both_parents(self, store, breakdown_flow, recalculation):
        p1 = await insert_project(store, "One")
        p2 = await insert_project(store, "Two")
        created = await breakdown_flow.create_breakdown(make_breakdown(p1, status="delayed"))
        recalculation.calls.clear()

        result = await breakdown_flow.bulk_update_breakdowns(
            [{"breakdown_id": created.breakdown_id, "project_id": p2}]
        )

        assert result.affected_projects == 2
        assert recalculation.calls == [p1, p2]
        assert await counters(store, p2) == (0, 1, 0)

    @pytest.mark.asyncio
    async def test_bulk_update_requires_ids(self, breakdown_flow):
        with pytest.raises(ValidationError):
            await breakdown_flow.bulk_update_breakdowns([{"remarks": "no id"}])

    @pytest.mark.asyncio
    async def test_bulk_delete(self, store, breakdown_flow, recalculation):
        p1 = await insert_project(store)
        created = await breakdown_flow.bulk_create_breakdowns(
            [make_breakdown(p1, status="completed") for _ in range(3)]
        )
        recalculation.calls.clear()

        result = await breakdown_flow.bulk_delete_breakdowns(created.ids + ["gone"])

        assert result.count == 3
        assert result.skipped_ids == ["gone"]
        assert recalculation.calls == [p1]
        assert await counters(store, p1) == (0, 0, 0)

        logged = await store.query(ACTIVITIES).with_index("batch_id", batch_id=result.batch_id).collect()
        assert all(r["reason"] == "Bulk deletion" for r in logged)


class TestActivityOnlyOperations:
    """View and export logging."""

    @pytest.mark.asyncio
    async def test_log_view(self, store, breakdown_flow):
        created = await breakdown_flow.create_breakdown(make_breakdown())
        activity_id = await breakdown_flow.log_breakdown_view(created.breakdown_id)
        assert (await store.get(activity_id))["action"] == "viewed"

    @pytest.mark.asyncio
    async def test_log_export(self, store, breakdown_flow):
        a = await breakdown_flow.create_breakdown(make_breakdown())
        b = await breakdown_flow.create_breakdown(make_breakdown())

        batch_id = await breakdown_flow.log_breakdown_export(
            [a.breakdown_id, b.breakdown_id, "gone"], "xlsx"
        )

        logged = await store.query(ACTIVITIES).with_index("batch_id", batch_id=batch_id).collect()
        assert [r["entity_id"] for r in logged] == [a.breakdown_id, b.breakdown_id]
        assert all(r["reason"] == "Exported as xlsx" for r in logged)


class TestProjectMutationFlow:
    """Project create/update/delete."""

    @pytest.mark.asyncio
    async def test_create_project_starts_at_zero(self, store, project_flow):
        project_id = await project_flow.create_project(
            {"project_name": "Bridge", "implementing_office": "PEO"}
        )
        assert await counters(store, project_id) == (0, 0, 0)

    @pytest.mark.asyncio
    async def test_update_rejects_rollup_fields(self, store, project_flow):
        project_id = await project_flow.create_project(
            {"project_name": "Bridge", "implementing_office": "PEO"}
        )
        with pytest.raises(ValidationError):
            await project_flow.update_project(project_id, {"project_completed": 5})

    @pytest.mark.asyncio
    async def test_update_logs_budget_change(self, store, project_flow):
        project_id = await project_flow.create_project(
            {"project_name": "Bridge", "implementing_office": "PEO", "total_budget_allocated": 10}
        )

        await project_flow.update_project(project_id, {"total_budget_allocated": 20})

        [update] = await activities(store, "updated")
        assert update["entity_type"] == "project"
        assert update["change_summary"]["old_budget"] == 10
        assert update["change_summary"]["new_budget"] == 20

    @pytest.mark.asyncio
    async def test_delete_leaves_children(self, store, project_flow, breakdown_flow):
        project_id = await project_flow.create_project(
            {"project_name": "Bridge", "implementing_office": "PEO"}
        )
        child = await breakdown_flow.create_breakdown(make_breakdown(project_id))

        await project_flow.delete_project(project_id)

        assert await store.get(project_id) is None
        assert (await store.get(child.breakdown_id))["project_id"] == project_id

    @pytest.mark.asyncio
    async def test_delete_missing_project(self, project_flow):
        with pytest.raises(NotFoundError):
            await project_flow.delete_project("missing")


class TestSubtotalFlow:
    """Breakdown subtotal refresh."""

    @pytest.mark.asyncio
    async def test_refresh_groups_by_name_and_office(self, store, subtotal_flow, breakdown_flow):
        await breakdown_flow.create_breakdown(make_breakdown(allocated_budget=100))
        await breakdown_flow.create_breakdown(make_breakdown(allocated_budget=200))
        await breakdown_flow.create_breakdown(
            make_breakdown(implementing_office="Health", allocated_budget=50)
        )

        outcomes = await subtotal_flow.refresh_breakdown_subtotals()

        assert len(outcomes) == 2
        records = await store.query(AGGREGATIONS).collect()
        by_office = {r["grouping_keys"]["key2"]: r for r in records}
        assert by_office["Engineering"]["aggregated_values"]["value1"] == 300
        assert by_office["Engineering"]["row_count"] == 2
        assert by_office["Health"]["display_label"] == "Road Works - Health (Subtotal)"

    @pytest.mark.asyncio
    async def test_refresh_twice_updates_in_place(self, store, subtotal_flow, breakdown_flow):
        await breakdown_flow.create_breakdown(make_breakdown(allocated_budget=100))
        first = await subtotal_flow.refresh_breakdown_subtotals()
        await breakdown_flow.create_breakdown(make_breakdown(allocated_budget=1))

        second = await subtotal_flow.refresh_breakdown_subtotals("Road Works")

        assert second[0].updated
        assert second[0].aggregation_id == first[0].aggregation_id
        record = await store.get(first[0].aggregation_id)
        assert record["aggregated_values"]["value1"] == 101

    @pytest.mark.asyncio
    async def test_refresh_with_no_rows(self, subtotal_flow):
        assert await subtotal_flow.refresh_breakdown_subtotals("Nothing") == []


class TestAppComponents:
    """Factory wiring."""

    @pytest.mark.asyncio
    async def test_components_share_store(self, principal):
        breakdown_flow, project_flow, subtotal_flow, queries = create_app_components(
            identity=StaticIdentityProvider(principal)
        )
        assert isinstance(project_flow, ProjectMutationFlow)
        assert isinstance(subtotal_flow, SubtotalFlow)

        project_id = await project_flow.create_project(
            {"project_name": "Bridge", "implementing_office": "PEO"}
        )
        created = await breakdown_flow.create_breakdown(
            make_breakdown(project_id, status="ongoing")
        )

        assert (await queries.get_breakdown(created.breakdown_id))["project_id"] == project_id


class TestWrongEntityIds:
    """Ids of the wrong record kind are treated as missing."""

    @pytest.mark.asyncio
    async def test_breakdown_id_rejected_as_parent(self, store, breakdown_flow):
        first = await breakdown_flow.create_breakdown(make_breakdown())

        with pytest.raises(NotFoundError) as exc_info:
            await breakdown_flow.create_breakdown(
                make_breakdown(first.breakdown_id, status="ongoing")
            )

        assert exc_info.value.resource == "Project"
        stored = await store.get(first.breakdown_id)
        assert "project_completed" not in stored
        assert "projects_on_track" not in stored
        assert len(await store.query(BREAKDOWNS).collect()) == 1

    @pytest.mark.asyncio
    async def test_breakdown_id_rejected_as_new_parent(self, store, breakdown_flow):
        a = await breakdown_flow.create_breakdown(make_breakdown())
        b = await breakdown_flow.create_breakdown(make_breakdown())

        with pytest.raises(NotFoundError):
            await breakdown_flow.update_breakdown(a.breakdown_id, {"project_id": b.breakdown_id})

    @pytest.mark.asyncio
    async def test_project_id_rejected_by_breakdown_mutations(self, store, breakdown_flow):
        p1 = await insert_project(store)

        with pytest.raises(NotFoundError):
            await breakdown_flow.update_breakdown(p1, {"remarks": "x"})
        with pytest.raises(NotFoundError):
            await breakdown_flow.delete_breakdown(p1)
        with pytest.raises(NotFoundError):
            await breakdown_flow.log_breakdown_view(p1)

        assert await store.get(p1) is not None

    @pytest.mark.asyncio
    async def test_bulk_operations_skip_project_ids(self, store, breakdown_flow):
        p1 = await insert_project(store)

        updated = await breakdown_flow.bulk_update_breakdowns([{"breakdown_id": p1, "remarks": "x"}])
        deleted = await breakdown_flow.bulk_delete_breakdowns([p1])

        assert updated.skipped_ids == [p1]
        assert deleted.skipped_ids == [p1]
        project = await store.get(p1)
        assert "remarks" not in project

    @pytest.mark.asyncio
    async def test_bulk_create_rejects_breakdown_parent(self, store, breakdown_flow):
        first = await breakdown_flow.create_breakdown(make_breakdown())

        with pytest.raises(NotFoundError):
            await breakdown_flow.bulk_create_breakdowns([make_breakdown(first.breakdown_id)])

    @pytest.mark.asyncio
    async def test_project_flow_rejects_breakdown_ids(self, store, breakdown_flow, project_flow):
        created = await breakdown_flow.create_breakdown(make_breakdown())

        with pytest.raises(NotFoundError):
            await project_flow.update_project(created.breakdown_id, {"notes": "x"})
        with pytest.raises(NotFoundError):
            await project_flow.delete_project(created.breakdown_id)

        assert await store.get(created.breakdown_id) is not None

    @pytest.mark.asyncio
    async def test_recalculate_breakdown_id(self, breakdown_flow):
        created = await breakdown_flow.create_breakdown(make_breakdown())
        with pytest.raises(NotFoundError):
            await breakdown_flow.recalculate_project(created.breakdown_id)
