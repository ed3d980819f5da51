"""Tests for WorkflowStateMachine."""

import pytest

from helpers import blocked, failed, make_entry, passed
from taskrelay.application.state_machine import (
    BLOCKED_ACTION,
    EXHAUSTED_ACTION,
    WorkflowStateMachine,
)
from taskrelay.domain.audit_event import AuditEventType
from taskrelay.domain.exceptions import (
    EscalationRequired,
    RetryBudgetExhausted,
    TaskAlreadyRunning,
    UnknownCommand,
    WorkflowAborted,
    WorkflowIntegrityError,
)
from taskrelay.domain.models import (
    FindingKind,
    StepKind,
    StepStatus,
    TaskStatus,
)
from taskrelay.domain.selection import ProtocolRegistry
from taskrelay.domain.workflow import StepDefinition, TemplateCatalog, WorkflowTemplate
from taskrelay.infrastructure.registry import load_registry
from taskrelay.infrastructure.workers.scripted import ScriptedWorker

IMPLEMENT_STEPS = ["analyze", "implement", "validate", "review", "report"]


class TestHappyPath:
    """A workflow whose workers all pass."""

    def test_all_steps_pass_and_complete(self, make_machine, memory_store):
        worker = ScriptedWorker()
        record = make_machine(worker).execute("implement", "add a REST endpoint")

        assert record.status == TaskStatus.COMPLETED
        assert record.current_step_index == len(IMPLEMENT_STEPS)
        assert all(s.status == StepStatus.DONE for s in record.steps)
        assert record.total_retries == 0
        assert memory_store.get(record.task_id) == record

    def test_steps_run_in_order_with_fan_out(self, make_machine):
        worker = ScriptedWorker()
        make_machine(worker).execute("implement", "add a REST endpoint")
        refs = [c.instructions_ref for c in worker.calls]
        assert refs[:2] == ["implement/analyze", "implement/implement"]
        assert set(refs[2:5]) == {
            "validate/functional",
            "validate/policy",
            "validate/quality",
        }
        assert refs[5:] == ["implement/review", "implement/report"]

    def test_prior_outputs_flow_into_snapshots(self, make_machine):
        """Each step sees the summaries of the steps before it."""
        worker = ScriptedWorker({"implement/analyze": [passed(detail="use a new table")]})
        make_machine(worker).execute("implement", "store orders")
        snapshot = worker.calls_for("implement/implement")[0].snapshot
        assert snapshot.prior_outputs == (("analyze", "use a new table"),)
        assert snapshot.attempt == 1

    def test_files_touched_accumulate(self, make_machine):
        worker = ScriptedWorker(
            {
                "implement/implement": [passed(files=("api/orders.py",))],
                "validate/functional": [passed(files=("tests/test_orders.py",))],
            }
        )
        record = make_machine(worker).execute("implement", "orders endpoint")
        assert record.checkpoint.files_touched == frozenset(
            {"api/orders.py", "tests/test_orders.py"}
        )

    def test_unknown_command(self, make_machine):
        with pytest.raises(UnknownCommand):
            make_machine().start("deploy", "everything")

    def test_audit_trail(self, make_machine, audit_log):
        record = make_machine().execute("test", "cover the parser")
        types = [e.event_type for e in audit_log.get_events(record.task_id)]
        assert types[0] == AuditEventType.TASK_CREATED
        assert types[-1] == AuditEventType.TASK_FINALIZED
        assert types.count(AuditEventType.STEP_PASS) == 4


class TestRemediation:
    """Recoverable failures consume budget and re-enter earlier steps."""

    def test_validate_remediates_then_passes(self, make_machine, audit_log):
        """REMEDIATE re-runs from implement; one retry is charged to validate."""
        worker = ScriptedWorker({"validate/functional": [failed(detail="2 tests failed")]})
        record = make_machine(worker).execute("implement", "add a REST endpoint")

        assert record.status == TaskStatus.COMPLETED
        assert dict(record.retry_counts) == {"validate": 1}
        assert len(worker.calls_for("implement/implement")) == 2
        assert len(worker.calls_for("validate/policy")) == 2

        granted = audit_log.get_events(record.task_id, AuditEventType.RETRY_GRANTED)
        assert len(granted) == 1
        assert granted[0].attempt == 2
        assert "implement" in granted[0].summary

    def test_remediation_step_sees_downstream_failure(self, make_machine):
        worker = ScriptedWorker({"validate/functional": [failed(detail="2 tests failed")]})
        make_machine(worker).execute("implement", "add a REST endpoint")
        retry = worker.calls_for("implement/implement")[1].snapshot
        assert "2 tests failed" in retry.last_failure
        assert retry.last_failure.startswith("validate:")

    def test_remediation_rerun_counts_as_next_attempt(self, make_machine, audit_log):
        """Re-running implement for validate is implement's second attempt."""
        worker = ScriptedWorker({"validate/functional": [failed(detail="2 tests failed")]})
        record = make_machine(worker).execute("implement", "add a REST endpoint")

        attempts = [c.snapshot.attempt for c in worker.calls_for("implement/implement")]
        assert attempts == [1, 2]
        starts = audit_log.get_events(
            record.task_id, AuditEventType.STEP_START, step_name="implement"
        )
        assert [e.attempt for e in starts] == [1, 2]

    def test_sequential_failure_retries_same_step(self, make_machine):
        worker = ScriptedWorker({"implement/analyze": [failed(), failed()]})
        record = make_machine(worker).execute("implement", "x")
        assert record.retry_count("analyze") == 2
        attempts = [c.snapshot.attempt for c in worker.calls_for("implement/analyze")]
        assert attempts == [1, 2, 3]

    def test_worker_exception_is_recoverable(self, make_machine):
        worker = ScriptedWorker({"implement/analyze": [ConnectionError("reset")]})
        record = make_machine(worker).execute("implement", "x")
        assert record.status == TaskStatus.COMPLETED
        assert record.retry_count("analyze") == 1

    def test_per_step_cap_exhausted(self, make_machine, memory_store):
        """Three retries are granted; the fourth failure halts the task."""
        worker = ScriptedWorker({"implement/analyze": [failed(detail="unclear")] * 4})
        machine = make_machine(worker)
        with pytest.raises(RetryBudgetExhausted) as exc_info:
            machine.execute("implement", "x")

        report = exc_info.value.report
        record = memory_store.get(report.task_id)
        assert record.status == TaskStatus.FAILED
        assert record.retry_count("analyze") == 3
        assert "per-step cap" in report.reason
        assert record.checkpoint.next_step_summary.startswith("manual intervention required")
        assert report.reason in record.checkpoint.next_step_summary
        assert report.failures[0].step_name == "analyze"
        assert report.failures[0].attempts == 4
        assert report.recommended_action == EXHAUSTED_ACTION

    def test_global_cap_across_lineage(self, make_machine, memory_store, audit_log):
        """Retries used by an earlier command count against the next one."""
        machine = make_machine(
            ScriptedWorker(
                {
                    "fix/reproduce": [failed(detail="cannot reproduce")] * 3,
                    "implement/analyze": [failed(detail="regression")] * 4,
                }
            )
        )
        first = machine.execute("fix", "crash on empty cart")
        assert first.total_retries == 3

        with pytest.raises(RetryBudgetExhausted) as exc_info:
            machine.execute("implement", "empty cart message", lineage_id=first.lineage_id)

        report = exc_info.value.report
        second = memory_store.get(report.task_id)
        assert second.retry_count("analyze") == 2
        assert "global cap" in report.reason
        assert {f.step_name for f in report.failures} == {"analyze", "fix/reproduce"}

        denied = audit_log.get_events(second.task_id, AuditEventType.RETRY_DENIED)
        assert len(denied) == 1

    def test_fourth_local_failure_denied_after_two_sibling_retries(
        self, make_machine, memory_store
    ):
        """Two retries elsewhere, three granted here, the fourth failure halts."""
        machine = make_machine(
            ScriptedWorker(
                {
                    "fix/reproduce": [failed(detail="flaky repro")] * 2,
                    "implement/analyze": [failed(detail="design rejected")] * 4,
                }
            )
        )
        first = machine.execute("fix", "crash on empty cart")
        assert first.total_retries == 2

        with pytest.raises(RetryBudgetExhausted) as exc_info:
            machine.execute("implement", "empty cart message", lineage_id=first.lineage_id)

        report = exc_info.value.report
        second = memory_store.get(report.task_id)
        assert second.status == TaskStatus.FAILED
        assert second.retry_count("analyze") == 3
        assert machine.tracker.lineage_total(first.lineage_id) == 5
        sites = {f.step_name: f for f in report.failures}
        assert set(sites) == {"analyze", "fix/reproduce"}
        assert sites["analyze"].detail == "design rejected"
        assert sites["fix/reproduce"].detail == "flaky repro"


class TestBlocked:
    def test_blocked_step_escalates_without_consuming_budget(self, make_machine, memory_store):
        worker = ScriptedWorker({"implement/implement": [blocked(detail="repo is read-only")]})
        with pytest.raises(EscalationRequired) as exc_info:
            make_machine(worker).execute("implement", "x")

        report = exc_info.value.report
        record = memory_store.get(report.task_id)
        assert record.status == TaskStatus.FAILED
        assert record.total_retries == 0
        assert "repo is read-only" in report.reason
        assert report.recommended_action == BLOCKED_ACTION

    def test_blocked_group_member(self, make_machine):
        worker = ScriptedWorker({"validate/policy": [blocked(detail="secret committed")]})
        with pytest.raises(EscalationRequired, match="secret committed"):
            make_machine(worker).execute("implement", "x")


class TestAbort:
    def test_abort_during_step(self, make_machine, memory_store):
        """Aborting while a worker runs stops the machine and keeps FAILED."""
        holder = {}

        def abort_now(snapshot):
            holder["machine"].abort(snapshot.task_id, "operator request")
            return passed()

        machine = make_machine(ScriptedWorker({"implement/implement": [abort_now]}))
        holder["machine"] = machine
        record = machine.start("implement", "x")

        with pytest.raises(WorkflowAborted):
            machine.run(record.task_id)

        stored = memory_store.get(record.task_id)
        assert stored.status == TaskStatus.FAILED
        assert "operator request" in stored.failure_reason
        assert stored.steps[1].status != StepStatus.DONE

    def test_abort_started_record(self, make_machine, audit_log):
        machine = make_machine()
        record = machine.start("fix", "x")
        aborted = machine.abort(record.task_id)
        assert aborted.status == TaskStatus.FAILED
        assert audit_log.get_events(record.task_id, AuditEventType.TASK_ABORTED)

    def test_abort_terminal_record_is_noop(self, make_machine):
        machine = make_machine()
        record = machine.execute("test", "x")
        assert machine.abort(record.task_id) == record

    def test_run_terminal_record_returns_it(self, make_machine):
        machine = make_machine()
        record = machine.execute("test", "x")
        assert machine.run(record.task_id) == record


class TestSingleController:
    def test_second_run_of_same_record_rejected(self, make_machine):
        holder = {}
        errors = []

        def reenter(snapshot):
            try:
                holder["machine"].run(snapshot.task_id)
            except TaskAlreadyRunning as e:
                errors.append(e)
            return passed()

        machine = make_machine(ScriptedWorker({"implement/analyze": [reenter]}))
        holder["machine"] = machine
        record = machine.execute("implement", "x")
        assert record.status == TaskStatus.COMPLETED
        assert len(errors) == 1


class TestProtocols:
    """Protocol selection and downstream gap detection."""

    def test_selection_recorded_per_step(self, make_machine, audit_log):
        record = make_machine().execute("implement", "add a REST endpoint")
        assert record.protocols_for("analyze") == (
            "rest-api-design",
            "architecture-baseline",
        )
        events = audit_log.get_events(
            record.task_id, AuditEventType.PROTOCOL_SELECTED, step_name="analyze"
        )
        assert events[0].role == "architect"
        assert events[0].entries == ("rest-api-design", "architecture-baseline")

    def test_snapshot_carries_selected_entries(self, make_machine):
        worker = ScriptedWorker()
        make_machine(worker).execute("implement", "add a REST endpoint")
        snapshot = worker.calls_for("implement/analyze")[0].snapshot
        assert [e.name for e in snapshot.protocols] == [
            "rest-api-design",
            "architecture-baseline",
        ]

    def test_empty_selection_is_audited(self, make_machine, audit_log):
        """Roles without entries still leave a PROTOCOL_SELECTED event."""
        record = make_machine().execute("implement", "x")
        events = audit_log.get_events(
            record.task_id, AuditEventType.PROTOCOL_SELECTED, step_name="report"
        )
        assert events[0].entries == ()

    def test_bundled_registry_rest_and_event_task(self, make_machine):
        """The architect gets REST and event guidance for a mixed task."""
        worker = ScriptedWorker()
        machine = make_machine(worker, registry=load_registry())
        record = machine.execute(
            "implement", "Add a REST endpoint that publishes order events"
        )
        selected = record.protocols_for("analyze")
        assert "rest-api-design" in selected
        assert "event-driven-design" in selected
        assert len(selected) <= 3

    def test_protocol_gap_reaches_next_step(self, make_machine, audit_log):
        """A missing security protocol is flagged at review and handed on."""
        worker = ScriptedWorker()
        record = make_machine(worker).execute("implement", "add password reset to login")

        gaps = audit_log.get_events(record.task_id, AuditEventType.PROTOCOL_GAP)
        assert len(gaps) == 1
        assert gaps[0].entries == ("security",)
        assert gaps[0].step_name == "review"

        findings = worker.calls_for("implement/report")[0].snapshot.findings
        assert [f.kind for f in findings] == [FindingKind.PROTOCOL_GAP]
        assert record.findings == ()

    def test_no_gap_when_security_protocol_used(self, make_machine, audit_log):
        record = make_machine(registry=load_registry()).execute(
            "implement", "add password reset to login"
        )
        assert audit_log.get_events(record.task_id, AuditEventType.PROTOCOL_GAP) == []

    def test_reviewing_step_own_entries_do_not_count(self, make_machine, audit_log):
        """Only steps before the reviewing step can satisfy its coverage check."""
        registry = ProtocolRegistry(
            [
                make_entry("baseline", "architect"),
                make_entry("standards", "developer"),
                make_entry("security-notes", "documenter", tags=("security",)),
            ]
        )
        record = make_machine(registry=registry).execute(
            "fix", "login fails after password reset"
        )
        assert record.protocols_for("report") == ("security-notes",)
        gaps = audit_log.get_events(record.task_id, AuditEventType.PROTOCOL_GAP)
        assert [g.step_name for g in gaps] == ["report"]

    def test_bundled_registry_flags_truncated_selection(self, make_machine, audit_log):
        """With one entry per role, auth guidance loses to API guidance upstream."""
        record = make_machine(registry=load_registry(), max_protocols=1).execute(
            "implement", "add a REST endpoint for login"
        )
        assert record.protocols_for("analyze") == ("rest-api-design",)
        assert record.protocols_for("implement") == ("api-implementation",)
        gaps = audit_log.get_events(record.task_id, AuditEventType.PROTOCOL_GAP)
        assert len(gaps) == 1
        assert gaps[0].entries == ("security",)


class TestIntegrity:
    def test_changed_template_refuses_to_run(self, make_machine, memory_store):
        record = make_machine().start("implement", "x")
        changed = TemplateCatalog(
            [
                WorkflowTemplate(
                    "implement",
                    "rewritten",
                    (StepDefinition("only", StepKind.SEQUENTIAL, "do it", role="developer"),),
                )
            ]
        )
        other = WorkflowStateMachine(memory_store, ScriptedWorker(), catalog=changed)
        with pytest.raises(WorkflowIntegrityError):
            other.run(record.task_id)
        assert memory_store.get(record.task_id).status == TaskStatus.IN_PROGRESS


class TestFailureReport:
    def test_report_lists_files_touched(self, make_machine, memory_store):
        worker = ScriptedWorker(
            {
                "implement/implement": [passed(files=("auth/reset.py",))],
                "implement/report": [blocked(detail="changelog locked")],
            }
        )
        with pytest.raises(EscalationRequired) as exc_info:
            make_machine(worker).execute("implement", "add password reset to login")
        report = exc_info.value.report
        assert report.files_touched == ("auth/reset.py",)
        assert report.failures[0].step_name == "report"
