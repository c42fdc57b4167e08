"""
Tests for Unit of Work
"""

import asyncio
import logging
from dataclasses import dataclass

import pytest

from domainkit.context import InMemoryDomainContext
from domainkit.di_container import DIContainer
from domainkit.entity import Entity
from domainkit.errors import CommitFailed, PostCommitHandlerFailed, PreCommitHandlerFailed, RollbackFailed
from domainkit.events import DomainEvent
from domainkit.handler_registry import DomainEventHandlerRegistry
from domainkit.handlers import DomainEventHandler
from domainkit.unit_of_work import UnitOfWork, UnitOfWorkOptions, UnitOfWorkState


@dataclass(frozen=True)
class EmployeeHired(DomainEvent):
    name: str


@dataclass(frozen=True)
class EmployeeRenamed(DomainEvent):
    name: str


class Employee(Entity):
    """Test entity raising employee events."""

    def __init__(self, employee_id: str, name: str):
        super().__init__()
        self.id = employee_id
        self.name = name

    def hire(self):
        self.raise_event(EmployeeHired(name=self.name))

    def rename(self, name: str):
        self.name = name
        self.raise_event(EmployeeRenamed(name=name))


class Department(Entity):
    """Test entity that never raises events."""

    def __init__(self, department_id: str):
        super().__init__()
        self.id = department_id


class CallLog:
    """Records handler invocations in order."""

    def __init__(self):
        self.calls = []

    def record(self, name: str, event: DomainEvent):
        self.calls.append((name, event))

    @property
    def names(self):
        return [name for name, _ in self.calls]


class RecordingPreCommitHandler(DomainEventHandler):
    handles = EmployeeHired

    def __init__(self, log: CallLog):
        self.log = log

    async def handle(self, event: EmployeeHired) -> None:
        self.log.record("PreCommit", event)


class RecordingPostCommitHandler(DomainEventHandler):
    handles = EmployeeHired
    post_commit = True

    def __init__(self, log: CallLog):
        self.log = log

    async def handle(self, event: EmployeeHired) -> None:
        self.log.record("PostCommit", event)


class ThrowingPreCommitHandler(DomainEventHandler):
    handles = EmployeeHired

    def __init__(self, log: CallLog):
        self.log = log

    async def handle(self, event: EmployeeHired) -> None:
        self.log.record("ThrowingPreCommit", event)
        raise RuntimeError("pre-commit handler failed intentionally")


class ThrowingPostCommitHandler(DomainEventHandler):
    handles = EmployeeHired
    post_commit = True

    def __init__(self, log: CallLog):
        self.log = log

    async def handle(self, event: EmployeeHired) -> None:
        self.log.record("ThrowingPostCommit", event)
        raise RuntimeError("post-commit handler failed intentionally")


class SpyContext(InMemoryDomainContext):
    """In-memory context counting commits and rollbacks, with failure switches."""

    def __init__(self, fail_commit: bool = False, fail_rollback: bool = False):
        super().__init__()
        self.fail_commit = fail_commit
        self.fail_rollback = fail_rollback
        self.commits = 0
        self.rollbacks = 0

    async def commit(self) -> None:
        self.commits += 1
        await super().commit()

    async def rollback(self) -> None:
        self.rollbacks += 1
        if self.fail_rollback:
            raise OSError("storage unavailable")
        await super().rollback()

    def _apply_changes(self) -> None:
        if self.fail_commit:
            raise OSError("disk full")
        super()._apply_changes()


def build(context=None, options=None):
    """Wire a unit of work with a CallLog available to handlers."""
    log = CallLog()
    container = DIContainer()
    container.register_instance(CallLog, log)
    registry = DomainEventHandlerRegistry(container)
    context = context or SpyContext()
    return log, registry, context, UnitOfWork(registry, context, options=options)


def hire(employee_id: str = "E-1", name: str = "Jo"):
    """Body inserting a freshly hired employee."""
    employee = Employee(employee_id, name)

    async def body(context):
        employee.hire()
        context.insert(employee)

    return employee, body


class TestUnitOfWorkHappyPath:
    """Tests for successful executions."""

    @pytest.mark.asyncio
    async def test_changes_are_committed_and_handlers_are_called(self):
        """Test that a successful body commits and runs both phases."""
        log, registry, context, uow = build()
        registry.register(RecordingPreCommitHandler)
        registry.register(RecordingPostCommitHandler)

        employee = Employee("E-1", "Jo")

        async def body(c):
            employee.hire()
            c.insert(employee)
            c.insert(Department("D-1"))

        result = await uow.execute(body)

        assert context.get(Employee, "E-1") is not None
        assert context.count(Employee) == 1
        assert context.count(Department) == 1
        assert log.names == ["PreCommit", "PostCommit"]
        assert log.calls[0][1] is log.calls[1][1]
        assert log.calls[0][1].name == "Jo"
        assert [e.event_type for e in result.events] == ["EmployeeHired"]
        assert result.post_commit_failures == []
        assert context.commits == 1
        assert context.rollbacks == 0

    @pytest.mark.asyncio
    async def test_events_are_cleared_after_success(self):
        """Test that collected entities have no events left."""
        _, registry, _, uow = build()
        registry.register(RecordingPreCommitHandler)
        employee, body = hire()

        await uow.execute(body)

        assert employee.events == ()

    @pytest.mark.asyncio
    async def test_no_handlers_registered(self):
        """Test that events without handlers do not prevent the commit."""
        _, _, context, uow = build()
        employee, body = hire()

        result = await uow.execute(body)

        assert len(result.events) == 1
        assert context.get(Employee, "E-1") is not None
        assert context.commits == 1
        assert employee.events == ()

    @pytest.mark.asyncio
    async def test_sync_body(self):
        """Test that a plain function body is supported."""
        log, registry, context, uow = build()
        registry.register(RecordingPreCommitHandler)

        def body(c):
            employee = Employee("E-1", "Jo")
            employee.hire()
            c.insert(employee)

        await uow.execute(body)

        assert context.count(Employee) == 1
        assert log.names == ["PreCommit"]

    @pytest.mark.asyncio
    async def test_unit_of_work_is_reusable(self):
        """Test that consecutive executions are independent."""
        log, registry, context, uow = build()
        registry.register(RecordingPostCommitHandler)

        _, first = hire("E-1", "Jo")
        _, second = hire("E-2", "Sam")

        await uow.execute(first)
        await uow.execute(second)

        assert [event.name for _, event in log.calls] == ["Jo", "Sam"]
        assert context.count(Employee) == 2
        assert context.commits == 2

    @pytest.mark.asyncio
    async def test_duplicate_registration_invokes_twice(self):
        """Test that registering a handler twice runs it twice."""
        log, registry, _, uow = build()
        registry.register(RecordingPreCommitHandler)
        registry.register(RecordingPreCommitHandler)
        _, body = hire()

        await uow.execute(body)

        assert log.names == ["PreCommit", "PreCommit"]


class TestUnitOfWorkOrdering:
    """Tests for dispatch ordering."""

    @pytest.mark.asyncio
    async def test_handlers_run_per_event_in_registration_order(self):
        """Test H1(E1), H2(E1) before any handler of E2."""
        calls = []
        _, registry, _, uow = build()
        registry.subscribe(EmployeeHired, lambda e: calls.append(("H1", e.event_type)))
        registry.subscribe(EmployeeHired, lambda e: calls.append(("H2", e.event_type)))
        registry.subscribe(EmployeeRenamed, lambda e: calls.append(("H3", e.event_type)))

        async def body(c):
            employee = Employee("E-1", "Jo")
            employee.hire()
            employee.rename("Joanna")
            c.insert(employee)

        await uow.execute(body)

        assert calls == [
            ("H1", "EmployeeHired"),
            ("H2", "EmployeeHired"),
            ("H3", "EmployeeRenamed"),
        ]

    @pytest.mark.asyncio
    async def test_pre_commit_phase_precedes_post_commit_phase(self):
        """Test that all pre-commit handlers run before any post-commit handler."""
        log, registry, _, uow = build()
        registry.register(RecordingPostCommitHandler)
        registry.register(RecordingPreCommitHandler)

        async def body(c):
            for employee_id in ("E-1", "E-2"):
                employee = Employee(employee_id, employee_id)
                employee.hire()
                c.insert(employee)

        await uow.execute(body)

        assert log.names == ["PreCommit", "PreCommit", "PostCommit", "PostCommit"]

    @pytest.mark.asyncio
    async def test_events_follow_context_entity_order(self):
        """Test that changed entities are dispatched before inserted ones."""
        names = []
        _, registry, context, uow = build()
        context.insert(Employee("E-1", "Jo"))
        await context.commit()

        registry.subscribe(EmployeeHired, lambda e: names.append(e.name))
        registry.subscribe(EmployeeRenamed, lambda e: names.append(e.name))

        async def body(c):
            newcomer = Employee("E-2", "Sam")
            newcomer.hire()
            c.insert(newcomer)

            existing = c.get(Employee, "E-1")
            existing.rename("Joanna")
            c.update(existing)

        await uow.execute(body)

        assert names == ["Joanna", "Sam"]

    @pytest.mark.asyncio
    async def test_events_of_unmodified_entities_are_dropped(self):
        """Test that events raised on read-only entities are not dispatched."""
        names = []
        _, registry, context, uow = build()
        context.insert(Employee("E-1", "Jo"))
        await context.commit()

        registry.subscribe(EmployeeRenamed, lambda e: names.append(e.name))

        async def body(c):
            c.get(Employee, "E-1").rename("Joanna")

        result = await uow.execute(body)

        assert names == []
        assert result.events == ()
        assert context.get(Employee, "E-1").name == "Jo"


class TestUnitOfWorkBodyFailure:
    """Tests for failures raised by the body."""

    @pytest.mark.asyncio
    async def test_changes_are_rolled_back_and_handlers_are_not_called(self):
        """Test that a failing body rolls back and dispatches nothing."""
        log, registry, context, uow = build()
        registry.register(RecordingPreCommitHandler)
        registry.register(RecordingPostCommitHandler)
        error = ValueError("body failed")

        async def body(c):
            employee = Employee("E-1", "Jo")
            employee.hire()
            c.insert(employee)
            raise error

        with pytest.raises(ValueError) as exc_info:
            await uow.execute(body)

        assert exc_info.value is error
        assert context.get(Employee, "E-1") is None
        assert context.count(Employee) == 0
        assert log.calls == []
        assert context.commits == 0
        assert context.rollbacks == 1

    @pytest.mark.asyncio
    async def test_cancellation_in_body_rolls_back(self):
        """Test that cancellation during the body is treated as a failure."""
        _, _, context, uow = build()

        async def body(c):
            c.insert(Employee("E-1", "Jo"))
            raise asyncio.CancelledError()

        with pytest.raises(asyncio.CancelledError):
            await uow.execute(body)

        assert context.count(Employee) == 0
        assert context.commits == 0
        assert context.rollbacks == 1


class TestUnitOfWorkPreCommitFailure:
    """Tests for failing pre-commit handlers."""

    @pytest.mark.asyncio
    async def test_changes_are_rolled_back_and_post_commit_handlers_are_not_called(self):
        """Test that a failing pre-commit handler aborts the unit of work."""
        log, registry, context, uow = build()
        registry.register(RecordingPreCommitHandler)
        registry.register(RecordingPostCommitHandler)
        registry.register(ThrowingPreCommitHandler)
        employee, body = hire()

        with pytest.raises(PreCommitHandlerFailed) as exc_info:
            await uow.execute(body)

        error = exc_info.value
        assert error.event_type == "EmployeeHired"
        assert error.handler_type == "ThrowingPreCommitHandler"
        assert isinstance(error.cause, RuntimeError)
        assert error.__cause__ is error.cause

        assert log.names == ["PreCommit", "ThrowingPreCommit"]
        assert context.get(Employee, "E-1") is None
        assert context.commits == 0
        assert context.rollbacks == 1
        assert employee.events == ()

    @pytest.mark.asyncio
    async def test_later_handlers_and_events_are_skipped(self):
        """Test that dispatch stops at the first pre-commit failure."""
        log, registry, context, uow = build()
        registry.register(ThrowingPreCommitHandler)
        registry.register(RecordingPreCommitHandler)

        first = Employee("E-1", "Jo")
        second = Employee("E-2", "Sam")

        async def body(c):
            for employee in (first, second):
                employee.hire()
                c.insert(employee)

        with pytest.raises(PreCommitHandlerFailed):
            await uow.execute(body)

        assert log.names == ["ThrowingPreCommit"]
        assert log.calls[0][1].name == "Jo"
        assert first.events == ()
        assert second.events == ()
        assert context.count(Employee) == 0

    @pytest.mark.asyncio
    async def test_unresolvable_handler_fails_pre_commit(self):
        """Test that a handler whose dependencies cannot be resolved aborts."""
        registry = DomainEventHandlerRegistry(DIContainer())
        registry.register(RecordingPreCommitHandler)
        context = SpyContext()
        uow = UnitOfWork(registry, context)
        _, body = hire()

        with pytest.raises(PreCommitHandlerFailed) as exc_info:
            await uow.execute(body)

        assert isinstance(exc_info.value.cause, ValueError)
        assert context.rollbacks == 1

    @pytest.mark.asyncio
    async def test_cancellation_in_pre_commit_handler_rolls_back(self):
        """Test that cancellation during pre-commit dispatch propagates unwrapped."""
        _, registry, context, uow = build()

        async def cancelled(event):
            raise asyncio.CancelledError()

        registry.subscribe(EmployeeHired, cancelled)
        employee, body = hire()

        with pytest.raises(asyncio.CancelledError):
            await uow.execute(body)

        assert context.commits == 0
        assert context.rollbacks == 1
        assert employee.events == ()


class TestUnitOfWorkCollectionFailure:
    """Tests for failures while collecting event sources."""

    @pytest.mark.asyncio
    async def test_collection_failure_rolls_back(self):
        """Test that a failing collection rolls back, commits nothing and propagates."""

        class UnreadableContext(SpyContext):
            async def collect_event_sources(self):
                raise OSError("change tracking unavailable")

        log, registry, context, uow = build(context=UnreadableContext())
        registry.register(RecordingPreCommitHandler)
        registry.register(RecordingPostCommitHandler)
        _, body = hire()

        with pytest.raises(OSError, match="change tracking unavailable"):
            await uow.execute(body)

        assert context.rollbacks == 1
        assert context.commits == 0
        assert log.calls == []
        assert context.count(Employee) == 0

    @pytest.mark.asyncio
    async def test_failure_log_names_the_phase(self, caplog):
        """Test that the failure log names the phase that was running."""
        _, registry, _, uow = build()
        registry.register(ThrowingPreCommitHandler)
        _, body = hire()

        with caplog.at_level(logging.ERROR, logger="domainkit.unit_of_work"):
            with pytest.raises(PreCommitHandlerFailed):
                await uow.execute(body)

        assert f"while {UnitOfWorkState.PRE_COMMIT_DISPATCHING.value}" in caplog.text


class TestUnitOfWorkCommitFailure:
    """Tests for failing commits."""

    @pytest.mark.asyncio
    async def test_commit_failure_rolls_back_and_skips_post_commit(self):
        """Test that a storage failure surfaces as CommitFailed."""
        log, registry, context, uow = build(context=SpyContext(fail_commit=True))
        registry.register(RecordingPreCommitHandler)
        registry.register(RecordingPostCommitHandler)
        employee, body = hire()

        with pytest.raises(CommitFailed) as exc_info:
            await uow.execute(body)

        assert isinstance(exc_info.value.__cause__, OSError)
        assert log.names == ["PreCommit"]
        assert context.commits == 1
        assert context.rollbacks == 1
        assert context.get(Employee, "E-1") is None
        assert employee.events == ()

    @pytest.mark.asyncio
    async def test_foreign_commit_errors_are_wrapped(self):
        """Test that contexts raising other errors on commit still give CommitFailed."""

        class BrokenContext(SpyContext):
            async def commit(self) -> None:
                self.commits += 1
                raise ConnectionError("lost connection")

        _, _, context, uow = build(context=BrokenContext())
        _, body = hire()

        with pytest.raises(CommitFailed) as exc_info:
            await uow.execute(body)

        assert isinstance(exc_info.value.__cause__, ConnectionError)
        assert context.rollbacks == 1


class TestUnitOfWorkRollbackFailure:
    """Tests for failing rollbacks."""

    @pytest.mark.asyncio
    async def test_rollback_failure_keeps_original_error(self):
        """Test that RollbackFailed wins but the original failure is reachable."""
        _, _, context, uow = build(context=SpyContext(fail_rollback=True))
        error = ValueError("body failed")

        async def body(c):
            raise error

        with pytest.raises(RollbackFailed) as exc_info:
            await uow.execute(body)

        assert exc_info.value.original is error
        assert isinstance(exc_info.value.__cause__, OSError)
        assert context.rollbacks == 1

    @pytest.mark.asyncio
    async def test_rollback_failure_after_pre_commit_failure(self):
        """Test that the pre-commit failure is kept as the original of RollbackFailed."""
        log, registry, context, uow = build(context=SpyContext(fail_rollback=True))
        registry.register(ThrowingPreCommitHandler)
        registry.register(RecordingPostCommitHandler)
        employee, body = hire()

        with pytest.raises(RollbackFailed) as exc_info:
            await uow.execute(body)

        original = exc_info.value.original
        assert isinstance(original, PreCommitHandlerFailed)
        assert original.handler_type == "ThrowingPreCommitHandler"
        assert isinstance(exc_info.value.__cause__, OSError)
        assert log.names == ["ThrowingPreCommit"]
        assert context.commits == 0
        assert context.rollbacks == 1
        assert employee.events == ()


class TestUnitOfWorkPostCommitFailure:
    """Tests for failing post-commit handlers."""

    @pytest.mark.asyncio
    async def test_post_commit_failures_are_isolated(self):
        """Test that other post-commit handlers still run and the commit stands."""
        log, registry, context, uow = build()
        registry.register(ThrowingPostCommitHandler)
        registry.register(RecordingPostCommitHandler)

        async def body(c):
            for employee_id in ("E-1", "E-2"):
                employee = Employee(employee_id, employee_id)
                employee.hire()
                c.insert(employee)

        result = await uow.execute(body)

        assert log.names == ["ThrowingPostCommit", "PostCommit", "ThrowingPostCommit", "PostCommit"]
        assert len(result.post_commit_failures) == 2
        assert all(f.handler_type == "ThrowingPostCommitHandler" for f in result.post_commit_failures)
        assert context.count(Employee) == 2
        assert context.commits == 1
        assert context.rollbacks == 0

    @pytest.mark.asyncio
    async def test_cancellation_in_post_commit_handler_is_isolated(self):
        """Test that cancellation inside a post-commit handler counts as its failure."""
        log, registry, context, uow = build()

        async def cancelled(event):
            raise asyncio.CancelledError()

        registry.subscribe(EmployeeHired, cancelled, post_commit=True)
        registry.register(RecordingPostCommitHandler)
        _, body = hire()

        result = await uow.execute(body)

        assert log.names == ["PostCommit"]
        assert len(result.post_commit_failures) == 1
        assert isinstance(result.post_commit_failures[0].cause, asyncio.CancelledError)
        assert context.count(Employee) == 1

    @pytest.mark.asyncio
    async def test_raise_post_commit_failures_option(self):
        """Test surfacing the first post-commit failure after the phase completes."""
        log, registry, context, uow = build(options=UnitOfWorkOptions(raise_post_commit_failures=True))
        registry.register(ThrowingPostCommitHandler)
        registry.register(RecordingPostCommitHandler)
        employee, body = hire()

        with pytest.raises(PostCommitHandlerFailed):
            await uow.execute(body)

        assert log.names == ["ThrowingPostCommit", "PostCommit"]
        assert context.get(Employee, "E-1") is not None
        assert context.rollbacks == 0
        assert employee.events == ()


class TestUnitOfWorkScope:
    """Tests for per unit of work resolution scopes."""

    @pytest.mark.asyncio
    async def test_handlers_resolve_from_scope(self):
        """Test that handlers get dependencies from the unit of work's scope."""
        container = DIContainer()
        registry = DomainEventHandlerRegistry(container)
        registry.register(RecordingPreCommitHandler)
        registry.register(RecordingPostCommitHandler)

        scope = container.create_scope()
        scope.register(CallLog, lifetime='scoped')
        context = SpyContext()
        uow = UnitOfWork(registry, context, scope=scope)
        _, body = hire()

        await uow.execute(body)

        log = scope.resolve(CallLog)
        assert log.names == ["PreCommit", "PostCommit"]
