"""Process-agnostic operation engine.

The main objects are `AbstractProcessOperation`, a `QObject` state machine
that runs exactly one external process, and `OperationQueue`, which bounds
how many operations run at the same time.

An operation moves through::

    QUEUED -> RUNNING -> SUCCEEDED | FAILED | CANCELLED

Subclasses provide the launch target (`_prepare_process`), the
classification of the finished process (`_get_verdict`) and the side
effects of each transition (`_on_enqueued`, `_on_cancelled`,
`_handle_success`, `_handle_failure`).
"""

from collections import deque
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from enum import StrEnum, auto
from logging import getLogger

from qtpy.QtCore import QObject, Signal

from package_operations.base_package_manager import OperationVerdict
from package_operations.elevation import LaunchTarget, admin_rights
from package_operations.qt_process_runner import ProcessRunner

log = getLogger(__name__)


class OperationStatus(StrEnum):
    "Lifecycle states of an operation"

    QUEUED = auto()
    RUNNING = auto()
    SUCCEEDED = auto()
    FAILED = auto()
    CANCELLED = auto()

    @property
    def is_terminal(self) -> bool:
        return self in (
            OperationStatus.SUCCEEDED,
            OperationStatus.FAILED,
            OperationStatus.CANCELLED,
        )


@dataclass
class OperationMetadata:
    """Texts describing an operation to the user."""

    title: str = ''
    status: str = ''
    success_title: str = ''
    success_message: str = ''
    failure_title: str = ''
    failure_message: str = ''
    operation_information: str = ''


class AbstractProcessOperation(QObject):
    """One unit of work wrapping a single external process.

    Signals carry the operation itself. `enqueued` is emitted first once the
    operation is submitted, and exactly one of `succeeded`, `failed` or
    `cancelled` is emitted last. Subclass hooks run before the matching
    signal is emitted.
    """

    enqueued = Signal(object)
    cancelled = Signal(object)
    succeeded = Signal(object)
    failed = Signal(object)

    # emitted when the child process has actually started
    started = Signal(object)

    # one captured line of output
    outputReceived = Signal(str)

    statusChanged = Signal(object)

    def __init__(
        self,
        queue: 'OperationQueue',
        *,
        queue_enabled: bool = True,
        parent: QObject | None = None,
    ) -> None:
        super().__init__(parent)
        self.metadata = OperationMetadata()
        self.status = OperationStatus.QUEUED
        self.output: list[str] = []
        self.exit_code: int | None = None
        self.verdict: OperationVerdict | None = None
        self.launch_target: LaunchTarget | None = None

        self._queue = queue
        self._queue_enabled = queue_enabled
        self._submitted = False

        self._runner = ProcessRunner(self)
        self._cache_runner: ProcessRunner | None = None
        self._runner.processStarted.connect(self._on_process_started)
        self._runner.lineReceived.connect(self._on_line_received)
        self._runner.processFinished.connect(self._on_process_finished)
        self._runner.launchFailed.connect(self._on_launch_failed)

    # -------------------------- Public API ------------------------------
    @property
    def queue_enabled(self) -> bool:
        """False if the operation runs as soon as it is enqueued."""
        return self._queue_enabled

    @property
    def is_submitted(self) -> bool:
        return self._submitted

    def start(self) -> None:
        """Submit the operation to its queue.

        Calling this on an operation that was already submitted is a no-op.
        """
        self._queue.submit(self)

    def cancel(self) -> None:
        """Cancel a queued or running operation.

        A cancelled operation never starts, even if it was not submitted yet.
        """
        if self.status == OperationStatus.QUEUED:
            self._queue._remove_pending(self)
            self._finish(OperationStatus.CANCELLED)
        elif self.status == OperationStatus.RUNNING:
            self._runner.terminate()
            if self._cache_runner is not None:
                self._cache_runner.terminate()
            self._log('Operation was cancelled by the user.')
            self._finish(OperationStatus.CANCELLED)
        else:
            log.debug(
                'Ignoring cancel of %r in state %s', self, self.status.value
            )

    def skip_queue(self) -> None:
        """Run the operation now, regardless of queue order and limits."""
        self._queue.skip_queue(self)

    # -------------------------- Subclass hooks ------------------------------
    # abstract method
    def _prepare_process(self) -> LaunchTarget:
        "Program, arguments and environment of the child process"
        raise NotImplementedError

    # abstract method
    def _get_verdict(
        self, exit_code: int, output: Sequence[str]
    ) -> OperationVerdict:
        "Classify the finished child process"
        raise NotImplementedError

    def _skips_queue(self) -> bool:
        """True if the operation runs without waiting for a free slot."""
        return not self._queue_enabled

    def _on_enqueued(self) -> None:
        pass

    def _on_cancelled(self) -> None:
        pass

    def _handle_success(self) -> None:
        pass

    def _handle_failure(self) -> None:
        pass

    # -------------------------- Private methods ------------------------------
    def _log(self, msg: str, *, capture: bool = False) -> None:
        """Show `msg` to observers, and keep it in `output` if `capture`."""
        log.debug(msg)
        if capture:
            self.output.append(msg)
        self.outputReceived.emit(msg)

    def _set_status(self, status: OperationStatus) -> None:
        self.status = status
        self.statusChanged.emit(status)

    def _mark_enqueued(self) -> None:
        self._submitted = True
        self._run_side_effects(self._on_enqueued)
        self.enqueued.emit(self)

    def _run(self) -> None:
        """Launch the child process. Called by the queue."""
        self._set_status(OperationStatus.RUNNING)
        # slots of the signals emitted here may have cancelled the operation
        if self.status != OperationStatus.RUNNING:
            return
        try:
            target = self._prepare_process()
        except Exception as exc:
            log.exception('Could not prepare %r', self)
            if self.status != OperationStatus.RUNNING:
                return
            self._log(f'Could not start the operation: {exc}', capture=True)
            self._finish(OperationStatus.FAILED)
            return
        if self.status != OperationStatus.RUNNING:
            return

        self.launch_target = target
        cache_args = None
        if target.cache_admin_rights:
            cache_args = admin_rights.command(target.program)
        if cache_args is None:
            self._start_process(target)
        else:
            self._cache_admin_rights(target, cache_args)

    def _start_process(self, target: LaunchTarget) -> None:
        msg = f"Starting '{target.program}' with args {list(target.arguments)}"
        log.info(msg)
        self.outputReceived.emit(msg)
        self._runner.start(
            target.program, target.arguments, target.environment
        )

    def _cache_admin_rights(
        self, target: LaunchTarget, arguments: list[str]
    ) -> None:
        """Cache the elevation credentials, then start the process."""
        log.info('Caching admin rights with %s', target.program)
        runner = self._cache_runner = ProcessRunner(self)
        runner.processFinished.connect(
            lambda exit_code: self._on_admin_rights_cached(
                target, exit_code == 0
            )
        )
        runner.launchFailed.connect(
            lambda reason: self._on_admin_rights_cached(target, False)
        )
        runner.start(target.program, arguments, target.environment)

    def _on_admin_rights_cached(
        self, target: LaunchTarget, cached: bool
    ) -> None:
        if cached:
            admin_rights.mark_cached(target.program)
        else:
            log.warning('Could not cache admin rights with %s', target.program)
        if self.status == OperationStatus.RUNNING:
            self._start_process(target)

    def _finish(self, status: OperationStatus) -> None:
        self._set_status(status)
        if status == OperationStatus.SUCCEEDED:
            hook, signal = self._handle_success, self.succeeded
        elif status == OperationStatus.FAILED:
            hook, signal = self._handle_failure, self.failed
        else:
            hook, signal = self._on_cancelled, self.cancelled

        log.info('%s finished with status %s', self, status.value)
        self._run_side_effects(hook)
        signal.emit(self)

    def _run_side_effects(self, *effects: Callable[[], object]) -> None:
        """Run each effect, logging failures without stopping the others."""
        for effect in effects:
            try:
                effect()
            except Exception:
                log.exception(
                    'Side effect %s of %r failed',
                    getattr(effect, '__name__', effect),
                    self,
                )

    def _on_process_started(self) -> None:
        self.started.emit(self)

    def _on_line_received(self, line: str) -> None:
        if self.status != OperationStatus.RUNNING:
            return
        self.output.append(line)
        self.outputReceived.emit(line)

    def _on_launch_failed(self, reason: str) -> None:
        if self.status != OperationStatus.RUNNING:
            return
        self._log(f'Task finished with errors! Error: {reason}.', capture=True)
        self._finish(OperationStatus.FAILED)

    def _on_process_finished(self, exit_code: int) -> None:
        if self.status != OperationStatus.RUNNING:
            return
        self.exit_code = exit_code
        try:
            verdict = self._get_verdict(exit_code, tuple(self.output))
        except Exception:
            log.exception('Could not classify the result of %r', self)
            verdict = OperationVerdict.FAILURE

        self.verdict = verdict
        self._log(f'Task finished with exit code {exit_code}.')
        if verdict == OperationVerdict.SUCCESS:
            self._finish(OperationStatus.SUCCEEDED)
        else:
            self._finish(OperationStatus.FAILED)

    def __repr__(self) -> str:
        return f'<{type(self).__name__} {self.metadata.title!r}>'

    def __str__(self) -> str:
        return self.metadata.title or type(self).__name__


class OperationQueue(QObject):
    """Bound the number of operations running at the same time.

    Operations wait in FIFO order until a slot is free. Operations can skip
    the queue, in which case they run immediately and do not count against
    the order of the others.
    """

    # emitted when no operation is queued or running anymore
    # Tuple of the terminal status of each operation since the last emission
    allFinished = Signal(tuple)

    def __init__(
        self, parent: QObject | None = None, max_parallel: int = 1
    ) -> None:
        super().__init__(parent)
        self.max_parallel = max_parallel
        self._pending: deque[AbstractProcessOperation] = deque()
        self._running: list[AbstractProcessOperation] = []
        self._statuses: list[OperationStatus] = []

    # -------------------------- Public API ------------------------------
    def submit(self, operation: AbstractProcessOperation) -> None:
        """Append `operation` to the queue and run it when a slot is free."""
        if operation.is_submitted or operation.status != OperationStatus.QUEUED:
            log.debug('%r was already submitted, ignoring', operation)
            return

        self._pending.append(operation)
        operation.succeeded.connect(self._on_operation_finished)
        operation.failed.connect(self._on_operation_finished)
        operation.cancelled.connect(self._on_operation_finished)
        operation._mark_enqueued()

        if operation._skips_queue():
            self.skip_queue(operation)
        self._process_queue()

    def skip_queue(self, operation: AbstractProcessOperation) -> None:
        """Run a pending `operation` now, ignoring `max_parallel`."""
        if operation not in self._pending:
            log.debug('%r is not queued, cannot skip the queue', operation)
            return
        self._pending.remove(operation)
        log.debug('%r skips the queue', operation)
        self._launch(operation)

    def cancel(self, operation: AbstractProcessOperation) -> None:
        operation.cancel()

    def cancel_all(self) -> None:
        """Cancel every queued and running operation."""
        for operation in [*self._pending, *self._running]:
            operation.cancel()

    def pending(self) -> tuple[AbstractProcessOperation, ...]:
        return tuple(self._pending)

    def running(self) -> tuple[AbstractProcessOperation, ...]:
        return tuple(self._running)

    def hasJobs(self) -> bool:
        """True if there are operations queued or running."""
        return bool(self._pending or self._running)

    def currentJobs(self) -> int:
        """Return the number of queued and running operations."""
        return len(self._pending) + len(self._running)

    def waitForFinished(self, msecs: int = 10000) -> bool:
        """Block and wait for all operations to finish.

        Parameters
        ----------
        msecs : int, optional
            Time to wait for each process, by default 10000
        """
        while self._running:
            operation = self._running[0]
            operation._runner.waitForFinished(msecs)
            if self._running and self._running[0] is operation:
                return False
        return not self.hasJobs()

    # -------------------------- Private methods ------------------------------
    def _remove_pending(self, operation: AbstractProcessOperation) -> None:
        if operation in self._pending:
            self._pending.remove(operation)

    def _launch(self, operation: AbstractProcessOperation) -> None:
        self._running.append(operation)
        operation._run()

    def _process_queue(self) -> None:
        while self._pending and len(self._running) < self.max_parallel:
            self._launch(self._pending.popleft())

    def _on_operation_finished(
        self, operation: AbstractProcessOperation
    ) -> None:
        if operation in self._running:
            self._running.remove(operation)
        self._statuses.append(operation.status)

        for signal in (
            operation.succeeded,
            operation.failed,
            operation.cancelled,
        ):
            try:
                signal.disconnect(self._on_operation_finished)
            except (RuntimeError, TypeError):
                log.debug('Signal of %r was already disconnected', operation)

        self._process_queue()
        if not self.hasJobs():
            statuses, self._statuses = tuple(self._statuses), []
            self.allFinished.emit(statuses)
