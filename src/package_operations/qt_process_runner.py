"""
Run one external process with `QProcess` and report its output line by line.
"""

import contextlib
import os
from collections.abc import Sequence
from logging import getLogger

from qtpy.QtCore import QObject, QProcess, QProcessEnvironment, Signal

log = getLogger(__name__)

# reported instead of the exit code when the process crashed
CRASH_EXIT_CODE = -1


class ProcessRunner(QObject):
    """Owns a single child process.

    stdout and stderr are merged and emitted as complete lines. Exactly one
    of `processFinished` or `launchFailed` is emitted per `start`, unless
    `terminate` is called first, after which nothing is emitted.
    """

    # emitted once the child process is running
    processStarted = Signal()

    # one line of merged stdout/stderr, without line terminator
    lineReceived = Signal(str)

    # exit code of the child process
    processFinished = Signal(int)

    # the process could not be started, human readable reason
    launchFailed = Signal(str)

    def __init__(self, parent: QObject | None = None) -> None:
        super().__init__(parent)
        self._process: QProcess | None = None
        self._buffer = b''

    def start(
        self,
        program: str,
        arguments: Sequence[str],
        environment: QProcessEnvironment | None = None,
    ) -> None:
        if self.isRunning():
            raise RuntimeError('A process is already running')

        self._buffer = b''
        process = QProcess(self)
        process.setProcessChannelMode(
            QProcess.ProcessChannelMode.MergedChannels
        )
        process.readyReadStandardOutput.connect(self._on_stdout_ready)
        process.started.connect(self.processStarted)
        process.finished.connect(self._on_process_finished)
        process.errorOccurred.connect(self._on_error_occurred)

        process.setProgram(str(program))
        process.setArguments([str(arg) for arg in arguments])
        if environment is not None:
            process.setProcessEnvironment(environment)

        self._process = process
        process.start()

    def terminate(self) -> None:
        """Stop the child process and drop any further event from it."""
        process = self._process
        if process is None:
            return

        for signal, slot in (
            (process.readyReadStandardOutput, self._on_stdout_ready),
            (process.started, self.processStarted),
            (process.finished, self._on_process_finished),
            (process.errorOccurred, self._on_error_occurred),
        ):
            with contextlib.suppress(RuntimeError, TypeError):
                signal.disconnect(slot)

        if process.state() != QProcess.ProcessState.NotRunning:
            if os.name == 'nt':
                process.kill()
            else:
                process.terminate()

    def isRunning(self) -> bool:
        return (
            self._process is not None
            and self._process.state() != QProcess.ProcessState.NotRunning
        )

    def waitForFinished(self, msecs: int = 30000) -> bool:
        if self._process is None:
            return True
        return self._process.waitForFinished(msecs)

    def processId(self) -> int:
        if self._process is None:
            return 0
        return self._process.processId()

    def _emit_line(self, data: bytes) -> None:
        self.lineReceived.emit(data.decode(errors='replace').rstrip('\r'))

    def _emit_lines(self, data: bytes) -> None:
        # split before decoding, chunks can end inside a multi-byte character
        self._buffer += data
        *lines, self._buffer = self._buffer.split(b'\n')
        for line in lines:
            self._emit_line(line)

    def _on_stdout_ready(self) -> None:
        if self._process is None:
            return
        data = self._process.readAllStandardOutput().data()
        if data:
            self._emit_lines(bytes(data))

    def _on_process_finished(
        self, exit_code: int, exit_status: QProcess.ExitStatus
    ) -> None:
        self._on_stdout_ready()
        if self._buffer:
            self._emit_line(self._buffer)
            self._buffer = b''

        if exit_status == QProcess.ExitStatus.CrashExit:
            log.warning('Process %s crashed', self._process.program())
            exit_code = CRASH_EXIT_CODE
        self.processFinished.emit(exit_code)

    def _on_error_occurred(self, error: QProcess.ProcessError) -> None:
        if error != QProcess.ProcessError.FailedToStart:
            # finished is emitted as well for the other errors
            log.debug('Process error: %s', error)
            return
        reason = self._process.errorString()
        log.debug('Process failed to start: %s', reason)
        self.launchFailed.emit(reason)
