"""
PlaylistMirror - Run Context

Owns what one run shares between worker threads: the stop flag, the registry
of in-flight external processes, and the success/failure counters.
"""

import subprocess
import threading
from collections import Counter


class StopRequested(Exception):
    """Raised instead of spawning a new process once a stop was requested."""


class RunContext:
    def __init__(self, run_id: str | None = None):
        self.run_id = run_id
        self._stop = threading.Event()
        self._lock = threading.Lock()
        self._processes: set[subprocess.Popen] = set()
        self._stop_listeners = []
        self._counters: Counter = Counter()
        self.failures: list[dict] = []

    # -- stop flag -----------------------------------------------------------

    @property
    def stopping(self) -> bool:
        return self._stop.is_set()

    def add_stop_listener(self, callback) -> None:
        """callback() runs once when a stop is requested (e.g. a pool draining its queue)."""
        with self._lock:
            self._stop_listeners.append(callback)

    def request_stop(self) -> None:
        """Stop starting new work and kill everything in flight. Idempotent."""
        if self._stop.is_set():
            return
        self._stop.set()
        print("Stop requested - terminating running tools...")
        self.kill_processes()
        with self._lock:
            listeners = list(self._stop_listeners)
        for callback in listeners:
            callback()

    # -- process registry ----------------------------------------------------

    def unregister_process(self, proc: subprocess.Popen) -> None:
        with self._lock:
            self._processes.discard(proc)

    def active_process_count(self) -> int:
        with self._lock:
            return len(self._processes)

    def kill_processes(self) -> int:
        with self._lock:
            procs = list(self._processes)
        killed = 0
        for proc in procs:
            try:
                proc.kill()
                killed += 1
            except OSError:
                pass  # Already gone
        return killed

    def run(self, cmd: list[str], timeout: float | None = None) -> subprocess.CompletedProcess:
        """Run an external tool, registered for the duration so a stop can kill it.

        Raises StopRequested when the run is stopping, subprocess.TimeoutExpired
        on timeout (the process is killed first), and OSError when the tool
        cannot be started.
        """
        if self.stopping:
            raise StopRequested(cmd[0])
        proc = subprocess.Popen(
            cmd,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            text=True,
            encoding="utf-8",
            errors="replace",
        )
        # A stop between the check above and Popen finds nothing to kill
        with self._lock:
            self._processes.add(proc)
            stopped_meanwhile = self._stop.is_set()
        if stopped_meanwhile:
            proc.kill()
        try:
            stdout, stderr = proc.communicate(timeout=timeout)
        except subprocess.TimeoutExpired:
            proc.kill()
            proc.communicate()
            raise
        finally:
            self.unregister_process(proc)
        return subprocess.CompletedProcess(cmd, proc.returncode, stdout, stderr)

    # -- counters ------------------------------------------------------------

    def increment(self, name: str, amount: int = 1) -> int:
        """Atomically add to a named counter and return the new value."""
        with self._lock:
            self._counters[name] += amount
            return self._counters[name]

    def count(self, name: str) -> int:
        with self._lock:
            return self._counters[name]

    def counters(self) -> dict[str, int]:
        with self._lock:
            return dict(self._counters)

    def record_failure(self, item_id: str, title: str, stage: str, reason: str, error: str | None = None) -> None:
        """Remember a per-item failure with enough context to retry it by hand."""
        with self._lock:
            self.failures.append({
                "id": item_id,
                "title": title,
                "stage": stage,
                "reason": reason,
                "error": error,
            })
        detail = f": {error}" if error else ""
        print(f"FAILED [{stage}] {item_id} '{title}' ({reason}){detail}")
