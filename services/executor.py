"""Bounded parallel task execution with a thread-safe progress channel."""
from __future__ import annotations

import queue
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any, Callable, Generic, Sequence, TypeVar

T = TypeVar("T")
A = TypeVar("A")


@dataclass(frozen=True)
class TaskResult:
    identifier: str
    result_code: int
    message: str = ""
    artifact_path: str | None = None
    link: str | None = None
    cab_url: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.result_code == 0 and bool(self.artifact_path)


class ProgressChannel:
    """Workers only post; a single consumer drains and applies the messages."""

    def __init__(self) -> None:
        self._queue: queue.Queue[tuple[str, str]] = queue.Queue()

    def post(self, identifier: str, status: str) -> None:
        self._queue.put((identifier, status))

    def drain(self) -> list[tuple[str, str]]:
        messages: list[tuple[str, str]] = []
        while True:
            try:
                messages.append(self._queue.get_nowait())
            except queue.Empty:
                return messages


class ParallelTaskExecutor(Generic[T, A]):
    def execute(
        self,
        items: Sequence[T],
        identifier_key: Callable[[T], str],
        task: Callable[[T, A, ProgressChannel], TaskResult],
        task_args: A,
        throttle_limit: int,
        progress: ProgressChannel | None = None,
    ) -> list[TaskResult]:
        channel = progress or ProgressChannel()
        if not items:
            return []
        workers = max(1, min(int(throttle_limit or 1), len(items)))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="driver-acquire") as pool:
            futures: list[tuple[str, Future[TaskResult]]] = [
                (identifier_key(item), pool.submit(_run_one, item, identifier_key, task, task_args, channel))
                for item in items
            ]
        return [self._collect(identifier, future) for identifier, future in futures]

    def _collect(self, identifier: str, future: Future[TaskResult]) -> TaskResult:
        try:
            return future.result()
        except Exception as exc:
            return TaskResult(identifier, 1, f"Worker crashed: {exc}")


def _run_one(
    item: Any,
    identifier_key: Callable[[Any], str],
    task: Callable[[Any, Any, ProgressChannel], TaskResult],
    task_args: Any,
    channel: ProgressChannel,
) -> TaskResult:
    identifier = identifier_key(item)
    try:
        return task(item, task_args, channel)
    except Exception as exc:
        channel.post(identifier, f"Error: {exc}")
        return TaskResult(identifier, 1, str(exc))
