#! /usr/bin/python3
import asyncio
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Set

# A task gets the results of everything that has finished so far, and
# returns its own.
TaskFn = Callable[[Mapping[str, Any]], Awaitable[Any]]


class TaskGraph(object):
    """A set of named async tasks, each declaring what it depends on.

    Tasks run as soon as all their dependencies have finished, concurrently
    with anything else that is ready.  The first task to fail fails the
    whole graph: every running sibling is cancelled (and waited for) before
    the error is raised.
    """
    def __init__(self) -> None:
        self.tasks: Dict[str, TaskFn] = {}
        self.deps: Dict[str, List[str]] = {}

    def add(self, name: str, deps: List[str], fn: TaskFn) -> None:
        if name in self.tasks:
            raise ValueError("Duplicate task {}".format(name))
        self.tasks[name] = fn
        self.deps[name] = list(deps)

    def check(self) -> None:
        """Reject unknown dependencies and cycles before running anything"""
        for name, deps in self.deps.items():
            for d in deps:
                if d not in self.tasks:
                    raise ValueError("Task {} depends on unknown task {}".format(name, d))

        done: Set[str] = set()
        remaining = set(self.tasks)
        while remaining:
            ready = {n for n in remaining if all(d in done for d in self.deps[n])}
            if not ready:
                raise ValueError("Dependency cycle between {}".format(sorted(remaining)))
            done |= ready
            remaining -= ready

    async def run(self) -> Dict[str, Any]:
        self.check()
        results: Dict[str, Any] = {}
        running: Dict[asyncio.Future, str] = {}
        waiting = set(self.tasks)

        try:
            while waiting or running:
                for name in sorted(waiting):
                    if all(d in results for d in self.deps[name]):
                        waiting.remove(name)
                        running[asyncio.ensure_future(self.tasks[name](results))] = name

                done, _ = await asyncio.wait(list(running), return_when=asyncio.FIRST_COMPLETED)
                for fut in done:
                    name = running.pop(fut)
                    # Raises the first failure, and the finally cancels the rest.
                    results[name] = fut.result()
        finally:
            for fut in running:
                fut.cancel()
            if running:
                await asyncio.gather(*running, return_exceptions=True)

        return results
