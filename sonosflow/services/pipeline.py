from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Iterable


log = logging.getLogger("sonosflow.pipeline")

StepAction = Callable[[], Awaitable[Any]]
Sleep = Callable[[float], Awaitable[Any]]


async def gather_all(*calls: Awaitable[Any]) -> list[Any]:
    """Await a batch of independent calls and let every one of them finish.

    The first failure, in argument order, is raised after the whole batch is
    done, so no call is still running when the error is reported.
    """

    results = await asyncio.gather(*calls, return_exceptions=True)
    for result in results:
        if isinstance(result, BaseException):
            raise result
    return list(results)


async def best_effort(action: StepAction, description: str) -> bool:
    """Run action; a failure is logged and turned into a no-op.

    Only for operations that are expected to fail on some content sources.
    """

    try:
        await action()
    except Exception as exc:
        log.info("%s failed, happens for some music services: %s", description, exc)
        return False
    return True


@dataclass
class Step:
    name: str
    action: StepAction
    requires: tuple[str, ...] = ()
    best_effort: bool = False
    settle: float = 0.0
    enabled: bool = True


class Pipeline:
    """Ordered list of steps with declared dependencies.

    A step runs after every step it requires. A step whose requirement was
    disabled is skipped. Failures abort the run unless the step is best effort.
    """

    def __init__(self, name: str, *, sleep: Sleep = asyncio.sleep) -> None:
        self.name = name
        self._sleep = sleep
        self._steps: list[Step] = []

    def add(
        self,
        name: str,
        action: StepAction,
        *,
        requires: Iterable[str] = (),
        best_effort: bool = False,
        settle: float = 0.0,
        when: bool = True,
    ) -> "Pipeline":
        known = {step.name for step in self._steps}
        if name in known:
            raise ValueError(f"duplicate step {name} in pipeline {self.name}")
        requires = tuple(requires)
        missing = [r for r in requires if r not in known]
        if missing:
            raise ValueError(f"step {name} requires unknown step(s) {missing} in pipeline {self.name}")
        self._steps.append(
            Step(
                name=name,
                action=action,
                requires=requires,
                best_effort=best_effort,
                settle=float(settle),
                enabled=bool(when),
            )
        )
        return self

    @property
    def steps(self) -> list[Step]:
        return list(self._steps)

    def planned(self) -> list[str]:
        """Names of the steps that run() will attempt, in order."""

        attempted: set[str] = set()
        names: list[str] = []
        for step in self._steps:
            if step.enabled and all(r in attempted for r in step.requires):
                attempted.add(step.name)
                names.append(step.name)
        return names

    async def run(self) -> list[str]:
        """Run the pipeline and return the names of the steps that succeeded."""

        planned = set(self.planned())
        succeeded: list[str] = []
        for step in self._steps:
            if step.name not in planned:
                log.debug("%s: skip %s", self.name, step.name)
                continue
            if step.settle > 0:
                await self._sleep(step.settle)
            log.debug("%s: run %s", self.name, step.name)
            if step.best_effort:
                if await best_effort(step.action, f"{self.name}: {step.name}"):
                    succeeded.append(step.name)
                continue
            await step.action()
            succeeded.append(step.name)
        return succeeded
