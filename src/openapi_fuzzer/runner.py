"""Property-test runner: many randomized trials, then shrinking on failure.

The runner moves through three states. While *running* it draws one value
per trial from a fresh Cursor and checks it. The first failing value moves
it to *shrinking*, where it walks the generator's shrink candidates and
keeps any candidate that still fails with the same status code. It is
*done* when all trials passed, when no candidate makes progress, or when
the shrink budget is spent.

A check signals a contract violation by raising AssertionError and an
environment problem by raising TransportError. The latter aborts the run
without shrinking.
"""

import logging
import secrets
import threading
import time
from typing import Annotated, Any, Callable, Literal, Union

from pydantic import BaseModel, Field

from openapi_fuzzer.errors import TransportError
from openapi_fuzzer.generator.cursor import SEED_BITS, SeedSequence
from openapi_fuzzer.generator.strategies import ValueGenerator

logger = logging.getLogger(__name__)

Check = Callable[[Any], None]


class Pass(BaseModel):
    status: Literal["pass"] = "pass"


class Fail(BaseModel):
    status: Literal["fail"] = "fail"
    value: Any
    reason: str
    status_code: int | None = None


class Aborted(BaseModel):
    status: Literal["aborted"] = "aborted"
    reason: str
    # best counterexample found before the abort, if any
    value: Any = None
    status_code: int | None = None


TrialOutcome = Annotated[Union[Pass, Fail, Aborted], Field(discriminator="status")]


class RunResult(BaseModel):
    outcome: TrialOutcome
    seed: int
    trials: int
    shrink_steps: int = 0
    stopped: bool = False


class ShrinkingRunner:
    """Runs ``max_trials`` trials of a check against one generator.

    The same ``seed`` reproduces the same trials and the same minimized
    counterexample. ``on_timing`` receives the duration of every trial,
    shrinking trials included, in microseconds.
    """

    def __init__(
        self,
        max_trials: int = 256,
        max_shrink_iters: int = 1024,
        seed: int | None = None,
        clock: Callable[[], int] = time.perf_counter_ns,
    ):
        self.max_trials = max_trials
        self.max_shrink_iters = max_shrink_iters
        self.seed = seed if seed is not None else secrets.randbits(SEED_BITS)
        self.clock = clock

    def _trial(self, check: Check, value: Any, on_timing: Callable[[int], None] | None) -> TrialOutcome:
        start = self.clock()
        try:
            check(value)
        except AssertionError as e:
            return Fail(value=value, reason=str(e) or type(e).__name__, status_code=getattr(e, "status_code", None))
        except TransportError as e:
            logger.warning("trial aborted: %s", e)
            return Aborted(reason=str(e))
        finally:
            if on_timing is not None:
                on_timing((self.clock() - start) // 1000)
        return Pass()

    def run(
        self,
        generator: ValueGenerator,
        check: Check,
        on_timing: Callable[[int], None] | None = None,
        stop: threading.Event | None = None,
    ) -> RunResult:
        seeds = SeedSequence(self.seed)
        for trial in range(self.max_trials):
            if stop is not None and stop.is_set():
                return RunResult(outcome=Pass(), seed=self.seed, trials=trial, stopped=True)
            value = generator.produce(seeds.next_cursor())
            outcome = self._trial(check, value, on_timing)
            if isinstance(outcome, Aborted):
                if stop is not None and stop.is_set():
                    # interrupted backoff, no verdict
                    return RunResult(outcome=Pass(), seed=self.seed, trials=trial + 1, stopped=True)
                return RunResult(outcome=outcome, seed=self.seed, trials=trial + 1)
            if isinstance(outcome, Fail):
                logger.info("trial %d failed (%s), shrinking", trial + 1, outcome.reason)
                return self._shrink(generator, check, outcome, trial + 1, on_timing, stop)
        return RunResult(outcome=Pass(), seed=self.seed, trials=self.max_trials)

    def _shrink(
        self,
        generator: ValueGenerator,
        check: Check,
        failure: Fail,
        trials: int,
        on_timing: Callable[[int], None] | None,
        stop: threading.Event | None,
    ) -> RunResult:
        current = failure
        iterations = 0
        steps = 0
        progress = True
        while progress and iterations < self.max_shrink_iters:
            progress = False
            current_size = generator.size(current.value)
            for candidate in generator.shrink(current.value):
                if stop is not None and stop.is_set():
                    # keep what was found so far
                    return RunResult(outcome=current, seed=self.seed, trials=trials, shrink_steps=steps, stopped=True)
                if iterations >= self.max_shrink_iters:
                    break
                if candidate == current.value or generator.size(candidate) > current_size:
                    continue
                iterations += 1
                outcome = self._trial(check, candidate, on_timing)
                if isinstance(outcome, Aborted):
                    if stop is not None and stop.is_set():
                        return RunResult(outcome=current, seed=self.seed, trials=trials, shrink_steps=steps, stopped=True)
                    outcome.value = current.value
                    outcome.status_code = current.status_code
                    return RunResult(outcome=outcome, seed=self.seed, trials=trials, shrink_steps=steps)
                if isinstance(outcome, Fail) and outcome.status_code == current.status_code:
                    current = outcome
                    steps += 1
                    progress = True
                    break
        logger.debug("shrinking finished after %d candidates, %d accepted", iterations, steps)
        return RunResult(outcome=current, seed=self.seed, trials=trials, shrink_steps=steps)
