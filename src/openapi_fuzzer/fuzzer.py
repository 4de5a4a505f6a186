"""Fuzzes every operation of an API and collects verdicts, findings and stats."""

import logging
import secrets
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Literal

from pydantic import BaseModel

from openapi_fuzzer.classifier import is_expected
from openapi_fuzzer.config import FuzzerConfig
from openapi_fuzzer.dispatcher import Dispatcher
from openapi_fuzzer.errors import ContractViolation, GenerationError
from openapi_fuzzer.generator.cursor import SEED_BITS, SeedSequence
from openapi_fuzzer.generator.payload import Payload, PayloadGenerator
from openapi_fuzzer.parser.base import Operation
from openapi_fuzzer.report import Finding, ResultWriter
from openapi_fuzzer.runner import ShrinkingRunner
from openapi_fuzzer.stats import Stats, StatsAggregator

logger = logging.getLogger(__name__)


class OperationReport(BaseModel):
    """Verdict for one (path, method)."""

    path: str
    method: str
    status: Literal["pass", "fail", "aborted", "error"]
    trials: int = 0
    shrink_steps: int = 0
    seed: int | None = None
    reason: str = ""
    status_code: int | None = None
    finding_path: str | None = None
    stopped: bool = False
    stats: Stats | None = None


class Fuzzer:
    """Runs one shrinking pipeline per operation.

    Operations run sequentially, or on ``config.workers`` threads. Each
    worker owns its Dispatcher; the stats aggregator and the result writer
    are the only shared state. ``stop()`` is honoured between trials.
    """

    def __init__(
        self,
        operations: list[Operation],
        config: FuzzerConfig,
        writer: ResultWriter | None = None,
        dispatcher_factory: Callable[[], Dispatcher] | None = None,
    ):
        self.operations = operations
        self.config = config
        self.writer = writer
        self.dispatcher_factory = dispatcher_factory or self._default_dispatcher
        self.seed = config.seed if config.seed is not None else secrets.randbits(SEED_BITS)
        self.stats = StatsAggregator()
        self.stop_event = threading.Event()

    def _default_dispatcher(self) -> Dispatcher:
        return Dispatcher(
            self.config.base_url,
            overload_status_codes=self.config.overload_status_codes,
            max_backoff_attempts=self.config.max_backoff_attempts,
            backoff_unit=self.config.backoff_unit,
            max_backoff=self.config.max_backoff,
            timeout=self.config.timeout,
            verify_tls=self.config.verify_tls,
            stop=self.stop_event,
        )

    def stop(self) -> None:
        self.stop_event.set()

    def run(self) -> list[OperationReport]:
        logger.info("fuzzing %d operations with seed %d", len(self.operations), self.seed)
        seeds = SeedSequence(self.seed)
        jobs = [(operation, seeds.next_seed()) for operation in self.operations]

        if self.config.workers == 1:
            with self.dispatcher_factory() as dispatcher:
                return [self.fuzz_operation(op, seed, dispatcher) for op, seed in jobs]

        with ThreadPoolExecutor(max_workers=self.config.workers) as pool:
            futures = [pool.submit(self._fuzz_with_own_dispatcher, op, seed) for op, seed in jobs]
            return [f.result() for f in futures]

    def _fuzz_with_own_dispatcher(self, operation: Operation, seed: int) -> OperationReport:
        with self.dispatcher_factory() as dispatcher:
            return self.fuzz_operation(operation, seed, dispatcher)

    def fuzz_operation(self, operation: Operation, seed: int, dispatcher: Dispatcher) -> OperationReport:
        path, method = operation.path, operation.method
        try:
            generator = PayloadGenerator(operation, self.config.extra_headers, self.config.all_of_policy)
        except GenerationError as e:
            logger.error("%s %s: %s", method, path, e)
            return OperationReport(path=path, method=method, status="error", reason=str(e))

        def check(payload: Payload) -> None:
            response = dispatcher.send(payload)
            if not is_expected(response.status_code, operation.responses, self.config.ignored_status_codes):
                raise ContractViolation(f"unexpected status {response.status_code}", response.status_code)

        runner = ShrinkingRunner(self.config.max_trials, self.config.max_shrink_iters, seed)
        result = runner.run(
            generator,
            check,
            on_timing=lambda elapsed_us: self.stats.record(path, method, elapsed_us),
            stop=self.stop_event,
        )
        outcome = result.outcome

        report = OperationReport(
            path=path,
            method=method,
            status=outcome.status,
            trials=result.trials,
            shrink_steps=result.shrink_steps,
            seed=result.seed,
            stopped=result.stopped,
            stats=self.stats.get(path, method),
        )
        if outcome.status == "pass":
            return report

        report.reason = outcome.reason
        report.status_code = outcome.status_code
        if outcome.value is not None and self.writer is not None:
            finding = Finding(
                path=path,
                method=method,
                status_code=outcome.status_code,
                reason=outcome.reason,
                seed=outcome.value.seed,
                payload=outcome.value,
            )
            report.finding_path = str(self.writer.write_finding(finding))
        return report
