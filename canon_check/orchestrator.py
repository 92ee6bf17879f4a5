"""
End-to-end evaluation of one artifact against one RuleSet.

Flow: snapshot overrides and pin the clock, resolve scope, look up oracle
terms once, run checkers concurrently in dependency levels, aggregate, build
the report, persist it.
"""

from __future__ import annotations

import logging
import os
import time
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import replace
from datetime import datetime
from pathlib import Path
from typing import Callable, Mapping

from .aggregate import aggregate
from .checkers import CHECKERS, CancellationToken, CheckContext
from .checkers.base import checker_error
from .errors import CheckerTimeoutError, EvaluationCancelled, StorageError
from .models import Artifact, CheckResult, Status
from .oracle import TermOracle
from .overrides import OverrideSnapshot, OverrideStore
from .report import AuditReport, ReportLog
from .rules.schema import Rule, RuleSet
from .scope import Resolution, ScopeResolver
from .util import new_ulid, utc_now

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 10.0

# Only definite outcomes of deterministic checkers are reused across runs.
CARRYABLE = (Status.PASS, Status.FAIL, Status.WARN)

# Check types whose outcome depends on state outside the artifact.
ENVIRONMENT_CHECKS = frozenset({"reference"})


class Orchestrator:
    def __init__(
        self,
        *,
        reports: ReportLog | None = None,
        overrides: OverrideStore | None = None,
        oracles: Mapping[str, TermOracle] | None = None,
        max_workers: int | None = None,
        default_timeout: float = DEFAULT_TIMEOUT,
        clock: Callable[[], datetime] = utc_now,
        resolver: ScopeResolver | None = None,
        reference_root: Path | None = None,
        poll_interval: float = 0.01,
    ):
        self.reports = reports
        self.overrides = overrides
        self.oracles = dict(oracles or {})
        self.max_workers = max_workers or os.cpu_count() or 1
        self.default_timeout = default_timeout
        self.clock = clock
        self.resolver = resolver or ScopeResolver()
        self.reference_root = reference_root
        self.poll_interval = poll_interval

    # ------------------------------------------------------------------
    # Preparation
    # ------------------------------------------------------------------

    def _oracle_terms(self, rules: tuple[Rule, ...], now: datetime) -> dict[str, frozenset[str]]:
        names = sorted({str(r.check.params["oracle"]) for r in rules if r.check.uses_oracle})
        terms: dict[str, frozenset[str]] = {}
        for name in names:
            oracle = self.oracles.get(name)
            if oracle is None:
                logger.warning("No oracle configured for %r", name)
                continue
            terms[name] = oracle.lookup(now.date())
        return terms

    def _prior_results(self, artifact: Artifact, ruleset: RuleSet) -> dict[str, tuple[str, CheckResult]]:
        """
        rule_id -> (rule_hash, result) from the latest report for this artifact.

        Empty unless that report was made under a different ruleset version:
        re-running the same version is a full evaluation.
        """
        if self.reports is None:
            return {}
        try:
            prior = self.reports.latest(artifact.fingerprint)
        except StorageError as e:
            logger.warning("Report log unreadable, running full evaluation: %s", e)
            return {}
        if prior is None or prior.ruleset_version == ruleset.version:
            return {}
        return {e.rule_id: (e.rule_hash, e.result) for e in prior.entries}

    @staticmethod
    def _excluded_results(ruleset: RuleSet, resolution: Resolution) -> dict[str, CheckResult]:
        results: dict[str, CheckResult] = {}
        for conflict in resolution.conflicts:
            for rule_id in conflict.rule_ids:
                results[rule_id] = CheckResult(
                    rule_id=rule_id,
                    status=Status.ERROR,
                    message=str(conflict),
                    error_kind="scope-conflict",
                )
        for rule_id, reason in resolution.excluded.items():
            if rule_id in ruleset:
                results.setdefault(rule_id, CheckResult(rule_id=rule_id, status=Status.NOT_APPLICABLE, message=reason))
        return results

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    @staticmethod
    def _run_checker(artifact: Artifact, rule: Rule, ctx: CheckContext, started: dict[str, float]) -> CheckResult:
        started[rule.id] = time.monotonic()
        ctx.checkpoint()
        checker = CHECKERS[rule.check.type]
        try:
            result = checker(artifact, rule, ctx)
        except EvaluationCancelled:
            raise
        except Exception as e:
            logger.warning("Checker %s raised for %s: %s", rule.check.type, rule.id, e)
            return checker_error(rule, f"checker raised {type(e).__name__}: {e}")
        if result.rule_id != rule.id:
            result = replace(result, rule_id=rule.id)
        return result

    def _new_pool(self) -> ThreadPoolExecutor:
        return ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix="canon-check")

    def _replace_pool(
        self,
        pools: list[ThreadPoolExecutor],
        pending: set[Future[CheckResult]],
        tasks: dict[Future[CheckResult], tuple[Rule, CancellationToken, CheckContext]],
        artifact: Artifact,
        started: dict[str, float],
    ) -> set[Future[CheckResult]]:
        """
        Retire the current pool after a timeout and requeue its waiting tasks.

        A timed-out checker that ignores its token keeps its worker thread, so
        anything still queued behind it moves to a fresh pool. Tasks already
        running stay where they are.
        """
        retired = pools[-1]
        pool = self._new_pool()
        pools.append(pool)
        for future in [f for f in pending if f.cancel()]:
            pending.discard(future)
            rule, token, ctx = tasks.pop(future)
            moved = pool.submit(self._run_checker, artifact, rule, ctx, started)
            tasks[moved] = (rule, token, ctx)
            pending.add(moved)
        retired.shutdown(wait=False)
        return pending

    def _run_wave(
        self,
        pools: list[ThreadPoolExecutor],
        artifact: Artifact,
        rules: list[Rule],
        base_ctx: CheckContext,
        cancel: CancellationToken,
    ) -> dict[str, CheckResult]:
        started: dict[str, float] = {}
        tasks: dict[Future[CheckResult], tuple[Rule, CancellationToken, CheckContext]] = {}
        for rule in rules:
            token = cancel.child()
            ctx = replace(base_ctx, cancel=token)
            tasks[pools[-1].submit(self._run_checker, artifact, rule, ctx, started)] = (rule, token, ctx)

        results: dict[str, CheckResult] = {}
        pending = set(tasks)
        while pending:
            cancel.raise_if_cancelled()
            done, pending = wait(pending, timeout=self.poll_interval, return_when=FIRST_COMPLETED)
            for future in done:
                rule, _, _ = tasks[future]
                results[rule.id] = future.result()

            now = time.monotonic()
            timed_out = False
            for future in list(pending):
                rule, token, _ = tasks[future]
                begun = started.get(rule.id)
                timeout = rule.check.timeout or self.default_timeout
                if begun is None or now - begun <= timeout:
                    continue
                # Abandon the task; a cooperative checker stops at its next checkpoint.
                token.cancel()
                future.cancel()
                pending.discard(future)
                timed_out = True
                err = CheckerTimeoutError(rule.id, timeout)
                logger.warning("%s", err)
                results[rule.id] = CheckResult(
                    rule_id=rule.id,
                    status=Status.ERROR,
                    message=str(err),
                    error_kind="timeout",
                )
            if timed_out:
                pending = self._replace_pool(pools, pending, tasks, artifact, started)
        cancel.raise_if_cancelled()
        return results

    def evaluate(
        self,
        artifact: Artifact,
        ruleset: RuleSet,
        *,
        cancel: CancellationToken | None = None,
        incremental: bool = True,
    ) -> AuditReport:
        """
        Evaluate an artifact and return its finalized AuditReport.

        Raises EvaluationCancelled if `cancel` fires before the report is
        persisted; nothing is written in that case. A report that cannot be
        persisted is returned with ``unpersisted=True``.
        """
        cancel = cancel or CancellationToken()
        cancel.raise_if_cancelled()

        now = self.clock()
        snapshot = self.overrides.snapshot(now) if self.overrides is not None else OverrideSnapshot(taken_at=now)
        resolution = self.resolver.resolve(ruleset, artifact.metadata)
        applicable = {r.id for r in resolution.applicable}
        logger.info(
            "Evaluating %s against ruleset %s: %d of %d rules applicable",
            artifact.origin or artifact.fingerprint[:12],
            ruleset.version[:12],
            len(applicable),
            len(ruleset),
        )

        base_ctx = CheckContext(
            cancel=cancel,
            oracle_terms=self._oracle_terms(resolution.applicable, now),
            reference_root=self.reference_root,
        )
        prior = self._prior_results(artifact, ruleset) if incremental else {}
        results = self._excluded_results(ruleset, resolution)
        carried: list[str] = []

        pools = [self._new_pool()]
        try:
            for level in ruleset.dependency_levels():
                to_run: list[Rule] = []
                for rule in level:
                    if rule.id not in applicable:
                        continue
                    blocked = [r for r in rule.requires if results.get(r) is None or results[r].status != Status.PASS]
                    if blocked:
                        results[rule.id] = CheckResult(
                            rule_id=rule.id,
                            status=Status.NOT_APPLICABLE,
                            message=f"prerequisite did not pass: {', '.join(blocked)}",
                        )
                        continue
                    previous = prior.get(rule.id)
                    if (
                        previous is not None
                        and previous[0] == rule.content_hash
                        and previous[1].status in CARRYABLE
                        and not rule.check.uses_oracle
                        and rule.check.type not in ENVIRONMENT_CHECKS
                        and all(r in carried for r in rule.requires)
                    ):
                        results[rule.id] = previous[1]
                        carried.append(rule.id)
                        continue
                    to_run.append(rule)
                if to_run:
                    results.update(self._run_wave(pools, artifact, to_run, base_ctx, cancel))
        finally:
            for pool in pools:
                pool.shutdown(wait=False, cancel_futures=True)

        if carried:
            logger.info("Carried forward %d unchanged rule result(s)", len(carried))

        decision = aggregate(results.values(), ruleset, snapshot, artifact.metadata)
        report = AuditReport(
            report_id=new_ulid(),
            artifact_fingerprint=artifact.fingerprint,
            ruleset_version=ruleset.version,
            verdict=decision.verdict,
            timestamp=now,
            entries=decision.entries,
            metadata=artifact.metadata,
            artifact_type=artifact.type,
            origin=str(artifact.origin) if artifact.origin is not None else None,
            carried_forward=tuple(r.id for r in ruleset.rules if r.id in carried),
            overrides_as_of=snapshot.taken_at,
        )

        cancel.raise_if_cancelled()
        if self.reports is None:
            return report
        try:
            report = self.reports.record(report)
        except StorageError as e:
            logger.error("Report %s not persisted: %s", report.report_id, e)
            return replace(report, unpersisted=True)
        logger.info("Verdict %s (report %s, revision %d)", report.verdict.value, report.report_id, report.revision)
        return report
