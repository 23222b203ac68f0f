"""Resume parsing worker.

One call to ``process_slice`` is one stateless worker invocation: it claims
due AI jobs with optimistic updates, parses them with bounded parallelism,
records each outcome, and returns. Any number of slices may run at once,
on any number of hosts; the database decides who owns each attempt.
"""

import logging
import time
from concurrent.futures import FIRST_COMPLETED, ThreadPoolExecutor, wait
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Optional, Protocol

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from resume_import.config import AppConfig
from resume_import.errors import ParseFailure, TransientStoreError
from resume_import.imports.backoff import compute_backoff_ms, next_retry_at
from resume_import.imports.progress import refresh_run_progress
from resume_import.models import JobPosting, ResumeAiJob
from resume_import.models.base import utc_now
from resume_import.models.resume_ai_job import AI_FAILED, AI_RETRY, AI_SUCCEEDED
from resume_import.storage import ai_jobs as ai_job_store
from resume_import.storage import items as item_store
from resume_import.storage.retry import run_with_store_retry
from resume_import.utils.logging_config import log_metric

logger = logging.getLogger("resume_import.worker")

SLICE_OK = "ok"
SLICE_NO_WORK = "no_work"
SLICE_TIME_EXHAUSTED = "time_exhausted"

OUTCOME_SUCCEEDED = "succeeded"
OUTCOME_RETRY = "retry"
OUTCOME_FAILED = "failed"
OUTCOME_DISCARDED = "discarded"
OUTCOME_ERROR = "error"

MAX_ERROR_LENGTH = 1000


class ParseResume(Protocol):
    def __call__(self, resume_id: int, job_context: dict, timeout_ms: int, run_id: str) -> bool:
        ...


@dataclass
class SliceResult:
    succeeded: int = 0
    failed: int = 0
    retried: int = 0
    processed: int = 0
    status: str = SLICE_OK

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class ClaimedJob:
    id: int
    run_id: str
    job_id: int
    resume_id: int
    attempts: int
    started_at: datetime


def _call_with_timeout(parse_resume: ParseResume, claimed: ClaimedJob, job_context: dict, timeout_ms: int) -> None:
    """Run one parse under a hard timeout. Raises ParseFailure on any kind of failure.

    Each call gets its own thread so a hung parse can't hold up the next one.
    A call that times out is abandoned and its late result is never looked at.
    """
    executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix=f"parse-{claimed.resume_id}")
    try:
        future = executor.submit(parse_resume, claimed.resume_id, job_context, timeout_ms, claimed.run_id)
        try:
            ok = future.result(timeout=timeout_ms / 1000)
        except FutureTimeoutError:
            raise ParseFailure(f"GPT parse timed out after {timeout_ms}ms")
        except Exception as e:
            raise ParseFailure(f"GPT parse error: {e}") from e
        if not ok:
            raise ParseFailure("GPT parse returned failure")
    finally:
        executor.shutdown(wait=False)


class Worker:
    """Claims and processes AI jobs for a single slice."""

    def __init__(
        self,
        session_factory: sessionmaker,
        parse_resume: ParseResume,
        config: AppConfig,
        concurrency: Optional[int] = None,
        timeout_ms: Optional[int] = None,
        trigger: str = "manual",
    ):
        self.session_factory = session_factory
        self.parse_resume = parse_resume
        self.config = config
        self.concurrency = max(1, concurrency or config.worker.concurrency)
        self.timeout_ms = max(1, timeout_ms or config.worker.timeout_ms)
        self.trigger = trigger
        self._contexts: dict[int, dict] = {}

    # -- store access --

    def _with_retry(self, stage: str, db: Session, operation):
        return run_with_store_retry(
            stage,
            operation,
            max_retries=self.config.store.max_retries,
            base_delay_ms=self.config.store.retry_base_delay_ms,
            session=db,
        )

    def _job_context(self, db: Session, job_id: int) -> dict:
        if job_id not in self._contexts:
            posting = db.get(JobPosting, job_id)
            self._contexts[job_id] = posting.parse_context() if posting is not None else {}
        return self._contexts[job_id]

    def _fetch_candidates(self, db: Session, attempted: set[int]) -> list[ai_job_store.CandidateJob]:
        limit = self.config.worker.candidate_multiplier * self.concurrency

        def select():
            jobs = ai_job_store.select_candidates(db, utc_now(), limit, exclude_ids=attempted)
            db.commit()
            return jobs

        return self._with_retry("select_candidates", db, select)

    def _try_claim(self, db: Session, candidate: ai_job_store.CandidateJob) -> Optional[ClaimedJob]:
        observed_status = candidate.status
        observed_attempts = candidate.attempts
        now = utc_now()

        def claim():
            won = ai_job_store.claim(db, candidate.id, observed_status, observed_attempts, now)
            if won:
                db.commit()
            else:
                db.rollback()
            return won

        if not self._with_retry("claim", db, claim):
            log_metric("gpt_worker_claim_lost", job_id=candidate.id, run_id=candidate.run_id)
            return None

        claimed = ClaimedJob(
            id=candidate.id,
            run_id=candidate.run_id,
            job_id=candidate.job_id,
            resume_id=candidate.resume_id,
            attempts=observed_attempts + 1,
            started_at=now,
        )
        try:
            item_store.mirror_claim(db, claimed.run_id, claimed.resume_id, claimed.attempts, now)
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            logger.warning("[run:%s] Item mirror for claim of job %d failed: %s", claimed.run_id, claimed.id, e)

        log_metric(
            "gpt_worker_job_claimed",
            job_id=claimed.id,
            run_id=claimed.run_id,
            resume_id=claimed.resume_id,
            attempts=claimed.attempts,
            trigger=self.trigger,
        )
        return claimed

    # -- per-job processing (runs on pool threads, one session each) --

    def _record_success(self, db: Session, claimed: ClaimedJob) -> str:
        finished_at = utc_now()
        recorded = ai_job_store.record_outcome(db, claimed.id, claimed.attempts, {
            ResumeAiJob.status: AI_SUCCEEDED,
            ResumeAiJob.last_finished_at: finished_at,
            ResumeAiJob.last_error: None,
            ResumeAiJob.next_retry_at: None,
            ResumeAiJob.updated_at: finished_at,
        })
        if not recorded:
            db.rollback()
            return OUTCOME_DISCARDED
        db.commit()
        self._mirror(db, claimed, lambda: item_store.mirror_success(
            db, claimed.run_id, claimed.resume_id, claimed.attempts, finished_at
        ))
        log_metric(
            "gpt_worker_job_succeeded",
            job_id=claimed.id,
            run_id=claimed.run_id,
            resume_id=claimed.resume_id,
            attempts=claimed.attempts,
            duration_ms=int((finished_at - claimed.started_at).total_seconds() * 1000),
        )
        return OUTCOME_SUCCEEDED

    def _record_failure(self, db: Session, claimed: ClaimedJob, error: str) -> str:
        finished_at = utc_now()
        error = error[:MAX_ERROR_LENGTH]
        exhausted = claimed.attempts >= self.config.worker.max_attempts
        retry_at = None
        if not exhausted:
            retry_at = next_retry_at(
                finished_at,
                claimed.attempts,
                self.config.worker.base_backoff_ms,
                self.config.worker.max_backoff_ms,
            )

        recorded = ai_job_store.record_outcome(db, claimed.id, claimed.attempts, {
            ResumeAiJob.status: AI_FAILED if exhausted else AI_RETRY,
            ResumeAiJob.last_finished_at: finished_at,
            ResumeAiJob.last_error: error,
            ResumeAiJob.next_retry_at: retry_at,
            ResumeAiJob.updated_at: finished_at,
        })
        if not recorded:
            db.rollback()
            return OUTCOME_DISCARDED
        db.commit()

        if exhausted:
            self._mirror(db, claimed, lambda: item_store.mirror_failure(
                db, claimed.run_id, claimed.resume_id, claimed.attempts, finished_at, error
            ))
            log_metric(
                "gpt_worker_job_failed",
                job_id=claimed.id,
                run_id=claimed.run_id,
                resume_id=claimed.resume_id,
                attempts=claimed.attempts,
                error=error,
            )
            return OUTCOME_FAILED

        self._mirror(db, claimed, lambda: item_store.mirror_retry(
            db, claimed.run_id, claimed.resume_id, claimed.attempts, finished_at, error, retry_at
        ))
        log_metric(
            "gpt_worker_job_retry",
            job_id=claimed.id,
            run_id=claimed.run_id,
            resume_id=claimed.resume_id,
            attempts=claimed.attempts,
            backoff_ms=compute_backoff_ms(
                claimed.attempts, self.config.worker.base_backoff_ms, self.config.worker.max_backoff_ms
            ),
            error=error,
        )
        return OUTCOME_RETRY

    def _mirror(self, db: Session, claimed: ClaimedJob, write) -> None:
        try:
            write()
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            logger.warning("[run:%s] Item mirror for job %d failed: %s", claimed.run_id, claimed.id, e)

    def _process(self, claimed: ClaimedJob, job_context: dict) -> str:
        try:
            _call_with_timeout(self.parse_resume, claimed, job_context, self.timeout_ms)
            failure = None
        except ParseFailure as e:
            failure = str(e)

        db = self.session_factory()
        try:
            if failure is None:
                outcome = self._with_retry("record_success", db, lambda: self._record_success(db, claimed))
            else:
                outcome = self._with_retry("record_failure", db, lambda: self._record_failure(db, claimed, failure))

            if outcome == OUTCOME_DISCARDED:
                logger.info(
                    "[run:%s] Outcome for AI job %d discarded (claim no longer held)",
                    claimed.run_id, claimed.id,
                )
                return outcome

            self._with_retry("refresh_progress", db, lambda: refresh_run_progress(
                db, claimed.run_id, keep_runs=self.config.retention.keep_runs_per_job
            ))
            return outcome
        finally:
            db.close()

    # -- slice loop --

    def run(self) -> SliceResult:
        started = time.monotonic()
        budget_ms = self.config.worker.slice_budget_ms
        min_remaining_ms = self.config.worker.min_remaining_ms

        def can_start() -> bool:
            elapsed_ms = (time.monotonic() - started) * 1000
            return budget_ms - elapsed_ms >= min_remaining_ms

        result = SliceResult()
        log_metric(
            "gpt_worker_slice_start",
            trigger=self.trigger,
            concurrency=self.concurrency,
            timeout_ms=self.timeout_ms,
        )

        attempted: set[int] = set()
        buffer: list[ai_job_store.CandidateJob] = []
        exhausted = False
        out_of_time = False
        db = self.session_factory()
        pool = ThreadPoolExecutor(max_workers=self.concurrency, thread_name_prefix="gpt-worker")
        in_flight = set()
        claimed_count = 0
        try:
            while True:
                while len(in_flight) < self.concurrency and not exhausted:
                    if not can_start():
                        out_of_time = True
                        exhausted = True
                        break
                    if not buffer:
                        buffer = self._fetch_candidates(db, attempted)
                        if not buffer:
                            exhausted = True
                            break
                    candidate = buffer.pop(0)
                    attempted.add(candidate.id)
                    claimed = self._try_claim(db, candidate)
                    if claimed is None:
                        continue
                    claimed_count += 1
                    job_context = self._job_context(db, claimed.job_id)
                    in_flight.add(pool.submit(self._process, claimed, job_context))

                if not in_flight:
                    break
                done, in_flight = wait(in_flight, return_when=FIRST_COMPLETED)
                for future in done:
                    self._tally(result, future)
        finally:
            pool.shutdown(wait=True)
            db.close()

        if claimed_count == 0 and out_of_time:
            result.status = SLICE_TIME_EXHAUSTED
        elif claimed_count == 0:
            result.status = SLICE_NO_WORK
            log_metric("gpt_worker_no_candidates", trigger=self.trigger)
        else:
            result.status = SLICE_OK

        log_metric(
            "gpt_worker_slice_end",
            trigger=self.trigger,
            duration_ms=int((time.monotonic() - started) * 1000),
            **result.to_dict(),
        )
        return result

    def _tally(self, result: SliceResult, future) -> None:
        try:
            outcome = future.result()
        except TransientStoreError as e:
            # The claim stays "processing" until stale-claim recovery picks it up
            logger.error("AI job outcome could not be stored: %s", e)
            outcome = OUTCOME_ERROR
        except Exception:
            logger.exception("AI job processing crashed")
            outcome = OUTCOME_ERROR

        if outcome == OUTCOME_DISCARDED or outcome == OUTCOME_ERROR:
            return
        result.processed += 1
        if outcome == OUTCOME_SUCCEEDED:
            result.succeeded += 1
        elif outcome == OUTCOME_RETRY:
            result.retried += 1
        elif outcome == OUTCOME_FAILED:
            result.failed += 1


def process_slice(
    session_factory: sessionmaker,
    parse_resume: ParseResume,
    config: AppConfig,
    concurrency: Optional[int] = None,
    timeout_ms: Optional[int] = None,
    trigger: str = "manual",
) -> SliceResult:
    """Run one worker slice and return its counts."""
    worker = Worker(session_factory, parse_resume, config, concurrency, timeout_ms, trigger)
    return worker.run()
