"""
enrolment_batch -- Batched background recalculation of learner enrolments.

Provides the two calculation jobs, the job scheduler that runs one bounded
batch per invocation and resubmits until the population is exhausted, the
version gate that decides whether a learner sweep is needed, and a
SQL-backed deferred task queue with a polling runner.

Architecture:
    enrolment_batch/ is a top-level package.  Nothing in enrolment_kernel
    imports from enrolment_batch except db.engine.create_tables.

Invariants:
    - A freshly constructed job is never complete.
    - One batch per invocation; incomplete jobs are resubmitted with their
      current args.
    - The version gate advances only when a learner sweep completes.
    - At most one concurrent run per job name (lease).
    - Clock injection (no datetime.now() calls outside SystemClock).
"""
