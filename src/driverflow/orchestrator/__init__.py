"""Concurrent staging orchestrator for package and driver retrieval.

Why not Celery / Prefect / a generic retry decorator?
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~
The core problem is not task queuing but the combination of three things
that have to agree with each other inside one process:

- A resilient chain per item: several alternative retrieval methods, each
  retried with linear backoff, where a failure class decides between retry,
  fallback and abort, and success is only trusted once the artifact exists.
- Live progress for a caller that must never be blocked by workers and must
  never see a stale status after an item's final outcome.
- A shared install manifest that concurrent workers append to, with
  de-duplication and a deterministic final order.

A broker would add an operational dependency for a single-machine tool while
still requiring all of the above as custom task logic. A bounded thread pool,
an in-process progress queue and a file-locked JSON document cover it.
"""
