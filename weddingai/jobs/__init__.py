"""
Durable job queue.

Components:
- Job / JobStatus: persisted job record (weddingai.jobs.models)
- JobStore: transactional accessors, atomic claim
- HandlerRegistry: job type -> handler
- RetryPolicy: retry decision and optional backoff
- QueueManager: enqueue, drain cycle, status, retention, stale release

Import from the submodules directly; this package is also a Django app,
so importing models here would run before the app registry is ready.
"""
