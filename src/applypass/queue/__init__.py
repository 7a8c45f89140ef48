"""Durable task queue for ApplyPass bulk-apply batches.

Why a SQLite table and not a broker?
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~
The queue has to be readable by the task owner (status, per-job outcomes,
run log), cancelable from the request path, and recoverable after a worker
dies mid-batch. All of that is row state, so the row is the queue:

- Claim, heartbeat, finalize and cancel are single guarded UPDATE
  statements; the affected-row count decides who won a race.
- The lease monitor recovers abandoned ``running`` rows from their
  ``heartbeat_at`` instead of relying on broker acknowledgements.
- Workers talk to the same operations either in-process or through the
  HTTP endpoint, so a deployment needs nothing beyond the database file.
"""
