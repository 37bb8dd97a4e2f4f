"""Durable job queue: store, runner, handlers and the enqueue boundary.

Jobs live in one SQLite table and move between the pending, processing,
completed and failed areas through conditional status updates, so several
runner processes can share one database without a broker. A claim is the
single point where a job changes owner: exactly one runner wins it.
"""
