"""Pipeline workflows: quarter fan-out backfills and the submissions poller."""
