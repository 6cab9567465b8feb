"""
Protected bulk-deletion engine for Cloudflare Pages deployments and Workers
script versions.

- `engine.policy` decides what to keep and what to delete (pure)
- `engine.dispatcher` bounds concurrency and call rate for remote calls
- `engine.executor` runs deletions and accounts for every outcome
- `engine.progress` tracks progress, rate and ETA for a batch
- `engine.adapters` binds the above to Pages and Workers
- `engine.service` orchestrates list -> evaluate -> execute
"""
