"""
Scraping orchestration core: scheduling, per-domain rate gating, command
dispatch and failure backoff.
"""
