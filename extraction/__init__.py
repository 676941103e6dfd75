"""
Integration with the external document-extraction service.

This package contains:
- client: REST client for submitting and fetching extraction jobs
- polling: Backoff schedule, status polling and result pagination
- job: Extraction job orchestration and transaction persistence
"""
