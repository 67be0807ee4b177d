"""pullsync test suite.

Test organization:
- unit/test_query.py: immutable query model, predicates, OData rendering
- unit/test_store.py, unit/test_watermark.py: local stores and cursor records
- unit/test_pagination.py: offset pagination policy
- unit/test_incremental.py: watermark-chasing incremental strategy
- unit/test_pull.py: pull driver end to end against an in-memory remote table
- unit/test_reader.py: HTTP remote reader
"""
