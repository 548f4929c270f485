"""
indexsync - incremental search-index synchronization for workflow executions.

Keeps an Elasticsearch index of completed workflow executions in step with
the paginated execution API, one lease-guarded, watermark-bounded cycle at
a time.
"""

__version__ = "0.1.0"
