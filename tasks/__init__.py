"""
Background tasks run by the ARQ worker.

Modules:
- arq: Redis pool helpers
- tiles: tile download scheduling and the download job
- worker: ARQ worker settings and startup hooks
"""
