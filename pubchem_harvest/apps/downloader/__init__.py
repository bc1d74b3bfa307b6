"""
Downloader App - Phase 1: The Resilient Fetcher

Responsibilities:
- Enumerate CID blocks and map each CID to its sharded artifact path
- Skip CIDs whose artifact is already on disk or that are cached as 404
- Fetch through a capacity-gated pool of routes (direct + HTTP proxies)
- Retry transient failures with a fixed backoff, up to a bound
- Record 404s in the negative cache

Output:
- DATA_DIR/{block}/{bucket}/{cid}.json
- Store collection: cid_not_found
"""
