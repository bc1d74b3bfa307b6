"""
Saver App - Phase 3: Database Persistence

Responsibilities:
- Buffer extracted records and write them in bounded batches (upsert by cid)
- Drop and log batches the store rejects; artifacts stay on disk for a rerun
- Stream stored collections back out as JSONL

Database Schema:
- documents(collection TEXT, key TEXT, data TEXT, created_at TEXT, updated_at TEXT)
"""
