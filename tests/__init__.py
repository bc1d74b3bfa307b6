"""
Tests Package - Unit and Integration Tests

Everything runs offline: HTTP goes through httpx.MockTransport, the store is
a SQLite file under tmp_path and backoff sleeps are replaced by a recorder.
"""
