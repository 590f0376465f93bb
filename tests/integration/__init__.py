"""
Integration tests for the tablemigrator library.

SQLite tests run against temporary database files and always run.
PostgreSQL tests need a database, provisioned via testcontainers, and are
skipped automatically if Docker is not available.

Run integration tests:
    pytest tests/integration/ -v

Run only PostgreSQL tests:
    pytest tests/integration/ -v -m postgres

Skip integration tests:
    pytest tests/ -v -m "not integration"
"""
