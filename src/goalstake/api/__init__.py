"""goalstake REST API (FastAPI)."""
