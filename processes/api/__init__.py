"""HTTP surface for the pack allocator (FastAPI)."""
