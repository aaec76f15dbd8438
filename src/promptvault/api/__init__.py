"""PromptVault HTTP API (FastAPI)."""
