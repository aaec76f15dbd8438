"""PromptVault API routers."""
