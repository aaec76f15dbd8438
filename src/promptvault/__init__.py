"""PromptVault - governed, encrypted and audited prompt definitions."""

__version__ = "0.1.0"
