"""cartwise - LLM-backed tax, price and additive lookups with spend tracking."""

__version__ = "0.1.0"
