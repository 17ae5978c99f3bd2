"""Protective LLM gateway.

Sits between tenant-facing prompt-generation requests and a third-party
LLM provider:
  - Rate Limiter (per-tenant minute/hour/day windows)
  - Response Cache (TTL + LRU memoization of provider responses)
  - Credential Vault (AES-256-GCM encrypted provider API keys)
  - Timeout Guard (hard deadlines, cooperative cancellation, guaranteed cleanup)
"""
