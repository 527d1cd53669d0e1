"""Core services: configuration, provider clients, and persistence.

- **config**: Pydantic Settings configuration and the global ``config`` instance
- **providers**: Replicate (SDK plus httpx) and imgbb (httpx) clients
- **database**: Supabase-backed project and saved-model persistence with explicit
  fail-open policy
"""
