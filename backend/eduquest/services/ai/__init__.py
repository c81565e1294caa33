"""
AI provider orchestration services package.

Calls to LLM backends go through one pipeline:

- providers: per-request priority list of credentials
- envelope / retry: deadline, cancellation and rate-limit backoff per attempt
- orchestration: first-success-wins fallback across providers
- cache: two-tier result cache for curriculum lookups
- notifications: throttled user-facing error messages

`service.AIService` is the entry point the rest of the application uses.
"""
