"""Diagram Forge content-safety pipeline.

Decides whether user-submitted diagrams may be published:
1. Sanitizer: deterministic HTML/URL/directive removal
2. InjectionDetector: heuristic prompt-injection signals
3. RateLimiter: per-user / per-IP submission gates
4. Moderator: LLM policy check with validation of the model's own output
5. ModerationLog: append-only audit trail of every decision
"""

__version__ = "0.1.0"
