"""
Error Taxonomy
==============

Exceptions raised across the article pipeline.  Every error carries a short
machine-readable ``kind`` (used in failure reports) and an optional
``remediation`` hint that the CLI prints next to the failing stage.

Recovery rules applied by the orchestrator:
    ProviderError / ProviderTransportError  -- retried with backoff
    TruncationError                         -- section split and retried
    ScoreBudgetExhausted                    -- best revision kept, bundle warned
    ArtifactStoreError / ValidationError    -- fatal for the pipeline
"""

from __future__ import annotations

from typing import Optional


class ArticleForgeError(Exception):
    """Base exception for all pipeline errors."""

    kind: str = "error"
    retryable: bool = False

    def __init__(self, message: str, remediation: str = ""):
        self.remediation = remediation
        super().__init__(message)


class ProviderError(ArticleForgeError):
    """Raised when both the live and synthetic paths of a provider fail."""

    kind = "provider_error"
    retryable = True

    def __init__(self, artifact_kind: str, reason: str, remediation: str = ""):
        self.artifact_kind = artifact_kind
        self.reason = reason
        super().__init__(
            f"Provider for '{artifact_kind}' failed: {reason}",
            remediation=remediation,
        )


class ProviderTransportError(ArticleForgeError):
    """Network or HTTP failure talking to a provider."""

    kind = "provider_transport"
    retryable = True

    def __init__(self, message: str, status_code: int = 0, response_body: str = ""):
        self.status_code = status_code
        self.response_body = response_body
        super().__init__(message, remediation="check network access or retry later")


class ProviderSchemaError(ArticleForgeError):
    """Provider payload does not match the adapter's schema."""

    kind = "provider_schema"


class CredentialMissing(ArticleForgeError):
    """A provider credential is not configured; the provider runs synthetic."""

    kind = "credential_missing"

    def __init__(self, env_var: str, provider: str):
        self.env_var = env_var
        self.provider = provider
        super().__init__(
            f"{env_var} not set; {provider} downgraded to synthetic mode",
            remediation=f"set credential {env_var}",
        )


class TruncationError(ArticleForgeError):
    """LLM response hit the length ceiling before finishing."""

    kind = "truncation"
    retryable = True

    def __init__(self, message: str, partial_text: str = "", section: Optional[str] = None):
        self.partial_text = partial_text
        self.section = section
        super().__init__(message, remediation="reduce section size or raise max_tokens")


class ScoreBudgetExhausted(ArticleForgeError):
    """Refinement loop ended without reaching the minimum score."""

    kind = "score_budget_exhausted"

    def __init__(self, best_score: float, min_score: float, iterations: int):
        self.best_score = best_score
        self.min_score = min_score
        self.iterations = iterations
        super().__init__(
            f"SEO score {best_score:.1f} below minimum {min_score:.1f} "
            f"after {iterations} refinement iteration(s)",
            remediation="increase max iterations or lower --min-score",
        )


class ArtifactStoreError(ArticleForgeError):
    """I/O failure reading or writing the artifact store."""

    kind = "artifact_store"

    def __init__(self, message: str):
        super().__init__(message, remediation="check permissions and free space in the output directory")


class ValidationError(ArticleForgeError):
    """Internal invariant violated (bad keyword, malformed outline, ...)."""

    kind = "validation"
