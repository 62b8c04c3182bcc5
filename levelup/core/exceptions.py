"""Exception hierarchy for LevelUp.

Domain errors propagate to callers. Transport and oracle errors are
absorbed by the judge and quest fallbacks and never reach the engines.
"""


class LevelUpError(Exception):
    """Base exception for all LevelUp errors."""


# ---------------------------------------------------------------------------
# Domain
# ---------------------------------------------------------------------------

class NotFoundError(LevelUpError):
    """Subject, task or submission does not exist."""

    def __init__(self, entity: str, identifier: object):
        self.entity = entity
        self.identifier = identifier
        super().__init__(f"{entity} not found: {identifier}")


class InvalidStateError(LevelUpError):
    """Operation not allowed in the current state (deadline passed, not pending...)."""


# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------

class DatabaseError(LevelUpError):
    """Query or statement rejected by the database."""


class SchemaInitError(DatabaseError):
    """schema.sql could not be applied."""


class ConnectionError(DatabaseError):
    """Storage unreachable. Aborts a daily run."""


# ---------------------------------------------------------------------------
# LLM transport
# ---------------------------------------------------------------------------

class LLMError(LevelUpError):
    """OpenRouter call failed."""


class RateLimitError(LLMError):
    """Provider kept answering 429."""


class AuthenticationError(LLMError):
    """Missing or rejected OpenRouter key. Stops the model chain."""


class ModelNotFoundError(LLMError):
    """Provider does not serve the requested model id."""


class ResponseParseError(LLMError):
    """Completion text held no JSON object."""


# ---------------------------------------------------------------------------
# Oracles (judge, quest generator) -- absorbed by their fallbacks
# ---------------------------------------------------------------------------

class OracleError(LevelUpError):
    """Advisory service produced nothing usable."""


class JudgeValidationError(OracleError):
    """Oracle response failed the judge contract."""

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"Invalid judge response: {reason}")


class ExternalServiceError(OracleError):
    """Oracle call failed before a reply could be validated."""


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

class ConfigError(LevelUpError):
    """Unreadable YAML or an unsupported setting."""
