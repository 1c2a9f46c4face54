"""Typed failures raised by the bot's layers.

Lower layers (reader, evaluator, submitter) raise these and never decide to
retry or exit; the poll scheduler owns continuation policy.
"""


class BotError(Exception):
    """Base class for every failure the bot knows how to classify."""


class ConfigError(BotError):
    """Fatal startup failure: bad configuration, unresolved contract, unsupported network."""


class ChainReadError(BotError):
    """A read against the node failed or returned something undecodable. Retryable next cycle."""


class EvaluationError(BotError):
    """The snapshot could not be turned into an action."""


class SubmissionError(BotError):
    """Building, signing or delivering a transaction failed."""
