"""Errors and warnings raised while rescoring PSMs."""

import click


class RescoreError(click.ClickException):
    """Base class for data problems that stop or degrade rescoring."""


class InsufficientDataError(RescoreError):
    """The data set, or one of its folds, lacks decoys or targets."""


class DegenerateFeatureError(RescoreError):
    """Training data carries no discriminative signal.

    Raised when the training labels contain a single class or when a feature is
    constant across all training rows.
    """


class NoDecoysError(RescoreError):
    """q-values cannot be computed without decoys."""


class NonConvergenceWarning(UserWarning):
    """The rescoring loop stopped before the accepted set stabilised."""
