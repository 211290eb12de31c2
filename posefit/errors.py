"""Exceptions raised by posefit."""


class PosefitError(Exception):
  """Base class for posefit errors."""


class ConfigurationError(PosefitError, ValueError):
  """A task references something the model or the trial data does not have."""


class SolveCancelled(PosefitError):
  """Raised when a solve observes the cancellation event.

  Not a frame failure: no partial result of the interrupted frame is valid.
  """
