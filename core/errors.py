"""Exception types raised by the diyalekto core."""


class DiyalektoError(Exception):
    """Base class for all diyalekto errors."""


class ContentError(DiyalektoError):
    """Lesson content is missing or malformed. The lesson cannot start."""


class LessonNotFound(ContentError):
    """A dialect or lesson lookup found nothing."""


class PolicyViolation(DiyalektoError):
    """A learner action was rejected. The message is safe to show to the learner.

    Raised before any state is touched, so the caller can simply report it.
    """


class LessonLocked(PolicyViolation):
    pass


class AttemptLimitReached(PolicyViolation):
    pass


class InvalidTransition(PolicyViolation):
    pass


class InvalidAnswer(PolicyViolation):
    pass


class PersistenceError(DiyalektoError):
    """The progress store could not read or write a record."""
