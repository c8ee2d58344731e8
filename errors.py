class TalkersError(Exception):
    """Base class for rehearsal errors."""


class ScriptError(TalkersError):
    """Script generation produced nothing usable."""


class ServiceError(TalkersError):
    """A language-service call failed or returned garbage."""
