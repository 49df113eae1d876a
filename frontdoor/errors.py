"""Exception hierarchy for config loading, plugins, proxying and rate limiting."""


class FrontdoorError(Exception):
    """Base class for all frontdoor errors."""


class ProxyConfigError(FrontdoorError):
    """The proxy config document as a whole could not be used."""

    def __init__(self, message: str, path: str | None = None):
        super().__init__(message)
        self.path = path


class ConfigParseError(ProxyConfigError):
    """The proxy config file is not valid JSON."""


class ConfigShapeError(ProxyConfigError):
    """The proxy config document does not hold a list of rule objects."""


class RuleValidationError(FrontdoorError):
    """A single proxy rule is unusable and will be skipped."""

    def __init__(self, message: str, rule_path: str | None = None, variable: str | None = None):
        super().__init__(message)
        self.rule_path = rule_path
        self.variable = variable


class PluginLoadError(FrontdoorError):
    """A plugin failed to import or register its routes."""

    def __init__(self, name: str, cause: BaseException):
        super().__init__(f"Failed to load plugin {name}: {cause}")
        self.name = name
        self.cause = cause


class UpstreamTransportError(FrontdoorError):
    """The upstream of a proxy rule could not be reached or stopped responding."""

    def __init__(self, message: str, target: str, code: str, path: str):
        super().__init__(message)
        self.target = target
        self.code = code
        self.path = path


class RateLimitExceeded(FrontdoorError):
    """A client went over a rate limit budget."""

    def __init__(self, scope: str, message: str, limit: int, retry_after: int, path: str | None = None):
        super().__init__(message)
        self.scope = scope
        self.message = message
        self.limit = limit
        self.retry_after = retry_after
        self.path = path

    def to_dict(self) -> dict:
        data = {
            "error": "Too Many Requests",
            "message": self.message,
            "scope": self.scope,
            "retry_after": self.retry_after,
        }
        if self.path:
            data["path"] = self.path
        return data
