"""
Proxy rule document loading.

The document is read as text, ${VAR} placeholders are substituted from the
environment, and the result is parsed as JSON:

    {
      "proxies": [
        {"path": "/api", "target": "${BACKEND_URL}",
         "options": {"changeOrigin": true, "pathRewrite": {"^/api": ""},
                     "rateLimit": {"windowMs": 60000, "max": 100}}}
      ]
    }

Only the document shape is checked here; each rule is validated when the
proxy engine builds its handler so one bad rule does not disable the rest.
"""

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from frontdoor.errors import ConfigParseError, ConfigShapeError, ProxyConfigError, RuleValidationError
from frontdoor.router.env import find_placeholders, substitute_env_variables

logger = logging.getLogger("frontdoor.router.config")

RULE_WINDOW_MS = 60 * 1000
RULE_MAX_REQUESTS = 100


@dataclass(frozen=True)
class RateLimitSettings:
    window_ms: int = RULE_WINDOW_MS
    max: int = RULE_MAX_REQUESTS
    enabled: bool = True

    @classmethod
    def from_mapping(cls, data: Any, rule_path: str | None = None) -> "RateLimitSettings":
        if data is None:
            return cls()
        if not isinstance(data, dict):
            raise RuleValidationError(f"rateLimit for {rule_path} must be an object", rule_path=rule_path)
        try:
            window_ms = int(data.get("windowMs", RULE_WINDOW_MS))
            max_requests = int(data.get("max", RULE_MAX_REQUESTS))
        except (TypeError, ValueError) as e:
            raise RuleValidationError(f"Invalid rateLimit for {rule_path}: {e}", rule_path=rule_path) from None
        if window_ms <= 0 or max_requests < 0:
            raise RuleValidationError(
                f"Invalid rateLimit for {rule_path}: windowMs must be positive and max non-negative",
                rule_path=rule_path,
            )
        enabled = data.get("enabled", True)
        if not isinstance(enabled, bool):
            raise RuleValidationError(f"Invalid rateLimit for {rule_path}: enabled must be true or false", rule_path=rule_path)
        return cls(window_ms=window_ms, max=max_requests, enabled=enabled)


@dataclass(frozen=True)
class ProxyRule:
    """One path-prefix to upstream mapping, as written in the config document."""

    path: str
    target: str
    options: Any = field(default_factory=dict)
    rate_limit: Any = None

    @classmethod
    def from_mapping(cls, data: dict) -> "ProxyRule":
        options = data.get("options")
        if options is None:
            options = {}
        rate_limit = data.get("rateLimit")
        if rate_limit is None and isinstance(options, dict):
            rate_limit = options.get("rateLimit")
        return cls(
            path=data.get("path") or "",
            target=data.get("target") or "",
            options=options,
            rate_limit=rate_limit,
        )

    def validate(self) -> None:
        """
        Raise RuleValidationError if the rule cannot be proxied.

        Checks that path and target are present strings, that options is an
        object and that no ${...} placeholder survived substitution in target.
        """
        if not self.path or not self.target:
            raise RuleValidationError("Skipping invalid proxy config: missing path or target", rule_path=self.path or None)
        if not isinstance(self.path, str) or not isinstance(self.target, str):
            raise RuleValidationError("Skipping invalid proxy config: path and target must be strings")
        unresolved = find_placeholders(self.target)
        if unresolved:
            raise RuleValidationError(
                f"Skipping proxy {self.path}: target {self.target} references undefined variable {unresolved[0]}",
                rule_path=self.path,
                variable=unresolved[0],
            )
        if not isinstance(self.options, dict):
            raise RuleValidationError(f"Skipping proxy {self.path}: options must be an object", rule_path=self.path)

    def rate_limit_settings(self) -> RateLimitSettings | None:
        """Limiter settings for this rule, or None when explicitly disabled."""
        settings = RateLimitSettings.from_mapping(self.rate_limit, self.path)
        return settings if settings.enabled else None


def parse_proxy_document(text: str, source: str | None = None) -> list[ProxyRule]:
    """
    Parse already-substituted config text into rules.

    Raises:
        ConfigParseError: the text is not valid JSON
        ConfigShapeError: there is no list of rule objects
    """
    try:
        document = json.loads(text)
    except json.JSONDecodeError as e:
        raise ConfigParseError(f"Invalid JSON in {source or 'proxy config'}: {e}", path=source) from e

    if isinstance(document, dict):
        entries = document.get("proxies")
    else:
        entries = document
    if not isinstance(entries, list):
        raise ConfigShapeError("Invalid proxy config: 'proxies' must be an array", path=source)

    rules = []
    for index, entry in enumerate(entries):
        if not isinstance(entry, dict):
            raise ConfigShapeError(f"Invalid proxy config: entry {index} is not an object", path=source)
        rules.append(ProxyRule.from_mapping(entry))
    return rules


def load_proxy_rules(source_path: Path | str | None, environ=None) -> list[ProxyRule] | None:
    """
    Load proxy rules from a JSON file.

    Returns:
        The rules in document order, or None when the file is absent or the
        document is unusable. Document-level errors are logged, never raised.
    """
    if source_path is None:
        return None
    path = Path(source_path)
    if not path.is_file():
        logger.info("No proxy configuration found (%s)", path.name)
        return None

    try:
        content = path.read_text(encoding="utf-8")
        return parse_proxy_document(substitute_env_variables(content, environ), source=str(path))
    except ProxyConfigError as e:
        logger.error("%s", e)
        return None
    except OSError as e:
        logger.error("Error reading %s: %s", path, e)
        return None
