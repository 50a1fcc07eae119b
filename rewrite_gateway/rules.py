import re
from dataclasses import dataclass
from urllib.parse import urlsplit

from .config import GatewayConfig, PathMappingConfig
from .errors import ConfigurationError

# $N, ${N}, or $$ for a literal dollar sign
GROUP_REFERENCE = re.compile(r"\$(?:(\d+)|\{(\d+)\}|(\$))")


@dataclass(frozen=True)
class PathMapping:
    pattern: re.Pattern
    template: str

    def expand(self, match: re.Match) -> str:
        """Template with every group reference replaced by the matched text."""
        def substitute(ref: re.Match) -> str:
            if ref.group(3):
                return "$"
            index = int(ref.group(1) or ref.group(2))
            if index > self.pattern.groups:
                return ""
            return match.group(index) or ""

        return GROUP_REFERENCE.sub(substitute, self.template)


def compile_mapping(mapping: PathMappingConfig) -> PathMapping:
    try:
        pattern = re.compile(mapping.from_)
    except re.error as exc:
        raise ConfigurationError(f"invalid regex pattern '{mapping.from_}': {exc}") from exc
    return PathMapping(pattern=pattern, template=mapping.to)


@dataclass(frozen=True)
class RuleSet:
    """
    Compiled routing configuration.

    Built once at startup and shared by every request; nothing mutates it
    afterwards.
    """
    default_host: str | None
    mappings: tuple[PathMapping, ...] = ()
    mirrors: tuple[str, ...] = ()
    follow_redirects: bool = False

    @classmethod
    def from_config(cls, config: GatewayConfig) -> "RuleSet":
        """
        :raises ConfigurationError: a mapping pattern does not compile or the
            default host is not a scheme://host URL
        """
        default_host = config.default_host or None
        if default_host is not None:
            try:
                parsed = urlsplit(default_host)
            except ValueError as exc:
                raise ConfigurationError(f"invalid default host '{default_host}': {exc}") from exc
            if not parsed.scheme or not parsed.netloc:
                raise ConfigurationError(
                    f"invalid default host '{default_host}': expected scheme://host"
                )

        return cls(
            default_host=default_host,
            mappings=tuple(compile_mapping(m) for m in config.path_mappings),
            mirrors=tuple(config.mirrors),
            follow_redirects=config.follow_redirects,
        )
