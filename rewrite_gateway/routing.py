import logging
from dataclasses import dataclass
from urllib.parse import urlsplit

from .rules import RuleSet

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ResolvedTarget:
    url: str


# First matching mapping wins, otherwise the default host keeps path + query.

def resolve(path: str, query: str, rule_set: RuleSet, raw_path: str | None = None) -> ResolvedTarget | None:
    """
    :param path: decoded request path, the input of the mapping patterns
    :param raw_path: path as received (percent-encoded), appended to the
        default host; `path` is used when not given
    """
    for mapping in rule_set.mappings:
        match = mapping.pattern.search(path)
        if match:
            url = mapping.expand(match)
            logger.info("Path matched mapping: %s -> %s", path, url)
            return ResolvedTarget(url)

    if not rule_set.default_host:
        return None

    host = urlsplit(rule_set.default_host)
    suffix = raw_path or path
    if not suffix.startswith("/"):
        suffix = "/" + suffix
    url = f"{host.scheme}://{host.netloc}{suffix}"
    if query:
        url += "?" + query
    return ResolvedTarget(url)
