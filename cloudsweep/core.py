"""Shared building blocks: sessions, service errors, name filters and batching."""

from __future__ import annotations

import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from itertools import islice
from typing import Any, Callable, ClassVar, Iterable, Pattern, Sequence, Union

logger = logging.getLogger("cloudsweep")

#: Tag written on resources that carry no creation time of their own.
FIRST_SEEN_TAG_KEY = "cloud-nuke-first-seen"

ClientFactory = Callable[[str, str], Any]
PatternLike = Union[str, Pattern[str]]


@dataclass(frozen=True)
class AwsSession:
    """A region bound to a factory of service clients.

    Clients follow a boto3-like interface: snake_case operations that take
    keyword arguments, return dicts and raise :class:`ServiceError`.
    """

    region: str
    client_factory: ClientFactory

    def client(self, service: str) -> Any:
        """Return a client for ``service`` in this session's region."""
        return self.client_factory(service, self.region)


class ServiceError(Exception):
    """An error reported by a cloud service, identified by its code."""

    def __init__(self, code: str, message: str = "") -> None:
        super().__init__(f"{code}: {message}" if message else code)
        self.code = code
        self.message = message


class MultiError(Exception):
    """Several errors collected from independent operations."""

    def __init__(self, errors: Iterable[BaseException]) -> None:
        self.errors = list(errors)
        super().__init__(self._describe())

    def _describe(self) -> str:
        count = len(self.errors)
        noun = "error" if count == 1 else "errors"
        lines = "".join(f"\n\t* {err}" for err in self.errors)
        return f"{count} {noun} occurred:{lines}"


def _compile(patterns: Iterable[PatternLike]) -> list[Pattern[str]]:
    return [re.compile(p) if isinstance(p, str) else p for p in patterns]


@dataclass
class FilterRule:
    """A list of regular expressions matched against resource names."""

    names_regexp: list[Pattern[str]] = field(default_factory=list)

    def __post_init__(self) -> None:
        self.names_regexp = _compile(self.names_regexp)


@dataclass
class ResourceType:
    """Include and exclude rules for one kind of resource."""

    include_rule: FilterRule = field(default_factory=FilterRule)
    exclude_rule: FilterRule = field(default_factory=FilterRule)


@dataclass
class Config:
    """Name filters per resource kind."""

    access_analyzer: ResourceType = field(default_factory=ResourceType)
    auto_scaling_group: ResourceType = field(default_factory=ResourceType)
    cloudwatch_dashboard: ResourceType = field(default_factory=ResourceType)
    cloudwatch_log_group: ResourceType = field(default_factory=ResourceType)
    dynamodb: ResourceType = field(default_factory=ResourceType)
    ebs_volume: ResourceType = field(default_factory=ResourceType)
    ec2: ResourceType = field(default_factory=ResourceType)
    ecs_cluster: ResourceType = field(default_factory=ResourceType)
    vpc: ResourceType = field(default_factory=ResourceType)


def _matches(name: str, patterns: Sequence[Pattern[str]]) -> bool:
    return any(p.search(name) for p in patterns)


def should_include(
    name: str,
    include_patterns: Iterable[PatternLike] | None,
    exclude_patterns: Iterable[PatternLike] | None,
) -> bool:
    """Decide whether ``name`` passes the include and exclude expressions.

    A name matching both an include and an exclude expression is excluded.
    """
    includes = _compile(include_patterns or ())
    excludes = _compile(exclude_patterns or ())
    if not includes and not excludes:
        return True
    if includes and not excludes:
        return _matches(name, includes)
    if excludes and not includes:
        return not _matches(name, excludes)
    return _matches(name, includes) and not _matches(name, excludes)


def split(identifiers: Iterable[str], limit: int) -> list[list[str]]:
    """Cut ``identifiers`` into chunks of at most ``abs(limit)`` items.

    A limit of zero yields a single chunk holding everything.
    """
    items = list(identifiers)
    if limit == 0:
        return [items]
    size = abs(limit)
    source = iter(items)
    return list(iter(lambda: list(islice(source, size)), []))


@dataclass
class Resource(ABC):
    """A batch of resources of one kind found in one region."""

    identifiers: list[str] = field(default_factory=list)

    resource_name: ClassVar[str]
    max_batch_size: ClassVar[int]

    @abstractmethod
    def nuke(self, session: AwsSession, identifiers: list[str]) -> None:
        """Delete the resources named by ``identifiers``."""