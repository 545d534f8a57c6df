"""Process-wide registry of scrapers, filled at import time."""

import fnmatch
import logging
from collections import namedtuple

from .errors import RegistrationError, ScraperNotFound
from .scraper import ScraperDescriptor, check_scraper
from .version import parse_version

_Entry = namedtuple("_Entry", ["descriptor", "factory", "instance"])


class ScraperRegistry:
    def __init__(self):
        self._entries = {}

    def register(self, descriptor, factory):
        """
        Add a scraper. The factory is called once here so that a scraper
        which does not satisfy the contract fails at startup rather than
        during a scrape.
        """
        if not descriptor.name:
            raise RegistrationError("scraper descriptor has no name")
        if descriptor.name in self:
            raise RegistrationError(f"duplicate scraper name '{descriptor.name}'")
        try:
            descriptor = descriptor._replace(min_version=parse_version(descriptor.min_version))
        except ValueError as e:
            raise RegistrationError(f"scraper '{descriptor.name}': {e}")
        instance = factory()
        problems = check_scraper(instance, descriptor)
        if problems:
            raise RegistrationError(f"scraper '{descriptor.name}' does not satisfy the contract: {', '.join(problems)}")
        self._entries[descriptor.name] = _Entry(descriptor, factory, instance)
        logging.debug(f"Registered scraper '{descriptor.name}'")
        return descriptor

    def lookup(self, name):
        try:
            return self._entries[name].instance
        except KeyError:
            raise ScraperNotFound(name)

    def all(self):
        """Descriptors sorted by name."""
        return [self._entries[name].descriptor for name in sorted(self._entries)]

    def select(self, include=None, exclude=None):
        """
        Descriptors whose names match any include pattern and no exclude
        pattern, in registry order. No include patterns selects everything.
        """
        selected = []
        for descriptor in self.all():
            if include and not any(fnmatch.fnmatch(descriptor.name, pattern) for pattern in include):
                continue
            if exclude and any(fnmatch.fnmatch(descriptor.name, pattern) for pattern in exclude):
                continue
            selected.append(descriptor)
        return selected

    def __contains__(self, name):
        return name in self._entries

    def __len__(self):
        return len(self._entries)


REGISTRY = ScraperRegistry()


def register_scraper(cls=None, registry=None):
    """
    Class decorator: register a Scraper subclass under its `name`.

        @register_scraper
        class ScrapeNodes(Scraper):
            ...
    """
    def decorate(scraper_cls):
        target = registry if registry is not None else REGISTRY
        descriptor = ScraperDescriptor(scraper_cls.name, scraper_cls.help, scraper_cls.min_version)
        target.register(descriptor, scraper_cls)
        return scraper_cls

    if cls is None:
        return decorate
    return decorate(cls)
