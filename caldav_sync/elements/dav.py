#!/usr/bin/env python
from typing import ClassVar

from .base import BaseElement
from .base import ValuedBaseElement
from caldav_sync.lib.namespace import ns


# Operations
class SyncCollection(BaseElement):
    tag: ClassVar[str] = ns("D", "sync-collection")


# Conditions
class SyncToken(ValuedBaseElement):
    tag: ClassVar[str] = ns("D", "sync-token")


class SyncLevel(ValuedBaseElement):
    tag: ClassVar[str] = ns("D", "sync-level")


class Limit(BaseElement):
    tag: ClassVar[str] = ns("D", "limit")


class NResults(ValuedBaseElement):
    tag: ClassVar[str] = ns("D", "nresults")


# Components / Data
class Prop(BaseElement):
    tag: ClassVar[str] = ns("D", "prop")


class GetEtag(ValuedBaseElement):
    tag: ClassVar[str] = ns("D", "getetag")


class Href(ValuedBaseElement):
    tag: ClassVar[str] = ns("D", "href")


class Response(BaseElement):
    tag: ClassVar[str] = ns("D", "response")


class Status(ValuedBaseElement):
    tag: ClassVar[str] = ns("D", "status")


class PropStat(BaseElement):
    tag: ClassVar[str] = ns("D", "propstat")


class MultiStatus(BaseElement):
    tag: ClassVar[str] = ns("D", "multistatus")


# Error bodies and preconditions (RFC 4918 section 16, RFC 6578 section 3.2)
class Error(BaseElement):
    tag: ClassVar[str] = ns("D", "error")


class ValidSyncToken(BaseElement):
    tag: ClassVar[str] = ns("D", "valid-sync-token")


class SyncTraversalSupported(BaseElement):
    tag: ClassVar[str] = ns("D", "sync-traversal-supported")


class SupportedReport(BaseElement):
    tag: ClassVar[str] = ns("D", "supported-report")
