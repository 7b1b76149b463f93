from __future__ import annotations

import logging
from typing import Dict, FrozenSet

from ..errors import ConfigurationError, UnknownLabelError
from ..extractors.base import ExtractResult, Handler, SiteExtractor
from ..models import Label, Request
from ..utils.http import FetchedPage
from .frontier import Frontier

logger = logging.getLogger(__name__)


class Router:
    """
    Label -> handler dispatch for one site.

    The handler table must cover exactly the labels the extractor declares;
    this is checked once, at construction. Dispatching (or enqueueing) a
    label outside that set raises UnknownLabelError.
    """

    def __init__(self, extractor: SiteExtractor) -> None:
        self.extractor = extractor
        table: Dict[Label, Handler] = dict(extractor.handlers())
        declared: FrozenSet[Label] = frozenset(extractor.labels)
        missing = declared - table.keys()
        extra = table.keys() - declared
        if missing or extra:
            raise ConfigurationError(
                f"Handler table for {extractor.name!r} does not match its labels: "
                f"missing={sorted(x.value for x in missing)} extra={sorted(x.value for x in extra)}"
            )
        self._table = table

    @property
    def labels(self) -> FrozenSet[Label]:
        return frozenset(self._table)

    def ensure(self, label: Label) -> None:
        if label not in self._table:
            raise UnknownLabelError(label, self.extractor.name)

    def dispatch(self, page: FetchedPage, request: Request, frontier: Frontier) -> ExtractResult:
        """
        Parse the fetched body, run the handler for the request's label and
        push its follow-up requests onto the frontier.
        """
        self.ensure(request.label)
        handler = self._table[request.label]
        logger.debug("Scraping [%s] - %s", request.label.value, request.url)
        document = self.extractor.parse(request.label, page)
        result = handler(document, request)
        for follow_up in result.next_requests:
            self.ensure(follow_up.label)
        frontier.add_many(result.next_requests)
        return result
