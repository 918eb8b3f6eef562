"""Minimal Enrichr REST client.

Two calls are needed: ``addList`` registers a gene list and returns a
``userListId``; ``enrich`` returns ranked terms for one library. Every
request has a timeout and is retried once on transient failures.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Dict, List, Optional, Sequence

import pandas as pd
import requests

from ...errors import EnrichmentError
from .config import EnrichmentConfig

# HTTP status codes worth retrying
RETRY_STATUS = {429, 500, 502, 503, 504}

# Positional fields of one Enrichr result row
ENRICHR_ROW_FIELDS = [
    "rank",
    "term",
    "pval",
    "odds_ratio",
    "combined_score",
    "overlap_genes",
    "pval_adj",
]

ENRICHMENT_COLUMNS = [
    "library",
    "rank",
    "term",
    "pval",
    "pval_adj",
    "odds_ratio",
    "combined_score",
    "n_overlap",
    "overlap_genes",
]


class EnrichrClient:
    """Synchronous Enrichr client.

    Parameters
    ----------
    config : EnrichmentConfig, optional
        Enrichment configuration (URL, timeout, retries)
    session : requests.Session, optional
        HTTP session; pass a stub in tests
    logger : logging.Logger, optional
        Logger instance. If None, creates default logger.

    Example
    -------
    >>> client = EnrichrClient()
    >>> list_id = client.add_list(["Myh6", "Tnnt2", "Actc1"], "cardiomyocytes")
    >>> client.enrich(list_id, "KEGG_2019_Mouse").head()
    """

    def __init__(
        self,
        config: Optional[EnrichmentConfig] = None,
        session: Optional[requests.Session] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.config = config or EnrichmentConfig()
        self.session = session or requests.Session()
        self.logger = logger or logging.getLogger(__name__)

    def _url(self, endpoint: str) -> str:
        return f"{self.config.base_url.rstrip('/')}/{endpoint.lstrip('/')}"

    def _request(self, method: str, endpoint: str, **kwargs: Any) -> requests.Response:
        """Send a request, retrying transient failures.

        Raises
        ------
        EnrichmentError
            On a non-retryable HTTP error, or once retries are exhausted
        """
        url = self._url(endpoint)
        attempts = 1 + max(self.config.max_retries, 0)
        last_error: Optional[Exception] = None

        for attempt in range(1, attempts + 1):
            try:
                response = self.session.request(
                    method, url, timeout=self.config.timeout, **kwargs
                )
                if response.status_code in RETRY_STATUS:
                    raise requests.HTTPError(
                        f"{response.status_code} from {url}", response=response
                    )
                response.raise_for_status()
                return response
            except requests.HTTPError as e:
                status = e.response.status_code if e.response is not None else None
                if status not in RETRY_STATUS:
                    raise EnrichmentError(
                        f"Enrichr request failed with HTTP {status}",
                        found=url,
                        context={"error": str(e), "attempt": attempt},
                    ) from e
                last_error = e
            except (requests.ConnectionError, requests.Timeout) as e:
                last_error = e

            if attempt < attempts:
                self.logger.warning(
                    "Enrichr %s %s failed (%s); retrying in %.1fs",
                    method,
                    endpoint,
                    last_error,
                    self.config.retry_backoff,
                )
                time.sleep(self.config.retry_backoff)

        raise EnrichmentError(
            f"Enrichr {endpoint} unreachable after {attempts} attempt(s)",
            found=url,
            suggestion="Check network access or rerun the enrich command later",
            context={"error": str(last_error), "attempts": attempts},
        ) from last_error

    def add_list(self, genes: Sequence[str], description: str = "") -> int:
        """Register a gene list and return its ``userListId``.

        Parameters
        ----------
        genes : Sequence[str]
            Gene symbols
        description : str
            Free-text description stored with the list

        Returns
        -------
        int
            Enrichr user list id
        """
        if not genes:
            raise EnrichmentError("Cannot submit an empty gene list to Enrichr")

        payload = {
            "list": (None, "\n".join(genes)),
            "description": (None, description),
        }
        response = self._request("POST", "addList", files=payload)
        try:
            data = response.json()
            user_list_id = int(data["userListId"])
        except (ValueError, KeyError, TypeError) as e:
            raise EnrichmentError(
                "Unexpected addList response from Enrichr",
                expected="JSON with userListId",
                found=response.text[:200],
            ) from e

        self.logger.info("Submitted %d genes to Enrichr (userListId=%d)", len(genes), user_list_id)
        return user_list_id

    def enrich(self, user_list_id: int, library: str) -> pd.DataFrame:
        """Fetch enrichment results for one library.

        Parameters
        ----------
        user_list_id : int
            Id returned by ``add_list``
        library : str
            Enrichr library name (e.g. "KEGG_2019_Mouse")

        Returns
        -------
        pd.DataFrame
            One row per term with columns ``ENRICHMENT_COLUMNS`` in Enrichr's
            own order
        """
        response = self._request(
            "GET",
            "enrich",
            params={"userListId": user_list_id, "backgroundType": library},
        )
        try:
            rows = response.json()[library]
        except (ValueError, KeyError, TypeError) as e:
            raise EnrichmentError(
                f"Unexpected enrich response for library '{library}'",
                expected=f"JSON keyed by '{library}'",
                found=response.text[:200],
            ) from e
        return parse_enrichr_rows(rows, library)


def parse_enrichr_rows(rows: List[List[Any]], library: str) -> pd.DataFrame:
    """Convert raw Enrichr result rows into a typed DataFrame."""
    records: List[Dict[str, Any]] = []
    for row in rows:
        record = dict(zip(ENRICHR_ROW_FIELDS, row[: len(ENRICHR_ROW_FIELDS)]))
        genes = record.get("overlap_genes") or []
        record["overlap_genes"] = ";".join(genes)
        record["n_overlap"] = len(genes)
        record["library"] = library
        records.append(record)

    table = pd.DataFrame(records, columns=ENRICHMENT_COLUMNS)
    for col in ("pval", "pval_adj", "odds_ratio", "combined_score"):
        table[col] = pd.to_numeric(table[col], errors="coerce")
    table["rank"] = pd.to_numeric(table["rank"], errors="coerce").astype("Int64")
    return table
