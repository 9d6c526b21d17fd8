"""Error taxonomy for the recommendation pipeline.

Fatal errors abort a request and carry the HTTP status the API answers with.
Recoverable errors are raised inside a single draft's enrichment and absorbed
there; they never reach the caller.
"""


class NutriMatchError(Exception):
    """Base class for every pipeline error."""

    status_code = 500
    fatal = True


# ── Fatal ────────────────────────────────────────────────────────────


class InvalidRequest(NutriMatchError):
    """Required input is missing or empty. No external call was made."""

    status_code = 400


class UpstreamConfigurationError(NutriMatchError):
    """Credentials for an external service are not configured."""

    status_code = 500


class DraftGenerationFailure(NutriMatchError):
    """The LLM could not produce usable drafts (call failed or output unparseable)."""

    status_code = 502


class RequestTimeout(NutriMatchError):
    """The request deadline passed before all drafts were enriched."""

    status_code = 504


# ── Recoverable (per draft) ──────────────────────────────────────────


class GatewayError(NutriMatchError):
    """The LLM gateway call itself failed. Callers translate it to their own error."""

    status_code = 502
    fatal = False


class SearchUnavailable(NutriMatchError):
    """PubMed search or fetch failed."""

    status_code = 502
    fatal = False


class MetadataParseFailure(NutriMatchError):
    """A fetched payload yielded no usable citation records."""

    status_code = 502
    fatal = False


class FilterFailure(NutriMatchError):
    """The relevance filter call failed or returned unusable output."""

    status_code = 502
    fatal = False
