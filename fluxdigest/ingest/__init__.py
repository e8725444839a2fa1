from fluxdigest.ingest.articles import fetch_recent_articles
from fluxdigest.ingest.miniflux import MinifluxClient, MinifluxClientProvider, build_client
from fluxdigest.ingest.normalizer import TokenEstimator, clean_html

__all__ = [
    "MinifluxClient",
    "MinifluxClientProvider",
    "TokenEstimator",
    "build_client",
    "clean_html",
    "fetch_recent_articles",
]
