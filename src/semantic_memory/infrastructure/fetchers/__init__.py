from .source_fetcher import FetchedContent, SourceFetcher, content_hash

__all__ = ["FetchedContent", "SourceFetcher", "content_hash"]
