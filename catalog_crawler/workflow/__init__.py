from .runner import CrawlRunner, RunnerOptions

__all__ = ["CrawlRunner", "RunnerOptions"]
