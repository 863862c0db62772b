from .coverage_api import CoverageAPI

__all__ = ["CoverageAPI"]
