"""Listing sources and the scanner that turns them into work items."""

from ingestrag.source.html_board import HtmlBoardListing, IssueNumbering
from ingestrag.source.scanner import SourceScanner
from ingestrag.source.youtube import YouTubePlaylistListing, YouTubeSource

__all__ = [
    "HtmlBoardListing",
    "IssueNumbering",
    "SourceScanner",
    "YouTubePlaylistListing",
    "YouTubeSource",
]
