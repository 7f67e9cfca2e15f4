"""Task Market Service - task posting, bidding and reviews for the marketplace."""

__version__ = "0.1.0"
