from .analytics_tools import AnalyticsTools
from .listing_tools import ListingProvider, ListingProviderError, MockListingProvider, WordPressListingProvider
from .ticket_tools import TicketStore

__all__ = [
    "AnalyticsTools",
    "ListingProvider",
    "ListingProviderError",
    "MockListingProvider",
    "WordPressListingProvider",
    "TicketStore",
]
