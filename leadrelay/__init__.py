"""LeadRelay API package."""
