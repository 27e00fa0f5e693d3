"""Order escrow lifecycle service for the marketplace."""
