"""Community shop storefront and back-office API."""
