"""OAuth credential ownership, refresh and consent bootstrap."""
