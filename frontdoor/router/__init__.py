"""Request routing: rate limiting, proxy rules and the static/SPA fallback."""
