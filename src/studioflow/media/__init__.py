"""Generation service contract, payload validation and the HTTP client."""
