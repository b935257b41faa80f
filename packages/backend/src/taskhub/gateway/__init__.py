"""Edge (BFF) service — the only place access tokens are verified."""
