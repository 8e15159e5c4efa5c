"""HTTP routes for the login popup."""
