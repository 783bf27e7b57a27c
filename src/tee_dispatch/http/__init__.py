"""HTTP clients for the public market API and the result gateway."""
