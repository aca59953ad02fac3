"""HTTP API exposing the cache store and download controllers."""
