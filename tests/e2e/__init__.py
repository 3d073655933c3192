"""End-to-end tests running a real master with real worker generations."""
