"""Services subpackage - stores, cache and orchestration."""
