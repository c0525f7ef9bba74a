"""Services: indexing, search and synchronization."""
