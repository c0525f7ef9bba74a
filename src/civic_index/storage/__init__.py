"""Storage layer: record files, index artifacts and the database projection."""
