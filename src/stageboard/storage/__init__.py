"""Local durable storage: keyed JSON blobs, persisted snapshot, migration flag, debounce."""
