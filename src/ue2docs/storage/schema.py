MANIFEST_COLUMNS = [
    "url", "status_code", "content_type", "resource_type",
    "bytes", "saved_path", "fetched_at",
]
