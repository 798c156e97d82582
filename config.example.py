# config.example.py

"""
Documentation-only module (safe to commit).

The real configuration is loaded from environment variables (optionally via a local .env file).
Do NOT commit real secrets. Keep Matrix credentials in .env (local, gitignored).

This file exists to make the repo self-documenting even without opening .env.example.
"""

ENV_VARS = {
    # App / logging
    "SAU_APP_NAME": "App display name (default: sau-monitor).",
    "SAU_LOG_LEVEL": "Console logging level (default: INFO).",
    "SAU_LOG_BUFFER_SIZE": "Entries kept in memory for /logs (default: 1000).",
    "SAU_CONSOLE_ENABLED": "Enable the interactive console (true/false).",
    # Paths (gitignored)
    "SAU_DATA_DIR": "Local data directory (default: .local/sau).",
    "SAU_LOCAL_DB_PATH": "Local tier SQLite path (default: <data_dir>/local.sqlite3).",
    "SAU_SYNC_DB_PATH": "Sync tier SQLite path (default: <data_dir>/sync.sqlite3).",
    "SAU_SCRAPE_SOURCE_PATH": "JSON file written by the portal scraper (default: <data_dir>/scraped_tasks.json).",
    # Storage tiers
    "SAU_SYNC_ENABLED": "Enable the small synced tier (true/false).",
    "SAU_SYNC_KEYS": "Comma/space separated state keys stored on the sync tier (default: none).",
    "SAU_SYNC_TOTAL_BYTES": "Sync tier total quota in bytes (default: 102400).",
    "SAU_SYNC_ITEM_BYTES": "Sync tier per-item quota in bytes (default: 8192).",
    "SAU_SYNC_MAX_ITEMS": "Sync tier max item count (default: 512).",
    "SAU_LOCAL_TOTAL_BYTES": "Local tier total quota in bytes (default: 5242880).",
    "SAU_COMPRESSION_ENABLED": "Compress large stored values (true/false).",
    "SAU_COMPRESSION_MIN_SIZE": "Smallest value size in bytes worth compressing (default: 1024).",
    # Checking / reconciliation
    "SAU_CHECK_INTERVAL_SECONDS": "Seconds between task checks (default: 60).",
    "SAU_RECONCILE_CHUNK_SIZE": "Tasks reconciled per chunk before yielding (default: 50).",
    "SAU_RETENTION_DAYS": "Days before stale tracker entries are purged (default: 30).",
    "SAU_DEFAULT_SNOOZE_MINUTES": "Snooze length when none is given (default: 15).",
    # Notifications
    "SAU_ENABLE_RENOTIFICATION": "Re-notify pending tasks periodically (true/false).",
    "SAU_RENOTIFICATION_INTERVAL_MINUTES": "Minutes between re-notifications (default: 30).",
    "SAU_NOTIFICATION_COOLDOWN_SECONDS": "Minimum seconds between notifications (default: 15).",
    # Retries
    "SAU_MAX_RETRIES": "Attempts for notifications and tab opening (default: 3).",
    "SAU_BASE_RETRY_DELAY_MS": "First retry delay in ms (default: 1000).",
    "SAU_MAX_RETRY_DELAY_MS": "Retry delay cap in ms (default: 10000).",
    "SAU_OPERATION_TIMEOUT_SECONDS": "Per-attempt timeout, 0 disables (default: 30).",
    # Matrix notifier
    "SAU_MATRIX_ENABLED": "Send notifications to a Matrix room (true/false).",
    "SAU_MATRIX_HOMESERVER": "Matrix homeserver URL.",
    "SAU_MATRIX_USER_ID": "Matrix user ID (bot).",
    "SAU_MATRIX_PASSWORD": "Password for first login (session stored locally).",
    "SAU_MATRIX_ROOM_ID": "Room that receives notifications.",
    "SAU_MATRIX_STORE_PATH": "Matrix session directory (default: <data_dir>/matrix_store).",
}
