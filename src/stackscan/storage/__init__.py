"""SQLite persistence for projects and build logs."""
