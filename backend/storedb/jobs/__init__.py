"""Cron-style runners. Each `run()` opens its own write session and returns a summary dict."""
