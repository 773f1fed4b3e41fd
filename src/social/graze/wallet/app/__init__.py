"""
Wallet Application Layer

This package implements the web application layer for the wallet service using the
aiohttp framework.

Key Components:
- server.py: Web server configuration, routes and middleware setup
- config.py: Configuration management using Pydantic settings
- metrics.py: Metrics abstraction over Telegraf/StatsD
- handlers/: Request handlers for the wallet and internal endpoints
- tasks.py: Background task purging expired access tokens
- cli.py: Logging configuration and the service entry point
"""
