"""
Database Models

This package defines the database models for the wallet service using SQLAlchemy ORM.

Key Models:
- base.py: Base SQLAlchemy model with common type definitions
- account.py: Accounts and the access tokens issued to them
- vault.py: Encrypted seed backups
- credential.py: Credential records, ordered per account

Every row except the account itself is scoped to an account guid; nothing here is
reachable by callers without resolving a valid access token first.
"""
