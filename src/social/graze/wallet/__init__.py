"""
Graze Wallet - Identity Wallet Session Service

This package implements the session layer of an identity wallet. A principal (an email
address or phone number) proves control of its identifier with a one-time code and
receives an authenticated session that carries an encrypted seed and a store of
verifiable credentials.

Key Components:
- app: Web application layer with request handlers, server configuration and tasks
- identity: OTP challenges, the session state machine, seed vault, credential store and
  the WalletService facade
- model: Database models for accounts, access tokens, seeds and credentials

Flows:
1. Sign-up: register a pending account, deliver a code, confirm it and receive a fresh
   encrypted seed.
2. Sign-in: deliver a code to a confirmed account, confirm it and receive the stored
   seed and credentials.
3. Sign-out: revoke the session's access token.
"""
