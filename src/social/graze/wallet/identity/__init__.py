"""
Identity wallet session layer: OTP challenges, the sign-up/sign-in state machine, the
seed vault, the credential store and the ``WalletService`` facade.
"""
