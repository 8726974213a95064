"""
Signers: payer-side claim signing and facilitator-side ledger access
"""
