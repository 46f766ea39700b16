"""Certificate issuance, verification and revocation."""
