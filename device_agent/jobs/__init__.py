"""Job solicitation and execution handshake."""
