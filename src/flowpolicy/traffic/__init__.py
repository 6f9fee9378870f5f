"""Flow records and cluster identities as reported by the flow-data broker."""
