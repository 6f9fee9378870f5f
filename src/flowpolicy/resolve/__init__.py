"""Resolution of IPs and identities into label selectors or CIDR blocks."""
