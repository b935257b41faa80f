"""HTTP middleware shared by the gateway and the user service."""
